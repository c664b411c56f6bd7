from __future__ import annotations
import logging
from typing import Any, Dict, Optional
import torch
from emfit.core import InvalidConfigurationError
from emfit.data import TabularData, tensor_from_data
from .estimator import KMeans

logger = logging.getLogger(__name__)


class RefinedStart:
    """
    Refined initial centroids as proposed by Bradley and Fayyad ("Refining Initial Points for
    K-Means Clustering", 1998). K-means is run on several small random subsamples of the data. The
    centroids of all these runs are pooled and clustered once more, starting from each subsample's
    solution. The solution with the lowest distortion on the pool yields the centroids.
    """

    def __init__(
        self,
        num_clusters: int,
        samplings: int = 100,
        percentage: float = 0.02,
        *,
        trainer_params: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            num_clusters: The number of centroids to find.
            samplings: The number of random subsamples to run K-means on.
            percentage: The fraction of the data, in ``(0, 1]``, that each subsample contains.
                Each subsample contains at least ``num_clusters`` datapoints.
            trainer_params: Initialization parameters passed to the trainers of all K-means runs.

        Raises:
            InvalidConfigurationError: If any of the parameters is out of range.
        """
        if num_clusters <= 0:
            raise InvalidConfigurationError(
                f"Number of clusters must be positive, got {num_clusters}"
            )
        if samplings <= 0:
            raise InvalidConfigurationError(
                f"Number of samplings must be positive, got {samplings}"
            )
        if not 0 < percentage <= 1:
            raise InvalidConfigurationError(
                f"Sampling percentage must be in the interval (0, 1], got {percentage}"
            )

        self.num_clusters = num_clusters
        self.samplings = samplings
        self.percentage = percentage
        self.trainer_params = trainer_params

    def cluster(self, data: TabularData) -> torch.Tensor:
        """
        Computes refined initial centroids for the provided data.

        Args:
            data: The data of shape ``[num_datapoints, num_features]`` to find centroids for.

        Returns:
            A tensor of shape ``[num_clusters, num_features]`` with the centroids.
        """
        tensor = tensor_from_data(data)
        num_datapoints = tensor.size(0)
        if self.num_clusters > num_datapoints:
            raise InvalidConfigurationError(
                f"Number of clusters ({self.num_clusters}) must not exceed the number of "
                f"datapoints ({num_datapoints})"
            )
        sample_size = min(
            num_datapoints, max(self.num_clusters, int(self.percentage * num_datapoints))
        )

        # First, cluster each of the subsamples
        candidates = []
        for i in range(self.samplings):
            if sample_size == num_datapoints:
                subsample = tensor
            else:
                subsample = tensor[torch.randperm(num_datapoints)[:sample_size]]
            estimator = KMeans(self.num_clusters, trainer_params=self.trainer_params)
            candidates.append(estimator.fit(subsample).model_.centroids.clone())
            logger.debug("Clustered subsample %d/%d.", i + 1, self.samplings)

        # Then, cluster the pooled centroids starting from each of the candidate solutions
        pool = torch.cat(candidates)
        best_centroids = candidates[0]
        best_distortion = float("inf")
        for centroids in candidates:
            estimator = KMeans(
                self.num_clusters,
                init_centroids=centroids,
                trainer_params=self.trainer_params,
            )
            model = estimator.fit(pool).model_
            distortion = model.distortion(pool)
            if distortion < best_distortion:
                best_distortion = distortion
                best_centroids = model.centroids.clone()

        logger.debug("Refined start found centroids with distortion %.4f.", best_distortion)
        return best_centroids
