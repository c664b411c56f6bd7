from __future__ import annotations
import logging
from typing import Any, cast, Dict, List, Optional
import torch
from emfit.core import Estimator, InvalidConfigurationError, PredictorMixin
from emfit.data import full_batch_loader, TabularData, tensor_from_data
from .lightning_module import (
    FeatureVarianceLightningModule,
    KMeansInitLightningModule,
    KMeansLightningModule,
)
from .model import KMeansModel, KMeansModelConfig
from .types import KMeansInitStrategy

logger = logging.getLogger(__name__)


class KMeans(Estimator[KMeansModel], PredictorMixin[TabularData, torch.Tensor]):
    """
    K-means clustering fitted with Lloyd's algorithm on the full data. Used on its own or to find
    the starting means of a Gaussian mixture.

    The fitted centroids are available as :attr:`model_`, a :class:`KMeansModel`.
    """

    #: Whether the centroid shift dropped below the tolerance before the epoch limit.
    converged_: bool
    #: The number of Lloyd updates, not counting initialization.
    num_iter_: int
    #: The mean squared distance of the training data to the closest centroid.
    inertia_: float

    def __init__(
        self,
        num_clusters: int = 1,
        *,
        init_strategy: KMeansInitStrategy = "kmeans++",
        init_centroids: Optional[torch.Tensor] = None,
        convergence_tolerance: float = 1e-4,
        trainer_params: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            num_clusters: The number of centroids.
            init_strategy: How the initial centroids are chosen from the data.
            init_centroids: Initial centroids of shape ``[num_clusters, num_features]``. When
                given, ``init_strategy`` has no effect.
            convergence_tolerance: Lloyd updates stop once the Frobenius norm of the centroid
                shift falls below this value times the mean feature variance. Zero disables the
                check.
            trainer_params: Keyword arguments for the PyTorch Lightning trainers. Progress bars
                follow the package log level. ``max_epochs`` defaults to 300 and bounds the Lloyd
                updates only.
        """
        super().__init__(
            default_params=dict(max_epochs=300),
            user_params=trainer_params,
        )

        self.num_clusters = num_clusters
        self.init_strategy = init_strategy
        self.init_centroids = init_centroids
        self.convergence_tolerance = convergence_tolerance

    def fit(self, data: TabularData) -> KMeans:
        """
        Chooses initial centroids and runs Lloyd's algorithm until convergence or the epoch
        limit.

        Args:
            data: Data of shape ``[num_datapoints, num_features]``.

        Returns:
            The estimator itself.

        Raises:
            InvalidConfigurationError: If the parameters do not fit the data.
        """
        tensor = tensor_from_data(data)
        self._validate_params(tensor)

        config = KMeansModelConfig(
            num_clusters=self.num_clusters,
            num_features=tensor.size(1),
        )
        self._model = KMeansModel(config)
        loader = full_batch_loader(tensor)

        # Initial centroids
        if self.init_centroids is not None:
            self.model_.centroids.copy_(torch.as_tensor(self.init_centroids))
        else:
            logger.debug("Choosing initial centroids via %s...", self.init_strategy)
            init_module = KMeansInitLightningModule(self.model_, self.init_strategy)
            self.trainer(max_epochs=1).fit(init_module, loader)

        # The tolerance scales with the mean feature variance, floored for constant data
        if self.convergence_tolerance != 0:
            variances = torch.empty(config.num_features, dtype=torch.float64)
            module = FeatureVarianceLightningModule(variances)
            self.trainer(max_epochs=1).fit(module, loader)

            tolerance_multiplier = max(
                cast(float, variances.mean().item()), torch.finfo(torch.float64).eps
            )
            convergence_tolerance = self.convergence_tolerance * tolerance_multiplier
        else:
            convergence_tolerance = 0

        # Lloyd updates
        logger.debug("Fitting K-means...")
        trainer = self.trainer()
        module = KMeansLightningModule(
            self.model_,
            convergence_tolerance=convergence_tolerance,
        )
        trainer.fit(module, loader)

        max_epochs = trainer.max_epochs
        self.num_iter_ = module.num_updates
        self.converged_ = max_epochs is None or max_epochs < 0 or module.num_updates < max_epochs
        self.inertia_ = self.model_.distortion(tensor) / tensor.size(0)
        return self

    def predict(self, data: TabularData) -> torch.Tensor:
        """
        Returns the index of the closest centroid for every datapoint, as a tensor of shape
        ``[num_datapoints]``.
        """
        return self._predict(data, "assignments")

    def score(self, data: TabularData) -> float:
        """
        Returns the mean squared distance of the datapoints to their closest centroid.
        """
        return self.score_samples(data).mean().item()

    def score_samples(self, data: TabularData) -> torch.Tensor:
        """
        Returns the squared distance of every datapoint to its closest centroid, as a tensor of
        shape ``[num_datapoints]``.
        """
        return self._predict(data, "inertias")

    def transform(self, data: TabularData) -> torch.Tensor:
        """
        Maps the data to its distances from all centroids.

        Args:
            data: Data of shape ``[num_datapoints, num_features]``.

        Returns:
            A tensor of shape ``[num_datapoints, num_clusters]``.
        """
        return self._predict(data, "distances")

    def _predict(self, data: TabularData, target: str) -> torch.Tensor:
        loader = full_batch_loader(tensor_from_data(data))
        result = self.trainer().predict(
            KMeansLightningModule(self.model_, predict_target=target),  # type: ignore
            loader,
        )
        return torch.cat(cast(List[torch.Tensor], result))

    def _validate_params(self, data: torch.Tensor) -> None:
        if self.num_clusters <= 0:
            raise InvalidConfigurationError(
                f"Number of clusters must be positive, got {self.num_clusters}"
            )
        if self.num_clusters > data.size(0):
            raise InvalidConfigurationError(
                f"Number of clusters ({self.num_clusters}) must not exceed the number of "
                f"datapoints ({data.size(0)})"
            )
        if self.init_strategy not in ("random", "kmeans++"):
            raise InvalidConfigurationError(f"Unknown init strategy '{self.init_strategy}'")
        if self.convergence_tolerance < 0:
            raise InvalidConfigurationError(
                f"Convergence tolerance must be non-negative, got {self.convergence_tolerance}"
            )
        if self.init_centroids is not None and tuple(self.init_centroids.shape) != (
            self.num_clusters,
            data.size(1),
        ):
            raise InvalidConfigurationError(
                f"Initial centroids must have shape [{self.num_clusters}, {data.size(1)}], "
                f"got {list(self.init_centroids.shape)}"
            )
