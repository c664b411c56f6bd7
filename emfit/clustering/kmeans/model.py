from dataclasses import dataclass
from typing import Tuple
import torch
from torch import nn
from emfit.core import ConfigModule


@dataclass
class KMeansModelConfig:
    """
    Shape of a :class:`KMeansModel`.
    """

    #: The number of centroids.
    num_clusters: int
    #: The dimensionality of the centroids.
    num_features: int


class KMeansModel(ConfigModule[KMeansModelConfig]):
    """
    Holds the centroids of a K-means clustering as a float64 buffer. Nothing in this module is
    trained by gradient descent.
    """

    def __init__(self, config: KMeansModelConfig):
        super().__init__(config)

        #: Buffer of shape ``[num_clusters, num_features]``.
        self.centroids: torch.Tensor
        self.register_buffer(
            "centroids",
            torch.empty(config.num_clusters, config.num_features, dtype=torch.float64),
        )

        self.reset_parameters()

    def reset_parameters(self) -> None:
        """
        Draws all centroids from a standard Normal.
        """
        nn.init.normal_(self.centroids)

    def forward(self, data: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Relates the datapoints to the centroids.

        Args:
            data: Data of shape ``[num_datapoints, num_features]``.

        Returns:
            - The Euclidean distances of shape ``[num_datapoints, num_clusters]``.
            - The index of the closest centroid per datapoint, shape ``[num_datapoints]``.
            - The squared distance to the closest centroid per datapoint (its inertia), shape
              ``[num_datapoints]``.
        """
        distances = torch.cdist(data, self.centroids)
        closest = distances.argmin(1, keepdim=True)
        inertias = distances.gather(1, closest).square()
        return distances, closest.squeeze(1), inertias.squeeze(1)

    def distortion(self, data: torch.Tensor) -> float:
        """
        Returns the summed inertia of all datapoints.
        """
        _, _, inertias = self.forward(data.to(self.centroids.dtype))
        return inertias.sum().item()
