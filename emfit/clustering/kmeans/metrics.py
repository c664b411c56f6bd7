from typing import Any, Callable, Optional
import torch
from torchmetrics import Metric


class CentroidAggregator(Metric):
    """
    Accumulates the sum and the number of datapoints assigned to each cluster. The computed
    centroids of clusters without any datapoint are ``NaN``, use :attr:`cluster_counts` to find
    them.
    """

    full_state_update = False

    def __init__(
        self,
        num_clusters: int,
        num_features: int,
        *,
        dtype: torch.dtype = torch.float64,
        dist_sync_fn: Optional[Callable[[Any], Any]] = None,
    ):
        super().__init__(dist_sync_fn=dist_sync_fn)  # type: ignore

        self.num_clusters = num_clusters
        self.num_features = num_features

        self.centroid_sums: torch.Tensor
        self.add_state(
            "centroid_sums",
            torch.zeros(num_clusters, num_features, dtype=dtype),
            dist_reduce_fx="sum",
        )

        self.cluster_counts: torch.Tensor
        self.add_state(
            "cluster_counts", torch.zeros(num_clusters, dtype=dtype), dist_reduce_fx="sum"
        )

    def update(self, data: torch.Tensor, assignments: torch.Tensor) -> None:
        # Data has shape [N, D], assignments have shape [N]
        index = assignments.unsqueeze(1).expand_as(data)
        self.centroid_sums.scatter_add_(0, index, data.to(self.centroid_sums.dtype))
        self.cluster_counts.add_(
            assignments.bincount(minlength=self.num_clusters).to(self.cluster_counts.dtype)
        )

    def compute(self) -> torch.Tensor:
        return self.centroid_sums / self.cluster_counts.unsqueeze(1)


class FeatureVariance(Metric):
    """
    Computes the unbiased variance of each feature over all datapoints in a single pass. For a
    single datapoint, the variance is zero.
    """

    full_state_update = False

    def __init__(
        self,
        num_features: int,
        *,
        dtype: torch.dtype = torch.float64,
        dist_sync_fn: Optional[Callable[[Any], Any]] = None,
    ):
        super().__init__(dist_sync_fn=dist_sync_fn)  # type: ignore

        self.sums: torch.Tensor
        self.add_state("sums", torch.zeros(num_features, dtype=dtype), dist_reduce_fx="sum")

        self.squared_sums: torch.Tensor
        self.add_state(
            "squared_sums", torch.zeros(num_features, dtype=dtype), dist_reduce_fx="sum"
        )

        self.count: torch.Tensor
        self.add_state("count", torch.zeros(1, dtype=dtype), dist_reduce_fx="sum")

    def update(self, data: torch.Tensor) -> None:
        self.sums.add_(data.sum(0))
        self.squared_sums.add_(data.square().sum(0))
        self.count.add_(data.size(0))

    def compute(self) -> torch.Tensor:
        means = self.sums / self.count
        sum_of_squares = self.squared_sums - self.count * means.square()
        variances = sum_of_squares / (self.count - 1).clamp(min=1)
        return variances.clamp(min=0)
