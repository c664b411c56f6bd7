from typing import Any, Callable, Optional
import torch
from torchmetrics import Metric


class PriorAggregator(Metric):
    """
    Sums the responsibilities per component. :meth:`compute` yields the mixture weights,
    :meth:`mass_share` the fraction of datapoints each component explains.
    """

    full_state_update = False

    def __init__(
        self,
        num_components: int,
        *,
        dtype: torch.dtype = torch.float64,
        dist_sync_fn: Optional[Callable[[Any], Any]] = None,
    ):
        super().__init__(dist_sync_fn=dist_sync_fn)  # type: ignore

        self.responsibilities: torch.Tensor
        self.add_state(
            "responsibilities", torch.zeros(num_components, dtype=dtype), dist_reduce_fx="sum"
        )

        self.num_datapoints: torch.Tensor
        self.add_state("num_datapoints", torch.zeros(1, dtype=dtype), dist_reduce_fx="sum")

    def update(self, responsibilities: torch.Tensor) -> None:
        # Responsibilities have shape [N, K]
        self.responsibilities.add_(responsibilities.sum(0))
        self.num_datapoints.add_(responsibilities.size(0))

    def compute(self) -> torch.Tensor:
        return self.responsibilities / self.responsibilities.sum()

    def mass_share(self) -> torch.Tensor:
        """
        Returns the summed responsibilities divided by the number of datapoints.
        """
        return self.responsibilities / self.num_datapoints


class MeanAggregator(Metric):
    """
    Accumulates the responsibility-weighted sum of the datapoints per component.
    """

    full_state_update = False

    def __init__(
        self,
        num_components: int,
        num_features: int,
        *,
        dtype: torch.dtype = torch.float64,
        dist_sync_fn: Optional[Callable[[Any], Any]] = None,
    ):
        super().__init__(dist_sync_fn=dist_sync_fn)  # type: ignore

        self.mean_sum: torch.Tensor
        self.add_state(
            "mean_sum",
            torch.zeros(num_components, num_features, dtype=dtype),
            dist_reduce_fx="sum",
        )

        self.component_weights: torch.Tensor
        self.add_state(
            "component_weights", torch.zeros(num_components, dtype=dtype), dist_reduce_fx="sum"
        )

    def update(self, data: torch.Tensor, responsibilities: torch.Tensor) -> None:
        # Data has shape [N, D]
        # Responsibilities have shape [N, K]
        self.mean_sum.add_(responsibilities.t().matmul(data))
        self.component_weights.add_(responsibilities.sum(0))

    def compute(self) -> torch.Tensor:
        return self.mean_sum / self.component_weights.unsqueeze(1)


class CovarianceAggregator(Metric):
    """
    Accumulates the responsibility-weighted scatter matrices of all components around the given
    means. The computed covariances are symmetrized but not constrained.
    """

    full_state_update = False

    def __init__(
        self,
        num_components: int,
        num_features: int,
        *,
        dtype: torch.dtype = torch.float64,
        dist_sync_fn: Optional[Callable[[Any], Any]] = None,
    ):
        super().__init__(dist_sync_fn=dist_sync_fn)  # type: ignore

        self.num_components = num_components
        self.num_features = num_features

        self.covariance_sum: torch.Tensor
        self.add_state(
            "covariance_sum",
            torch.zeros(num_components, num_features, num_features, dtype=dtype),
            dist_reduce_fx="sum",
        )

        self.component_weights: torch.Tensor
        self.add_state(
            "component_weights", torch.zeros(num_components, dtype=dtype), dist_reduce_fx="sum"
        )

    def update(
        self, data: torch.Tensor, responsibilities: torch.Tensor, means: torch.Tensor
    ) -> None:
        self.component_weights.add_(responsibilities.sum(0))

        for k in range(self.num_components):
            centered = data - means[k]
            weighted = responsibilities[:, k].unsqueeze(1) * centered
            self.covariance_sum[k].add_(weighted.t().matmul(centered))

    def compute(self) -> torch.Tensor:
        result = self.covariance_sum / self.component_weights.unsqueeze(-1).unsqueeze(-1)
        return (result + result.transpose(-2, -1)) / 2
