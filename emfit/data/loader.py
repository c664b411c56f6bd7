import torch
from torch.utils.data import DataLoader, Dataset
from emfit.core.exception import InvalidConfigurationError
from .types import TabularData


class FullBatchDataset(Dataset[torch.Tensor]):
    """
    Dataset which consists of a single item, namely the entire data tensor. EM and Lloyd's
    algorithm both require statistics over all datapoints before updating a model, hence, every
    epoch runs exactly one step on the full data.
    """

    def __init__(self, data: torch.Tensor):
        """
        Args:
            data: A tensor of shape ``[num_datapoints, num_features]``.
        """
        self.data = data

    def __len__(self) -> int:
        return 1

    def __getitem__(self, index: int) -> torch.Tensor:
        return self.data


def tensor_from_data(data: TabularData) -> torch.Tensor:
    """
    Converts the provided tabular data into a double precision tensor and validates its shape.

    Args:
        data: The data to convert.

    Returns:
        A tensor of shape ``[num_datapoints, num_features]`` with dtype ``torch.float64``. The
        input is never modified in place.
    """
    tensor = torch.as_tensor(data, dtype=torch.float64)
    if tensor.dim() != 2:
        raise InvalidConfigurationError(
            f"Data must be two-dimensional with shape [num_datapoints, num_features], "
            f"got shape {list(tensor.shape)}"
        )
    if tensor.size(0) == 0 or tensor.size(1) == 0:
        raise InvalidConfigurationError("Data must contain at least one datapoint and feature")
    if not torch.isfinite(tensor).all():
        raise InvalidConfigurationError("Data must only contain finite values")
    return tensor


def full_batch_loader(data: torch.Tensor) -> DataLoader[torch.Tensor]:
    """
    Returns a data loader yielding the full data as a single batch in every epoch.

    Args:
        data: A tensor of shape ``[num_datapoints, num_features]``.

    Returns:
        The data loader.
    """
    # Automatic batching is disabled so that the tensor is passed through without collation
    return DataLoader(FullBatchDataset(data), batch_size=None)
