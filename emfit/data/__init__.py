from .loader import full_batch_loader, FullBatchDataset, tensor_from_data
from .types import TabularData

__all__ = [
    "full_batch_loader",
    "FullBatchDataset",
    "tensor_from_data",
    "TabularData",
]
