from __future__ import annotations
from typing import Union
import numpy as np
import numpy.typing as npt
import torch

#: Data that may be passed to estimators expecting 2-D tabular data, either a NumPy array or a
#: PyTorch tensor of shape ``[num_datapoints, dim]``. Estimators always operate on double
#: precision copies of the data.
TabularData = Union[
    npt.NDArray[np.float64],
    npt.NDArray[np.float32],
    torch.Tensor,
]
