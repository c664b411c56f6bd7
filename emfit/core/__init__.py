from .estimator import Estimator, PredictorMixin
from .exception import (
    DimensionalityMismatchError,
    InvalidConfigurationError,
    NotFittedError,
    NoValidModelError,
    NumericalError,
)
from .lightning_module import NonparametricLightningModule
from .module import ConfigModule

__all__ = [
    "Estimator",
    "PredictorMixin",
    "DimensionalityMismatchError",
    "InvalidConfigurationError",
    "NotFittedError",
    "NoValidModelError",
    "NumericalError",
    "NonparametricLightningModule",
    "ConfigModule",
]
