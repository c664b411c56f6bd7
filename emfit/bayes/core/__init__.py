from .constraints import constrain_covariance
from .normal import cholesky_precision, log_normal, sample_normal
from .types import CovarianceConstraint

__all__ = [
    "constrain_covariance",
    "cholesky_precision",
    "log_normal",
    "sample_normal",
    "CovarianceConstraint",
]
