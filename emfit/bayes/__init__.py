from .core import CovarianceConstraint
from .gmm import GaussianMixture

__all__ = ["CovarianceConstraint", "GaussianMixture"]
