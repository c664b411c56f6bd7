from __future__ import annotations
from typing import Literal

CovarianceConstraint = Literal["none", "diagonal", "positive_definite"]
CovarianceConstraint.__doc__ = """
The constraint that is enforced on the covariance matrices of all Gaussian components after every
M-step. Covariances are always stored as full matrices of shape
``[num_components, num_features, num_features]``.

- **none**: The raw covariance estimate is used as-is. This is the cheapest option but covariances
  may become singular, in which case training fails with a
  :class:`~emfit.core.NumericalError`.
- **diagonal**: All off-diagonal entries are set to zero, i.e. only per-feature variances are
  modeled.
- **positive_definite**: Eigenvalues below a small floor are clamped to the floor, guaranteeing
  that covariances are strictly positive-definite and, thus, invertible.
"""
