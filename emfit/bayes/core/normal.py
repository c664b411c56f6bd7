import math
import torch
from emfit.core.exception import NumericalError


def cholesky_precision(covariances: torch.Tensor) -> torch.Tensor:
    """
    Factorizes the precision matrices belonging to the given covariances.

    Args:
        covariances: Covariances of shape ``[num_components, dim, dim]`` or a single covariance
            of shape ``[dim, dim]``.

    Returns:
        Upper-triangular factors ``U`` of the same shape with ``U U^T`` equal to the inverse
        covariance.

    Raises:
        NumericalError: If the Cholesky decomposition of any covariance fails.
    """
    lower, info = torch.linalg.cholesky_ex(covariances)
    if (info != 0).any() or not torch.isfinite(lower).all():
        if covariances.dim() == 3:
            failing = (info != 0).nonzero().flatten().tolist()
            raise NumericalError(
                f"Covariance matrices of components {failing} are not positive-definite"
            )
        raise NumericalError("Covariance matrix is not positive-definite")

    identity = torch.eye(covariances.size(-1), dtype=covariances.dtype, device=covariances.device)
    identity = identity.expand_as(covariances)
    # inv(L)^T is upper-triangular and inv(L)^T inv(L) = inv(L L^T)
    return torch.linalg.solve_triangular(lower, identity, upper=False).transpose(-2, -1)


def log_normal(
    x: torch.Tensor,
    means: torch.Tensor,
    precisions_cholesky: torch.Tensor,
) -> torch.Tensor:
    """
    Evaluates the log-density of several multivariate Normals at every datapoint.

    Args:
        x: Data of shape ``[num_datapoints, dim]``.
        means: Means of shape ``[num_components, dim]``.
        precisions_cholesky: Upper-triangular precision factors of shape
            ``[num_components, dim, dim]``, as returned by :func:`cholesky_precision`.

    Returns:
        Log-densities of shape ``[num_datapoints, num_components]``.
    """
    mahalanobis = x.new_empty((x.size(0), means.size(0)))
    # One component at a time keeps memory at O(N * dim)
    for k, (mean, factor) in enumerate(zip(means, precisions_cholesky)):
        mahalanobis[:, k] = (x - mean).matmul(factor).square().sum(1)

    half_logdet = precisions_cholesky.diagonal(dim1=-2, dim2=-1).log().sum(-1)
    return half_logdet - 0.5 * (x.size(1) * math.log(2 * math.pi) + mahalanobis)


def sample_normal(
    num: int,
    mean: torch.Tensor,
    precision_cholesky: torch.Tensor,
) -> torch.Tensor:
    """
    Draws ``num`` samples of shape ``[num, dim]`` from the Normal with the given mean and
    upper-triangular precision factor.
    """
    noise = torch.randn(num, mean.size(0), dtype=mean.dtype, device=mean.device)
    identity = torch.eye(mean.size(0), dtype=precision_cholesky.dtype, device=mean.device)
    # inv(U)^T is a lower Cholesky factor of the covariance
    covariance_factor = torch.linalg.solve_triangular(precision_cholesky, identity, upper=True).t()
    return mean + noise.matmul(covariance_factor.t())
