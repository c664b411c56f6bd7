import torch
from emfit.core.exception import InvalidConfigurationError, NumericalError
from .types import CovarianceConstraint

_ROUNDING_FACTOR = 10


def constrain_covariance(
    covariances: torch.Tensor,
    constraint: CovarianceConstraint,
    eigenvalue_floor: float = 1e-10,
) -> torch.Tensor:
    """
    Applies a covariance constraint to a batch of covariance matrices.

    Args:
        covariances: A tensor of shape ``[num_components, dim, dim]`` (or ``[dim, dim]``) with
            symmetric covariance matrices.
        constraint: The constraint to apply.
        eigenvalue_floor: The smallest eigenvalue that is permitted when applying the
            ``positive_definite`` constraint. For matrices with large eigenvalues, the floor is
            raised to the rounding error of their eigendecomposition.

    Returns:
        A tensor of the same shape as ``covariances`` satisfying the constraint. For the
        ``positive_definite`` constraint, matrices whose eigenvalues are all at least the floor
        are returned unchanged.
    """
    if constraint == "none":
        return covariances
    if constraint == "diagonal":
        return torch.diag_embed(covariances.diagonal(dim1=-2, dim2=-1))
    if constraint == "positive_definite":
        return _clamp_eigenvalues(covariances, eigenvalue_floor)
    raise InvalidConfigurationError(f"Unknown covariance constraint `{constraint}`")


def _clamp_eigenvalues(covariances: torch.Tensor, eigenvalue_floor: float) -> torch.Tensor:
    if not torch.isfinite(covariances).all():
        raise NumericalError("Covariance matrices contain non-finite values")

    eigenvalues, eigenvectors = torch.linalg.eigh(covariances)

    # Eigenvalues below the rounding error of the decomposition cannot be told apart from zero
    eps = torch.finfo(covariances.dtype).eps
    magnitude = eigenvalues.abs().amax(-1, keepdim=True)
    relative_floor = _ROUNDING_FACTOR * covariances.size(-1) * eps * magnitude
    floor = relative_floor.clamp(min=eigenvalue_floor)

    requires_repair = (eigenvalues < floor).any(-1)
    if not requires_repair.any():
        return covariances

    clamped = torch.maximum(eigenvalues, floor)
    repaired = (eigenvectors * clamped.unsqueeze(-2)).matmul(eigenvectors.transpose(-2, -1))
    # Reconstruction introduces rounding errors, the mean with the transpose is exactly symmetric
    repaired = (repaired + repaired.transpose(-2, -1)) / 2

    # Rounding may still leave the smallest eigenvalue short of the floor
    shortfall = (floor.squeeze(-1) - torch.linalg.eigvalsh(repaired)[..., 0]).clamp(min=0)
    margin = relative_floor.squeeze(-1)
    shift = torch.where(shortfall > 0, shortfall + margin, torch.zeros_like(shortfall))
    repaired = repaired + shift.unsqueeze(-1).unsqueeze(-1) * torch.eye(
        repaired.size(-1), dtype=repaired.dtype, device=repaired.device
    )
    return torch.where(requires_repair.unsqueeze(-1).unsqueeze(-1), repaired, covariances)
