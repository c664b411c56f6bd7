# pylint: disable=missing-function-docstring
import pytest
import torch
from emfit.bayes.core import constrain_covariance
from emfit.core import InvalidConfigurationError, NumericalError
from tests._data.normal import sample_full_covars


@pytest.mark.parametrize("covars", sample_full_covars([5, 3], [3, 10]))
def test_constrain_none(covars: torch.Tensor):
    actual = constrain_covariance(covars, "none")
    assert torch.equal(actual, covars)


@pytest.mark.parametrize("covars", sample_full_covars([5, 3], [3, 10]))
def test_constrain_diagonal(covars: torch.Tensor):
    actual = constrain_covariance(covars, "diagonal")

    off_diagonal = ~torch.eye(covars.size(-1), dtype=torch.bool)
    assert torch.all(actual[:, off_diagonal] == 0)
    assert torch.equal(actual.diagonal(dim1=-2, dim2=-1), covars.diagonal(dim1=-2, dim2=-1))


@pytest.mark.parametrize("covars", sample_full_covars([5, 3], [3, 10]))
def test_constrain_positive_definite_keeps_valid(covars: torch.Tensor):
    actual = constrain_covariance(covars, "positive_definite", eigenvalue_floor=1e-10)
    assert torch.equal(actual, covars)


@pytest.mark.parametrize("eigenvalue_floor", [1e-10, 1e-6, 1e-2])
def test_constrain_positive_definite_clamps(eigenvalue_floor: float):
    covars = torch.stack(
        [
            torch.as_tensor([[1.0, 2.0], [2.0, 4.0]], dtype=torch.float64),
            torch.zeros(2, 2, dtype=torch.float64),
            torch.as_tensor([[1.0, 3.0], [3.0, 1.0]], dtype=torch.float64),
            torch.as_tensor([[2.0, 0.5], [0.5, 1.0]], dtype=torch.float64),
        ]
    )
    actual = constrain_covariance(covars, "positive_definite", eigenvalue_floor=eigenvalue_floor)

    assert torch.equal(actual, actual.transpose(-2, -1))
    eigenvalues = torch.linalg.eigvalsh(actual)
    assert torch.all(eigenvalues >= eigenvalue_floor - 1e-12)
    assert torch.all(torch.linalg.cholesky_ex(actual).info == 0)

    # Valid matrices must not be altered
    assert torch.equal(actual[3], covars[3])


def test_constrain_positive_definite_preserves_eigenvectors():
    covar = torch.as_tensor([[1.0, 2.0], [2.0, 4.0]], dtype=torch.float64)
    actual = constrain_covariance(covar.unsqueeze(0), "positive_definite", 1e-3)[0]

    # The eigenvector of the positive eigenvalue is unchanged
    direction = torch.as_tensor([1.0, 2.0], dtype=torch.float64) / 5**0.5
    assert torch.allclose(actual.matmul(direction), 5 * direction)


def test_constrain_positive_definite_non_finite():
    covars = torch.full((1, 2, 2), float("inf"), dtype=torch.float64)
    with pytest.raises(NumericalError):
        constrain_covariance(covars, "positive_definite")


def test_constrain_unknown():
    covars = torch.eye(2, dtype=torch.float64).unsqueeze(0)
    with pytest.raises(InvalidConfigurationError):
        constrain_covariance(covars, "spherical")  # type: ignore


@pytest.mark.parametrize("scale", [1e6, 1e9])
def test_constrain_positive_definite_large_scale(scale: float):
    direction = torch.as_tensor([1.0, 2.0], dtype=torch.float64)
    covar = direction.outer(direction) * scale**2
    actual = constrain_covariance(covar.unsqueeze(0), "positive_definite", 1e-10)

    assert torch.equal(actual, actual.transpose(-2, -1))
    assert torch.all(torch.linalg.eigvalsh(actual) > 0)
    assert torch.all(torch.linalg.cholesky_ex(actual).info == 0)
    assert torch.allclose(actual[0], covar, rtol=1e-9)
