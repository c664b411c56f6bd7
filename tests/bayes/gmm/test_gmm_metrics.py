# pylint: disable=protected-access,missing-function-docstring
import sklearn.mixture._gaussian_mixture as skgmm  # type: ignore
import torch
from emfit.bayes.gmm.metrics import CovarianceAggregator, MeanAggregator, PriorAggregator


def _tensor(values) -> torch.Tensor:
    return torch.as_tensor(values, dtype=torch.float64)


def test_prior_aggregator():
    aggregator = PriorAggregator(3)
    aggregator.reset()

    # Step 1: single batch
    responsibilities1 = _tensor([[0.3, 0.3, 0.4], [0.8, 0.1, 0.1], [0.4, 0.5, 0.1]])
    aggregator.update(responsibilities1)
    assert torch.allclose(aggregator.compute(), _tensor([0.5, 0.3, 0.2]))

    # Step 2: batch aggregation
    responsibilities2 = _tensor([[0.7, 0.2, 0.1], [0.5, 0.4, 0.1]])
    aggregator.update(responsibilities2)
    assert torch.allclose(aggregator.compute(), _tensor([0.54, 0.3, 0.16]))
    assert torch.allclose(aggregator.mass_share(), _tensor([0.54, 0.3, 0.16]))


def test_prior_aggregator_mass_share():
    aggregator = PriorAggregator(2)
    aggregator.update(_tensor([[1.0, 0.0], [1.0, 0.0], [1.0, 0.0]]))

    assert torch.equal(aggregator.mass_share(), _tensor([1.0, 0.0]))


def test_mean_aggregator():
    aggregator = MeanAggregator(3, 2)
    aggregator.reset()

    # Step 1: single batch
    data1 = _tensor([[5.0, 2.0], [3.0, 4.0], [1.0, 0.0]])
    responsibilities1 = _tensor([[0.3, 0.3, 0.4], [0.8, 0.1, 0.1], [0.4, 0.5, 0.1]])
    aggregator.update(data1, responsibilities1)
    expected = _tensor([[2.8667, 2.5333], [2.5556, 1.1111], [4.0, 2.0]])
    assert torch.allclose(aggregator.compute(), expected, atol=1e-4)

    # Step 2: batch aggregation
    data2 = _tensor([[8.0, 2.5], [1.5, 4.0]])
    responsibilities2 = _tensor([[0.7, 0.2, 0.1], [0.5, 0.4, 0.1]])
    aggregator.update(data2, responsibilities2)
    expected = _tensor([[3.9444, 2.7963], [3.0, 2.0667], [4.1875, 2.3125]])
    assert torch.allclose(aggregator.compute(), expected, atol=1e-4)


def test_covariance_aggregator():
    aggregator = CovarianceAggregator(3, 2)
    aggregator.reset()
    means = _tensor([[3.0, 2.5], [2.5, 1.0], [4.0, 2.0]])

    # Step 1: single batch
    data1 = _tensor([[5.0, 2.0], [3.0, 4.0], [1.0, 0.0]])
    responsibilities1 = _tensor([[0.3, 0.3, 0.4], [0.8, 0.1, 0.1], [0.4, 0.5, 0.1]])
    aggregator.update(data1, responsibilities1, means)
    expected = skgmm._estimate_gaussian_covariances_full(  # type: ignore
        responsibilities1.numpy(),
        data1.numpy(),
        responsibilities1.sum(0).numpy(),
        means.numpy(),
        0,
    )
    assert torch.allclose(aggregator.compute(), torch.from_numpy(expected))

    # Step 2: batch aggregation
    data2 = _tensor([[8.0, 2.5], [1.5, 4.0]])
    responsibilities2 = _tensor([[0.7, 0.2, 0.1], [0.5, 0.4, 0.1]])
    aggregator.update(data2, responsibilities2, means)
    actual = aggregator.compute()
    expected = skgmm._estimate_gaussian_covariances_full(  # type: ignore
        torch.cat([responsibilities1, responsibilities2]).numpy(),
        torch.cat([data1, data2]).numpy(),
        (responsibilities1.sum(0) + responsibilities2.sum(0)).numpy(),
        means.numpy(),
        0,
    )
    assert torch.allclose(actual, torch.from_numpy(expected))
    assert torch.equal(actual, actual.transpose(-2, -1))
