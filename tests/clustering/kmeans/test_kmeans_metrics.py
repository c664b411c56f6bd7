# pylint: disable=missing-function-docstring
import torch
from emfit.clustering.kmeans.metrics import CentroidAggregator, FeatureVariance


def test_centroid_aggregator():
    aggregator = CentroidAggregator(3, 2)
    data = torch.as_tensor([[0.0, 0.0], [2.0, 2.0], [5.0, 1.0]], dtype=torch.float64)
    aggregator.update(data, torch.as_tensor([0, 0, 2]))

    actual = aggregator.compute()
    assert torch.equal(aggregator.cluster_counts, torch.as_tensor([2.0, 0.0, 1.0]).double())
    assert torch.equal(actual[0], torch.as_tensor([1.0, 1.0], dtype=torch.float64))
    assert torch.all(torch.isnan(actual[1]))
    assert torch.equal(actual[2], torch.as_tensor([5.0, 1.0], dtype=torch.float64))


def test_feature_variance():
    data = torch.randn(100, 3, dtype=torch.float64) * torch.as_tensor([1.0, 2.0, 3.0]).double()
    aggregator = FeatureVariance(3)
    aggregator.update(data[:40])
    aggregator.update(data[40:])

    assert torch.allclose(aggregator.compute(), data.var(0))


def test_feature_variance_single_datapoint():
    aggregator = FeatureVariance(2)
    aggregator.update(torch.as_tensor([[1.0, 2.0]], dtype=torch.float64))
    assert torch.equal(aggregator.compute(), torch.zeros(2, dtype=torch.float64))
