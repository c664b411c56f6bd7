# pylint: disable=missing-function-docstring
import pytest
import pytorch_lightning as pl
import torch
from emfit.clustering import KMeans, RefinedStart
from emfit.core import InvalidConfigurationError
from tests._data.gmm import sample_gmm


def test_single_full_sampling_equals_kmeans():
    data, _ = sample_gmm(num_datapoints=1000, num_features=2, num_components=3)

    pl.seed_everything(5)
    expected = KMeans(3).fit(data).model_.centroids

    pl.seed_everything(5)
    actual = RefinedStart(3, samplings=1, percentage=1.0).cluster(data)

    assert torch.allclose(actual, expected)


def test_refined_centroids():
    data = torch.cat(
        [
            torch.randn(1000, 2, dtype=torch.float64) - 20,
            torch.randn(1000, 2, dtype=torch.float64) + 20,
        ]
    )
    centroids = RefinedStart(2, samplings=10, percentage=0.05).cluster(data)

    assert centroids.size() == torch.Size([2, 2])
    true_centroids = torch.as_tensor([[-20.0, -20.0], [20.0, 20.0]], dtype=torch.float64)
    for true_centroid in true_centroids:
        assert (centroids - true_centroid).norm(dim=1).min() < 0.5


def test_small_percentage_uses_at_least_num_clusters_datapoints():
    data = torch.randn(100, 2, dtype=torch.float64)
    centroids = RefinedStart(5, samplings=3, percentage=0.01).cluster(data)

    assert centroids.size() == torch.Size([5, 2])
    assert torch.all(torch.isfinite(centroids))


@pytest.mark.parametrize(
    ("samplings", "percentage"),
    [(0, 0.5), (-1, 0.5), (10, 0.0), (10, -0.1), (10, 1.01)],
)
def test_invalid_configuration(samplings: int, percentage: float):
    with pytest.raises(InvalidConfigurationError):
        RefinedStart(2, samplings=samplings, percentage=percentage)


def test_too_many_clusters():
    with pytest.raises(InvalidConfigurationError):
        RefinedStart(20, samplings=1, percentage=1.0).cluster(torch.randn(10, 2))
