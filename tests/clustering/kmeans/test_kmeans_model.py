# pylint: disable=missing-function-docstring
import math
from pathlib import Path
import torch
from emfit.clustering.kmeans import KMeansModel, KMeansModelConfig


def _fixture_model() -> KMeansModel:
    config = KMeansModelConfig(num_clusters=2, num_features=2)
    model = KMeansModel(config)
    model.centroids.copy_(torch.as_tensor([[0.0, 0.0], [2.0, 2.0]], dtype=torch.float64))
    return model


def test_forward():
    model = _fixture_model()

    X = torch.as_tensor([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0], [-1.0, 4.0]], dtype=torch.float64)
    distances, assignments, inertias = model.forward(X)

    expected_distances = torch.as_tensor(
        [[0.0, 8.0], [2.0, 2.0], [8.0, 0.0], [17.0, 13.0]], dtype=torch.float64
    ).sqrt()
    expected_assignments = torch.as_tensor([0, 0, 1, 1])
    expected_inertias = torch.as_tensor([0.0, 2.0, 0.0, 13.0], dtype=torch.float64)

    assert torch.allclose(distances, expected_distances)
    assert torch.all(assignments == expected_assignments)
    assert torch.allclose(inertias, expected_inertias)


def test_distortion():
    model = _fixture_model()
    X = torch.as_tensor([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0], [-1.0, 4.0]])
    assert math.isclose(model.distortion(X), 15.0)


def test_save_load(tmp_path: Path):
    model = _fixture_model()
    model.save(tmp_path)

    loaded = KMeansModel.load(tmp_path)
    assert loaded.config == model.config
    assert torch.equal(loaded.centroids, model.centroids)
