# pylint: disable=missing-function-docstring
import math
import pytorch_lightning as pl
import torch
from emfit.bayes.gmm import (
    GaussianMixtureLightningModule,
    GaussianMixtureModel,
    GaussianMixtureModelConfig,
)
from emfit.bayes.gmm.lightning_module import GaussianMixtureKmeansInitLightningModule
from emfit.data import full_batch_loader
from tests._data.gmm import sample_two_blobs


def _trainer(max_epochs: int) -> pl.Trainer:
    return pl.Trainer(
        max_epochs=max_epochs,
        accelerator="cpu",
        devices=1,
        logger=False,
        enable_checkpointing=False,
        enable_progress_bar=False,
        enable_model_summary=False,
    )


def _two_blob_model() -> GaussianMixtureModel:
    model = GaussianMixtureModel(GaussianMixtureModelConfig(num_components=2, num_features=2))
    model.component_probs.fill_(0.5)
    model.means.copy_(torch.as_tensor([[1.0, -1.0], [9.0, 11.0]], dtype=torch.float64))
    return model


def test_training_increases_log_likelihood():
    data = sample_two_blobs(200)
    model = _two_blob_model()

    module = GaussianMixtureLightningModule(model, convergence_tolerance=0)
    _trainer(max_epochs=10).fit(module, full_batch_loader(data))

    history = module.log_likelihood_history
    assert len(history) == 10
    assert module.num_updates == 10
    assert not module.converged
    assert all(b >= a - 1e-9 * abs(a) for a, b in zip(history, history[1:]))
    assert model.log_likelihood(data) >= history[-1] - 1e-9 * abs(history[-1])


def test_training_converges():
    data = sample_two_blobs(200)
    model = _two_blob_model()

    module = GaussianMixtureLightningModule(model, convergence_tolerance=1e-6)
    _trainer(max_epochs=500).fit(module, full_batch_loader(data))

    assert module.converged
    assert len(module.log_likelihood_history) == module.num_updates + 1
    assert abs(module.log_likelihood_history[-1] - module.log_likelihood_history[-2]) < 1e-6

    # The model is not updated in the iteration in which convergence was detected
    assert math.isclose(
        model.log_likelihood(data), module.log_likelihood_history[-1], rel_tol=1e-12
    )


def test_collapsed_component_is_reset():
    data = sample_two_blobs(200)
    model = GaussianMixtureModel(GaussianMixtureModelConfig(num_components=3, num_features=2))
    model.component_probs.fill_(1 / 3)
    model.means.copy_(
        torch.as_tensor([[0.0, 0.0], [10.0, 10.0], [1000.0, -1000.0]], dtype=torch.float64)
    )

    module = GaussianMixtureLightningModule(model, convergence_tolerance=0, collapse_weight=1e-6)
    _trainer(max_epochs=1).fit(module, full_batch_loader(data))

    assert module.num_component_resets == 1
    assert math.isclose(model.component_probs.sum().item(), 1, abs_tol=1e-12)
    assert math.isclose(model.component_probs[2].item(), 1e-6 / (1 + 1e-6), rel_tol=1e-9)
    assert torch.any(torch.all(data == model.means[2], dim=1))
    assert torch.equal(model.covariances[2], torch.eye(2, dtype=torch.float64))


def test_degenerate_datapoint_still_updates_model():
    data = torch.as_tensor(
        [[0.0, 0.0], [0.1, 0.0], [0.0, 0.1], [1e160, 1e160]], dtype=torch.float64
    )
    model = GaussianMixtureModel(GaussianMixtureModelConfig(num_components=2, num_features=2))
    model.component_probs.fill_(0.5)
    model.means.copy_(torch.as_tensor([[0.0, 0.0], [0.1, 0.1]], dtype=torch.float64))

    module = GaussianMixtureLightningModule(model, convergence_tolerance=0)
    _trainer(max_epochs=1).fit(module, full_batch_loader(data))

    assert module.num_degenerate_iterations == 1
    assert module.num_updates == 1
    assert len(module.log_likelihood_history) == 1
    assert math.isfinite(module.log_likelihood_history[0])

    # The datapoint without finite density does not drag the components away
    assert torch.all(torch.isfinite(model.covariances))
    assert torch.all(model.means.abs() <= 0.1 + 1e-12)
    assert math.isclose(model.component_probs.sum().item(), 1, abs_tol=1e-12)
    assert math.isfinite(model.log_likelihood(data))

def test_kmeans_init():
    data = torch.as_tensor(
        [[0.0, 0.0], [2.0, 0.0], [0.0, 2.0], [2.0, 2.0], [10.0, 10.0]], dtype=torch.float64
    )
    model = GaussianMixtureModel(GaussianMixtureModelConfig(num_components=2, num_features=2))
    model.means.copy_(torch.as_tensor([[1.0, 1.0], [10.0, 10.0]], dtype=torch.float64))

    module = GaussianMixtureKmeansInitLightningModule(model)
    _trainer(max_epochs=1).fit(module, full_batch_loader(data))

    assert torch.allclose(model.component_probs, torch.full((2,), 0.5, dtype=torch.float64))
    expected = torch.as_tensor([[1.0, 0.0], [0.0, 1.0]], dtype=torch.float64)
    assert torch.allclose(model.covariances[0], expected)
    # The second cluster only contains a single datapoint
    assert torch.equal(model.covariances[1], torch.eye(2, dtype=torch.float64))
