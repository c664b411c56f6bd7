from .estimator import GaussianMixture
from .lightning_module import GaussianMixtureLightningModule
from .model import GaussianMixtureModel, GaussianMixtureModelConfig
from .types import GaussianMixtureInitStrategy

__all__ = [
    "GaussianMixture",
    "GaussianMixtureLightningModule",
    "GaussianMixtureModel",
    "GaussianMixtureModelConfig",
    "GaussianMixtureInitStrategy",
]
