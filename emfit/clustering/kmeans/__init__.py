from .estimator import KMeans
from .lightning_module import KMeansLightningModule
from .model import KMeansModel, KMeansModelConfig
from .refined import RefinedStart
from .types import KMeansInitStrategy

__all__ = [
    "KMeans",
    "KMeansLightningModule",
    "KMeansModel",
    "KMeansModelConfig",
    "RefinedStart",
    "KMeansInitStrategy",
]
