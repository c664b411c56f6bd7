import logging
import warnings
from .bayes import GaussianMixture
from .clustering import KMeans, RefinedStart

# This is taken from PyTorch Lightning and ensures that logging for this package is enabled
_root_logger = logging.getLogger()
_logger = logging.getLogger(__name__)
_logger.setLevel(logging.INFO)
if not _root_logger.hasHandlers():
    _logger.addHandler(logging.StreamHandler())
    _logger.propagate = False

# Every epoch consists of a single batch holding the full data
warnings.filterwarnings("ignore", ".*Consider increasing the value of the `num_workers` argument*")
warnings.filterwarnings(
    "ignore", ".*number of training batches.*smaller than the logging interval*"
)


def set_logging_level(level: int) -> None:
    """
    Enables or disables logging for the entire module. By default, logging is enabled at the
    ``INFO`` level. Progress bars and model summaries of PyTorch Lightning are only shown for
    estimators created while the level is at most ``INFO`` or ``DEBUG``, respectively.

    Args:
        level: The log level to set.
    """
    _logger.setLevel(level)
    for name in ("pytorch_lightning", "lightning.pytorch", "lightning_fabric"):
        logging.getLogger(name).setLevel(level)


__all__ = [
    "GaussianMixture",
    "KMeans",
    "RefinedStart",
    "set_logging_level",
]
