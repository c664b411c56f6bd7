from abc import ABC, abstractmethod
from typing import Optional
import pytorch_lightning as pl
import torch
from torch import nn


class NonparametricLightningModule(pl.LightningModule, ABC):
    """
    Base class for lightning modules whose models only hold buffers. The buffers are updated in
    closed form at the end of every epoch instead of by an optimizer, so one epoch over the full
    data corresponds to one iteration of the fitting algorithm.
    """

    def __init__(self):
        super().__init__()
        self.automatic_optimization = False

        # DDP refuses to wrap modules without any parameter
        self.register_parameter("__ddp_dummy__", nn.Parameter(torch.empty(1)))

    def configure_optimizers(self) -> None:
        return None

    def training_step(self, batch: torch.Tensor, batch_idx: int) -> Optional[torch.Tensor]:
        self.nonparametric_training_step(batch, batch_idx)
        return None

    def on_train_epoch_end(self) -> None:
        self.nonparametric_training_epoch_end()

    @abstractmethod
    def nonparametric_training_step(self, batch: torch.Tensor, batch_idx: int) -> None:
        """
        Consumes a batch of data. Unlike :meth:`training_step`, nothing is returned.
        """

    def nonparametric_training_epoch_end(self) -> None:
        """
        Applies the update accumulated over the epoch. The default does nothing.
        """
