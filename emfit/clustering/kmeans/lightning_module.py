# pylint: disable=abstract-method
import math
from typing import List, Literal
import pytorch_lightning as pl
import torch
from pytorch_lightning.callbacks import EarlyStopping
from torchmetrics import MeanMetric
from emfit.core import NonparametricLightningModule
from .metrics import CentroidAggregator, FeatureVariance
from .model import KMeansModel
from .types import KMeansInitStrategy

# -------------------------------------------------------------------------------------------------
# TRAINING


class KMeansLightningModule(NonparametricLightningModule):
    """
    Lightning module running Lloyd's algorithm. Every epoch assigns all datapoints to their
    closest centroid and moves each centroid to the mean of its datapoints. A centroid without any
    datapoint stays where it is.
    """

    def __init__(
        self,
        model: KMeansModel,
        convergence_tolerance: float = 1e-4,
        predict_target: Literal["assignments", "distances", "inertias"] = "assignments",
    ):
        """
        Args:
            model: The model whose centroids are optimized.
            convergence_tolerance: Training stops once the Frobenius norm of the centroid shift
                within an epoch drops below this value. Set to zero to train for the maximum
                number of epochs.
            predict_target: The output of :meth:`predict_step`.
        """
        super().__init__()

        self.model = model
        self.convergence_tolerance = convergence_tolerance
        self.predict_target = predict_target

        self.centroid_aggregator = CentroidAggregator(
            num_clusters=self.model.config.num_clusters,
            num_features=self.model.config.num_features,
            dist_sync_fn=self.all_gather,
        )
        self.metric_inertia = MeanMetric()

        #: The number of centroid updates that were run.
        self.num_updates = 0

    def configure_callbacks(self) -> List[pl.Callback]:
        if self.convergence_tolerance == 0:
            return []
        early_stopping = EarlyStopping(
            "centroid_shift",
            patience=100000,
            stopping_threshold=self.convergence_tolerance,
            check_on_train_epoch_end=True,
        )
        return [early_stopping]

    def on_train_epoch_start(self) -> None:
        self.centroid_aggregator.reset()

    def nonparametric_training_step(self, batch: torch.Tensor, batch_idx: int) -> None:
        _, assignments, inertias = self.model.forward(batch)
        self.centroid_aggregator.update(batch, assignments)

        self.metric_inertia.update(inertias)
        self.log(
            "inertia",
            self.metric_inertia,
            on_step=False,
            on_epoch=True,
            prog_bar=True,
            batch_size=batch.size(0),
        )

    def nonparametric_training_epoch_end(self) -> None:
        centroids = self.centroid_aggregator.compute()
        empty = (self.centroid_aggregator.cluster_counts == 0).unsqueeze(1)
        centroids = torch.where(empty, self.model.centroids, centroids)

        self.log("centroid_shift", torch.linalg.norm(centroids - self.model.centroids))
        self.model.centroids.copy_(centroids)
        self.num_updates += 1

    def predict_step(self, batch: torch.Tensor, batch_idx: int) -> torch.Tensor:
        distances, assignments, inertias = self.model.forward(batch)
        outputs = {"distances": distances, "assignments": assignments, "inertias": inertias}
        return outputs[self.predict_target]


# -------------------------------------------------------------------------------------------------
# INIT STRATEGIES


class KMeansInitLightningModule(NonparametricLightningModule):
    """
    Lightning module choosing the initial centroids of a K-means model from the full data within
    a single epoch.

    With ``random``, the centroids are distinct datapoints drawn uniformly. With ``kmeans++``, the
    first centroid is drawn uniformly. For each further centroid, ``2 + log(k)`` candidates are
    drawn with probability proportional to their squared distance to the closest centroid so far,
    and the candidate yielding the lowest inertia is kept.
    """

    def __init__(self, model: KMeansModel, init_strategy: KMeansInitStrategy = "kmeans++"):
        """
        Args:
            model: The model whose centroids to initialize.
            init_strategy: The strategy for choosing the centroids.
        """
        super().__init__()

        self.model = model
        self.init_strategy = init_strategy
        self.num_candidates = 2 + int(math.log(self.model.config.num_clusters))

    def nonparametric_training_step(self, batch: torch.Tensor, batch_idx: int) -> None:
        num_clusters = self.model.config.num_clusters
        if self.init_strategy == "random":
            choices = torch.randperm(batch.size(0), device=batch.device)[:num_clusters]
            self.model.centroids.copy_(batch[choices])
            return

        first = torch.randint(batch.size(0), (1,), device=batch.device)
        self.model.centroids[0].copy_(batch[first[0]])

        eps = torch.finfo(batch.dtype).eps
        shortest_distances = torch.cdist(batch, self.model.centroids[:1]).squeeze(1).square()
        for i in range(1, num_clusters):
            # Points on top of a centroid are only drawn if all points are
            samples = (shortest_distances + eps).multinomial(self.num_candidates, replacement=True)
            candidates = batch[samples]

            distances = torch.cdist(batch, candidates).square()
            updated_distances = torch.minimum(distances, shortest_distances.unsqueeze(1))
            choice = updated_distances.sum(0).argmin()

            self.model.centroids[i].copy_(candidates[choice])
            shortest_distances = updated_distances[:, choice]


# -------------------------------------------------------------------------------------------------
# MISC


class FeatureVarianceLightningModule(NonparametricLightningModule):
    """
    Lightning module computing the variance of every feature in a single epoch.
    """

    def __init__(self, variances: torch.Tensor):
        """
        Args:
            variances: A tensor of shape ``[num_features]`` that the variances are written to.
        """
        super().__init__()

        self.variance_aggregator = FeatureVariance(
            num_features=variances.size(0),
            dist_sync_fn=self.all_gather,
        )

        self.variances: torch.Tensor
        self.register_buffer("variances", variances, persistent=False)

    def nonparametric_training_step(self, batch: torch.Tensor, batch_idx: int) -> None:
        self.variance_aggregator.update(batch)

    def nonparametric_training_epoch_end(self) -> None:
        self.variances.copy_(self.variance_aggregator.compute())
