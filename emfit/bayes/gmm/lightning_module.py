from __future__ import annotations
import logging
from typing import List, Tuple
import torch
from torchmetrics import SumMetric
from emfit.bayes.core import constrain_covariance, CovarianceConstraint
from emfit.core import NonparametricLightningModule, NumericalError
from .metrics import CovarianceAggregator, MeanAggregator, PriorAggregator
from .model import GaussianMixtureModel, summed_log_likelihood

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------------------------------------
# TRAINING


class GaussianMixtureLightningModule(NonparametricLightningModule):
    """
    Lightning module for fitting a Gaussian mixture model via the EM algorithm. Every epoch runs
    one EM iteration on the full data: the E-step and the accumulation of sufficient statistics
    happen in the training step, the M-step at the end of the epoch.

    Two numerical repairs are applied during training:

    - Datapoints for which no component yields a finite density receive uniform responsibilities
      and are left out of the log-likelihood and the M-step. The iteration is counted in
      :attr:`num_degenerate_iterations`.
    - Components whose share of the responsibility mass drops below ``collapse_threshold`` are
      reset to a randomly chosen datapoint with identity covariance and a small weight. Resets are
      counted in :attr:`num_component_resets`.
    """

    def __init__(
        self,
        model: GaussianMixtureModel,
        covariance_constraint: CovarianceConstraint = "positive_definite",
        convergence_tolerance: float = 1e-10,
        eigenvalue_floor: float = 1e-10,
        collapse_threshold: float = 1e-10,
        collapse_weight: float = 1e-6,
    ):
        """
        Args:
            model: The mixture whose parameters are updated in place.
            covariance_constraint: The constraint to apply to the covariances after every M-step.
            convergence_tolerance: The change in the total log-likelihood between two iterations
                below which training is considered converged. If set to zero, training runs for
                the maximum number of epochs of the trainer.
            eigenvalue_floor: The minimum eigenvalue of covariances under the
                ``positive_definite`` constraint.
            collapse_threshold: The share of the responsibility mass below which a component is
                considered collapsed.
            collapse_weight: The weight that is assigned to a component after it has been reset
                (prior to renormalizing all weights).
        """
        super().__init__()

        self.model = model
        self.covariance_constraint = covariance_constraint
        self.convergence_tolerance = convergence_tolerance
        self.eigenvalue_floor = eigenvalue_floor
        self.collapse_threshold = collapse_threshold
        self.collapse_weight = collapse_weight

        num_components = self.model.config.num_components
        num_features = self.model.config.num_features

        self.prior_aggregator = PriorAggregator(
            num_components=num_components,
            dist_sync_fn=self.all_gather,
        )
        self.mean_aggregator = MeanAggregator(
            num_components=num_components,
            num_features=num_features,
            dist_sync_fn=self.all_gather,
        )
        self.covar_aggregator = CovarianceAggregator(
            num_components=num_components,
            num_features=num_features,
            dist_sync_fn=self.all_gather,
        )
        self.reseed_candidates: torch.Tensor
        self.register_buffer(
            "reseed_candidates",
            torch.empty(num_components, num_features, dtype=torch.float64),
            persistent=False,
        )

        self.metric_log_likelihood = SumMetric()

        #: The total log-likelihood of the data, computed in the E-step of every iteration.
        self.log_likelihood_history: List[float] = []
        #: Whether training stopped because the log-likelihood converged.
        self.converged = False
        #: The number of M-steps that were run.
        self.num_updates = 0
        self.num_degenerate_iterations = 0
        self.num_component_resets = 0

        self._skip_update = False

    def on_train_epoch_start(self) -> None:
        self.prior_aggregator.reset()
        self.mean_aggregator.reset()
        self.covar_aggregator.reset()
        self._skip_update = False

    def nonparametric_training_step(self, batch: torch.Tensor, _batch_idx: int) -> None:
        # E-step
        log_responsibilities, log_probs = self.model.forward(batch)

        try:
            log_likelihood = summed_log_likelihood(log_probs)
        except NumericalError as e:
            raise NumericalError(f"Iteration {self.current_epoch}: {e}") from e

        finite = torch.isfinite(log_probs)
        num_degenerate = int((~finite).sum().item())
        if num_degenerate > 0:
            self.num_degenerate_iterations += 1
            logger.warning(
                "Iteration %d: %d datapoint(s) have vanishing density under all components, "
                "leaving them out of the update.",
                self.current_epoch,
                num_degenerate,
            )

        self.metric_log_likelihood.update(log_probs[finite])
        self.log(
            "log_likelihood",
            self.metric_log_likelihood,
            on_step=False,
            on_epoch=True,
            prog_bar=True,
            batch_size=batch.size(0),
        )

        if self._has_converged(log_likelihood):
            logger.debug("Log-likelihood converged after %d iterations.", self.num_updates)
            self.converged = True
            self._skip_update = True
            self.trainer.should_stop = True
        self.log_likelihood_history.append(log_likelihood)
        if self._skip_update:
            return

        # Sufficient statistics for the M-step, datapoints with vanishing density are left out
        if num_degenerate > 0:
            batch = batch[finite]
            log_responsibilities = log_responsibilities[finite]
        responsibilities = log_responsibilities.exp()
        self.prior_aggregator.update(responsibilities)
        self.mean_aggregator.update(batch, responsibilities)
        means = self.mean_aggregator.compute()
        self.covar_aggregator.update(batch, responsibilities, means)

        # Candidate datapoints for reseeding collapsed components
        reseed_choices = torch.randint(
            batch.size(0), (self.model.config.num_components,), device=batch.device
        )
        self.reseed_candidates.copy_(batch[reseed_choices])

    def nonparametric_training_epoch_end(self) -> None:
        if self._skip_update:
            return

        priors = self.prior_aggregator.compute()
        means = self.mean_aggregator.compute()
        covars = self.covar_aggregator.compute()

        collapsed = self.prior_aggregator.mass_share() < self.collapse_threshold
        if collapsed.any():
            priors, means, covars = self._reset_components(collapsed, priors, means, covars)

        covars = constrain_covariance(covars, self.covariance_constraint, self.eigenvalue_floor)

        self.model.component_probs.copy_(priors)
        self.model.means.copy_(means)
        self.model.set_covariances(covars)
        self.num_updates += 1

    def predict_step(
        self, batch: torch.Tensor, batch_idx: int
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        log_responsibilities, log_probs = self.model.forward(batch)
        return log_responsibilities.exp(), log_probs

    def _has_converged(self, log_likelihood: float) -> bool:
        if self.convergence_tolerance == 0 or not self.log_likelihood_history:
            return False
        return abs(log_likelihood - self.log_likelihood_history[-1]) < self.convergence_tolerance

    def _reset_components(
        self,
        collapsed: torch.Tensor,
        priors: torch.Tensor,
        means: torch.Tensor,
        covars: torch.Tensor,
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        indices = collapsed.nonzero().flatten().tolist()
        logger.warning(
            "Iteration %d: component(s) %s lost all responsibility mass, resetting them to random "
            "datapoints.",
            self.current_epoch,
            indices,
        )
        self.num_component_resets += len(indices)

        candidates = self.reseed_candidates
        identity = torch.eye(covars.size(-1), dtype=covars.dtype, device=covars.device)

        priors = torch.where(collapsed, torch.full_like(priors, self.collapse_weight), priors)
        priors = priors / priors.sum()
        means = torch.where(collapsed.unsqueeze(1), candidates.to(means.dtype), means)
        covars = torch.where(collapsed.unsqueeze(1).unsqueeze(2), identity, covars)
        return priors, means, covars


# -------------------------------------------------------------------------------------------------
# INIT STRATEGIES


class GaussianMixtureKmeansInitLightningModule(NonparametricLightningModule):
    """
    Lightning module deriving the initial mixture from K-means centroids in a single epoch. Each
    component gets the covariance of the datapoints closest to its centroid, or the identity if
    fewer than two datapoints are. All weights are equal.
    """

    def __init__(
        self,
        model: GaussianMixtureModel,
        covariance_constraint: CovarianceConstraint = "positive_definite",
        eigenvalue_floor: float = 1e-10,
    ):
        """
        Args:
            model: The mixture whose means hold the K-means centroids.
            covariance_constraint: The constraint to apply to the initial covariances.
            eigenvalue_floor: The minimum eigenvalue of covariances under the
                ``positive_definite`` constraint.
        """
        super().__init__()

        self.model = model
        self.covariance_constraint = covariance_constraint
        self.eigenvalue_floor = eigenvalue_floor

        self.prior_aggregator = PriorAggregator(
            num_components=self.model.config.num_components,
            dist_sync_fn=self.all_gather,
        )
        self.covar_aggregator = CovarianceAggregator(
            num_components=self.model.config.num_components,
            num_features=self.model.config.num_features,
            dist_sync_fn=self.all_gather,
        )

    def on_train_epoch_start(self) -> None:
        self.prior_aggregator.reset()
        self.covar_aggregator.reset()

    def nonparametric_training_step(self, batch: torch.Tensor, batch_idx: int) -> None:
        responsibilities = _hard_responsibilities(batch, self.model.means)
        self.prior_aggregator.update(responsibilities)
        self.covar_aggregator.update(batch, responsibilities, self.model.means)

    def nonparametric_training_epoch_end(self) -> None:
        num_components = self.model.config.num_components
        self.model.component_probs.fill_(1 / num_components)

        cluster_sizes = self.prior_aggregator.responsibilities
        covars = self.covar_aggregator.compute()
        identity = torch.eye(
            self.model.config.num_features, dtype=covars.dtype, device=covars.device
        )
        covars = torch.where((cluster_sizes < 2).unsqueeze(1).unsqueeze(2), identity, covars)
        self.model.set_covariances(
            constrain_covariance(covars, self.covariance_constraint, self.eigenvalue_floor)
        )


def _hard_responsibilities(data: torch.Tensor, centroids: torch.Tensor) -> torch.Tensor:
    closest = torch.cdist(data, centroids).argmin(1)
    return torch.nn.functional.one_hot(closest, centroids.size(0)).to(data.dtype)
