from __future__ import annotations
import logging
import math
import time
from typing import Any, cast, Dict, List, Optional, Tuple
import pytorch_lightning as pl
import torch
from emfit.bayes.core import CovarianceConstraint
from emfit.clustering import KMeans, RefinedStart
from emfit.core import (
    DimensionalityMismatchError,
    Estimator,
    InvalidConfigurationError,
    NoValidModelError,
    NumericalError,
    PredictorMixin,
)
from emfit.data import full_batch_loader, TabularData, tensor_from_data
from .lightning_module import (
    GaussianMixtureKmeansInitLightningModule,
    GaussianMixtureLightningModule,
)
from .model import GaussianMixtureModel, GaussianMixtureModelConfig
from .types import GaussianMixtureInitStrategy

logger = logging.getLogger(__name__)


class GaussianMixture(
    Estimator[GaussianMixtureModel],
    PredictorMixin[TabularData, torch.Tensor],
):
    """
    Gaussian mixture with full covariances, fitted by expectation maximization. Every trial
    starts from a K-means clustering (or from ``init_model``) and iterates until the
    log-likelihood stops changing. The trial with the highest log-likelihood is kept as
    :attr:`model_`, a :class:`GaussianMixtureModel`.
    """

    #: A boolean indicating whether the log-likelihood of the best trial converged.
    converged_: bool
    #: The number of EM iterations (M-steps) of the best trial, excluding initialization.
    num_iter_: int
    #: The total log-likelihood of the training data under the fitted model.
    log_likelihood_: float
    #: The log-likelihoods computed in the E-steps of the best trial.
    log_likelihood_history_: List[float]
    #: The final log-likelihood of every trial, ``None`` for trials that failed.
    trial_log_likelihoods_: List[Optional[float]]
    #: The number of component resets in the best trial.
    num_component_resets_: int
    #: The number of iterations of the best trial with degenerate responsibilities.
    num_degenerate_iterations_: int

    def __init__(
        self,
        num_components: int = 1,
        *,
        covariance_constraint: CovarianceConstraint = "positive_definite",
        init_strategy: GaussianMixtureInitStrategy = "kmeans",
        refined_samplings: int = 100,
        refined_percentage: float = 0.02,
        num_trials: int = 1,
        max_iterations: int = 250,
        convergence_tolerance: float = 1e-10,
        eigenvalue_floor: float = 1e-10,
        collapse_threshold: float = 1e-10,
        collapse_weight: float = 1e-6,
        init_model: Optional[GaussianMixtureModel] = None,
        noise: float = 0,
        seed: int = 0,
        trainer_params: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            num_components: The number of Gaussian components.
            covariance_constraint: The constraint to apply to all covariances after each M-step.
            init_strategy: The strategy for initializing component means and covariances. Ignored
                if ``init_model`` is given.
            refined_samplings: The number of subsamples to cluster for the ``refined`` init
                strategy.
            refined_percentage: The fraction of the data that each subsample contains for the
                ``refined`` init strategy.
            num_trials: The number of independent trials to run. The trial yielding the highest
                log-likelihood is kept.
            max_iterations: The maximum number of EM iterations per trial. Set to zero to iterate
                until convergence.
            convergence_tolerance: The change in the total log-likelihood between two iterations
                below which training is considered converged. Set to zero to always run
                ``max_iterations`` iterations.
            eigenvalue_floor: The minimum eigenvalue of all covariances under the
                ``positive_definite`` constraint.
            collapse_threshold: The share of the data's responsibility mass below which a
                component is considered collapsed and reset.
            collapse_weight: The weight assigned to a component after it has been reset, prior to
                renormalizing all weights.
            init_model: A previously fitted model to start all trials from. If its number of
                components differs from ``num_components``, the model's number of components is
                used.
            noise: The scale of zero-mean Gaussian noise that is added to the data prior to
                fitting. This can be used to break exactly zero variance along a dimension.
            seed: The random seed. Trial ``t`` is seeded with ``seed + t``. If set to zero, a
                time-based seed is used.
            trainer_params: Keyword arguments for the PyTorch Lightning trainers. ``max_epochs``
                has no effect on EM, which is bounded by ``max_iterations``.

        Note:
            Initialization runs additional passes through the data that are not counted as
            iterations.
        """
        super().__init__(user_params=trainer_params)

        self.num_components = num_components
        self.covariance_constraint = covariance_constraint
        self.init_strategy = init_strategy
        self.refined_samplings = refined_samplings
        self.refined_percentage = refined_percentage
        self.num_trials = num_trials
        self.max_iterations = max_iterations
        self.convergence_tolerance = convergence_tolerance
        self.eigenvalue_floor = eigenvalue_floor
        self.collapse_threshold = collapse_threshold
        self.collapse_weight = collapse_weight
        self.init_model = init_model
        self.noise = noise
        self.seed = seed

    def fit(self, data: TabularData) -> GaussianMixture:
        """
        Runs all trials on the data and keeps the mixture with the highest log-likelihood.

        Args:
            data: Data of shape ``[num_datapoints, num_features]``. It is copied before noise is
                added.

        Returns:
            The estimator itself.

        Raises:
            InvalidConfigurationError: If any parameter is out of range or the data is malformed.
            DimensionalityMismatchError: If the dimensionality of ``init_model`` does not match
                the data.
            NoValidModelError: If all trials failed due to numerical errors.
        """
        tensor = tensor_from_data(data)
        num_components = self._resolve_num_components(tensor)
        self._validate_params(tensor, num_components)

        seed = self.seed if self.seed != 0 else int(time.time())
        if self.noise > 0:
            generator = torch.Generator().manual_seed(seed % 2**32)
            noise = torch.randn(tensor.size(), generator=generator, dtype=tensor.dtype)
            tensor = tensor + self.noise * noise
            logger.info("Added zero-mean Gaussian noise with scale %g to the data.", self.noise)

        config = GaussianMixtureModelConfig(
            num_components=num_components,
            num_features=tensor.size(1),
        )

        best: Optional[Tuple[GaussianMixtureModel, GaussianMixtureLightningModule]] = None
        best_log_likelihood = -math.inf
        trial_log_likelihoods: List[Optional[float]] = []
        for trial in range(self.num_trials):
            pl.seed_everything((seed + trial) % 2**32)
            try:
                model, module, log_likelihood = self._fit_trial(tensor, config)
            except NumericalError as e:
                logger.warning("Trial %d/%d failed: %s", trial + 1, self.num_trials, e)
                trial_log_likelihoods.append(None)
                continue

            logger.info(
                "Trial %d/%d finished after %d iterations with log-likelihood %.6f.",
                trial + 1,
                self.num_trials,
                module.num_updates,
                log_likelihood,
            )
            trial_log_likelihoods.append(log_likelihood)
            if best is None or log_likelihood > best_log_likelihood:
                best = (model, module)
                best_log_likelihood = log_likelihood

        if best is None:
            raise NoValidModelError(
                f"All {self.num_trials} trial(s) failed, no valid model could be fitted"
            )

        model, module = best
        self._model = model
        self.log_likelihood_ = best_log_likelihood
        self.converged_ = module.converged
        self.num_iter_ = module.num_updates
        self.log_likelihood_history_ = list(module.log_likelihood_history)
        self.trial_log_likelihoods_ = trial_log_likelihoods
        self.num_component_resets_ = module.num_component_resets
        self.num_degenerate_iterations_ = module.num_degenerate_iterations
        return self

    def sample(self, num_datapoints: int) -> torch.Tensor:
        """
        Draws ``num_datapoints`` samples from the fitted mixture.
        """
        return self.model_.sample(num_datapoints)

    def score(self, data: TabularData) -> float:
        """
        Returns the mean log-likelihood of the datapoints. Multiply by the number of datapoints
        to obtain the total log-likelihood that training maximizes.
        """
        return self.score_samples(data).mean().item()

    def score_samples(self, data: TabularData) -> torch.Tensor:
        """
        Returns the log-likelihood of every datapoint as a tensor of shape ``[num_datapoints]``.
        """
        result = self._predict(data)
        return torch.cat([x[1] for x in result])

    def predict(self, data: TabularData) -> torch.Tensor:
        """
        Returns the index of the component with the highest responsibility for every datapoint.
        """
        return self.predict_proba(data).argmax(-1)

    def predict_proba(self, data: TabularData) -> torch.Tensor:
        """
        Returns the responsibilities of shape ``[num_datapoints, num_components]``. Each row sums
        to one.
        """
        result = self._predict(data)
        return torch.cat([x[0] for x in result])

    # ---------------------------------------------------------------------------------------------
    # TRIALS

    def _fit_trial(
        self, data: torch.Tensor, config: GaussianMixtureModelConfig
    ) -> Tuple[GaussianMixtureModel, GaussianMixtureLightningModule, float]:
        model = GaussianMixtureModel(config)
        loader = full_batch_loader(data)

        # Initialize the model, either from the warm start or from clustering
        if self.init_model is not None:
            model.load_state_dict(self.init_model.state_dict())
        else:
            model.means.copy_(self._initial_centroids(data, config.num_components))
            module = GaussianMixtureKmeansInitLightningModule(
                model,
                covariance_constraint=self.covariance_constraint,
                eigenvalue_floor=self.eigenvalue_floor,
            )
            self.trainer(max_epochs=1).fit(module, loader)

        # Run EM
        logger.debug("Fitting Gaussian mixture...")
        module = GaussianMixtureLightningModule(
            model,
            covariance_constraint=self.covariance_constraint,
            convergence_tolerance=self.convergence_tolerance,
            eigenvalue_floor=self.eigenvalue_floor,
            collapse_threshold=self.collapse_threshold,
            collapse_weight=self.collapse_weight,
        )
        max_epochs = self.max_iterations if self.max_iterations > 0 else -1
        self.trainer(max_epochs=max_epochs).fit(module, loader)

        # The log-likelihood of the last E-step may precede the final M-step
        return model, module, model.log_likelihood(data)

    def _initial_centroids(self, data: torch.Tensor, num_components: int) -> torch.Tensor:
        params = {k: v for k, v in (self.trainer_params_user or {}).items() if k != "max_epochs"}
        if self.init_strategy == "kmeans":
            logger.debug("Fitting K-means estimator...")
            estimator = KMeans(num_components, trainer_params=params).fit(data)
            return estimator.model_.centroids

        logger.debug("Computing refined start...")
        refined = RefinedStart(
            num_components,
            self.refined_samplings,
            self.refined_percentage,
            trainer_params=params,
        )
        return refined.cluster(data)

    # ---------------------------------------------------------------------------------------------
    # HELPERS

    def _predict(self, data: TabularData) -> List[Tuple[torch.Tensor, torch.Tensor]]:
        loader = full_batch_loader(tensor_from_data(data))
        result = self.trainer().predict(GaussianMixtureLightningModule(self.model_), loader)
        return cast(List[Tuple[torch.Tensor, torch.Tensor]], result)

    def _resolve_num_components(self, data: torch.Tensor) -> int:
        if self.init_model is None:
            return self.num_components

        if self.init_model.dimensionality != data.size(1):
            raise DimensionalityMismatchError(
                f"Initial model has dimensionality {self.init_model.dimensionality} but the "
                f"data has dimensionality {data.size(1)}"
            )
        num_components = self.init_model.config.num_components
        if num_components != self.num_components:
            logger.warning(
                "Initial model has %d components, overriding the requested %d components.",
                num_components,
                self.num_components,
            )
        return num_components

    def _validate_params(self, data: torch.Tensor, num_components: int) -> None:
        if num_components <= 0:
            raise InvalidConfigurationError(
                f"Number of components must be positive, got {num_components}"
            )
        if num_components > data.size(0):
            raise InvalidConfigurationError(
                f"Number of components ({num_components}) must not exceed the number of "
                f"datapoints ({data.size(0)})"
            )
        if self.covariance_constraint not in ("none", "diagonal", "positive_definite"):
            raise InvalidConfigurationError(
                f"Unknown covariance constraint '{self.covariance_constraint}'"
            )
        if self.init_strategy not in ("kmeans", "refined"):
            raise InvalidConfigurationError(f"Unknown init strategy '{self.init_strategy}'")
        if self.refined_samplings <= 0:
            raise InvalidConfigurationError(
                f"Number of samplings must be positive, got {self.refined_samplings}"
            )
        if not 0 < self.refined_percentage <= 1:
            raise InvalidConfigurationError(
                f"Sampling percentage must be in the interval (0, 1], "
                f"got {self.refined_percentage}"
            )
        if self.num_trials <= 0:
            raise InvalidConfigurationError(
                f"Number of trials must be positive, got {self.num_trials}"
            )
        if self.max_iterations < 0:
            raise InvalidConfigurationError(
                f"Maximum number of iterations must be non-negative, got {self.max_iterations}"
            )
        if self.convergence_tolerance < 0:
            raise InvalidConfigurationError(
                f"Convergence tolerance must be non-negative, got {self.convergence_tolerance}"
            )
        if self.eigenvalue_floor <= 0:
            raise InvalidConfigurationError(
                f"Eigenvalue floor must be positive, got {self.eigenvalue_floor}"
            )
        if self.collapse_threshold < 0:
            raise InvalidConfigurationError(
                f"Collapse threshold must be non-negative, got {self.collapse_threshold}"
            )
        if self.collapse_weight <= 0:
            raise InvalidConfigurationError(
                f"Collapse weight must be positive, got {self.collapse_weight}"
            )
        if self.noise < 0:
            raise InvalidConfigurationError(f"Noise must be non-negative, got {self.noise}")
