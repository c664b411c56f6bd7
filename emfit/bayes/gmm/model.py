import math
from dataclasses import dataclass
from typing import Tuple
import numpy as np
import torch
from torch import nn
from emfit.bayes.core import cholesky_precision, log_normal, sample_normal
from emfit.core import ConfigModule, NumericalError


@dataclass
class GaussianMixtureModelConfig:
    """
    Shape of a :class:`GaussianMixtureModel`.
    """

    #: The number of Gaussian components.
    num_components: int
    #: The dimensionality of the data.
    num_features: int


class GaussianMixtureModel(ConfigModule[GaussianMixtureModelConfig]):
    """
    Buffers of a Gaussian mixture with full covariances, all in float64. The upper Cholesky
    factors of the precisions are kept in sync with the covariances so that densities never
    require a matrix inverse.
    """

    #: The mixture weights, shape ``[num_components]``. They sum to one.
    component_probs: torch.Tensor
    #: The component means, shape ``[num_components, num_features]``.
    means: torch.Tensor
    #: The component covariances, shape ``[num_components, num_features, num_features]``.
    covariances: torch.Tensor
    #: The upper-triangular Cholesky factors of the components' precision matrices, buffer of the
    #: same shape as :attr:`covariances`.
    precisions_cholesky: torch.Tensor

    def __init__(self, config: GaussianMixtureModelConfig):
        super().__init__(config)

        k, d = config.num_components, config.num_features
        self.register_buffer("component_probs", torch.empty(k, dtype=torch.float64))
        self.register_buffer("means", torch.empty(k, d, dtype=torch.float64))
        self.register_buffer("covariances", torch.empty(k, d, d, dtype=torch.float64))
        self.register_buffer("precisions_cholesky", torch.empty(k, d, d, dtype=torch.float64))

        self.reset_parameters()

    @property
    def dimensionality(self) -> int:
        """
        The number of features of the Gaussian components.
        """
        return self.config.num_features

    def reset_parameters(self) -> None:
        """
        Draws random normalized weights and standard Normal means. All covariances become the
        identity.
        """
        nn.init.uniform_(self.component_probs)
        self.component_probs.div_(self.component_probs.sum())

        nn.init.normal_(self.means)

        identity = torch.eye(self.config.num_features, dtype=self.covariances.dtype)
        self.set_covariances(identity.expand_as(self.covariances))

    def set_covariances(self, covariances: torch.Tensor) -> None:
        """
        Sets the covariances of all components and updates the Cholesky factors of the precisions
        accordingly.

        Args:
            covariances: A tensor of shape ``[num_components, num_features, num_features]``.

        Raises:
            NumericalError: If any covariance is not invertible.
        """
        precisions_cholesky = cholesky_precision(covariances.to(self.covariances.dtype))
        self.covariances.copy_(covariances)
        self.precisions_cholesky.copy_(precisions_cholesky)

    def forward(self, data: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Runs the E-step on the given data.

        Args:
            data: Data of shape ``[num_datapoints, num_features]``.

        Returns:
            - Log-responsibilities of shape ``[num_datapoints, num_components]``. Rows of
              datapoints without finite likelihood are uniform.
            - Log-likelihoods of shape ``[num_datapoints]``.
        """
        log_probabilities = log_normal(data, self.means, self.precisions_cholesky)
        log_responsibilities = log_probabilities + self.component_probs.log()
        log_prob = log_responsibilities.logsumexp(1, keepdim=True)
        log_responsibilities = log_responsibilities - log_prob

        degenerate = ~torch.isfinite(log_prob)
        if degenerate.any():
            uniform = -math.log(self.config.num_components)
            log_responsibilities = torch.where(
                degenerate, torch.full_like(log_responsibilities, uniform), log_responsibilities
            )
        return log_responsibilities, log_prob.squeeze(1)

    def log_likelihood(self, data: torch.Tensor) -> float:
        """
        Returns the summed log-likelihood of the data under the mixture. Datapoints without
        finite density under any component are left out.

        Raises:
            NumericalError: If no datapoint has a finite density or a density is undefined.
        """
        _, log_probs = self.forward(data.to(self.means.dtype))
        return summed_log_likelihood(log_probs)

    def probability(self, data: torch.Tensor, component: int) -> torch.Tensor:
        """
        Computes the density of a single component at each of the provided datapoints.

        Args:
            data: A tensor of shape ``[num_datapoints, num_features]``.
            component: The index of the component.

        Returns:
            A tensor of shape ``[num_datapoints]`` with the densities.

        Raises:
            NumericalError: If the component's covariance is not invertible.
        """
        precision_cholesky = cholesky_precision(self.covariances[component])
        log_prob = log_normal(
            data.to(self.means.dtype),
            self.means[component].unsqueeze(0),
            precision_cholesky.unsqueeze(0),
        )
        return log_prob.squeeze(1).exp()

    def sample(self, num_datapoints: int) -> torch.Tensor:
        """
        Draws ``num_datapoints`` samples, grouped by component, as a tensor of shape
        ``[num_datapoints, num_features]``.
        """
        component_counts = np.random.multinomial(
            num_datapoints, self.component_probs.cpu().numpy()
        )

        result = []
        for i, count in enumerate(component_counts):
            sample = sample_normal(count.item(), self.means[i], self.precisions_cholesky[i])
            result.append(sample)

        return torch.cat(result, dim=0)

    def extra_repr(self) -> str:
        return (
            f"num_components={self.config.num_components}, "
            f"num_features={self.config.num_features}"
        )


def summed_log_likelihood(log_probs: torch.Tensor) -> float:
    """
    Sums the log-likelihoods of the datapoints, leaving out the ones with vanishing density.

    Args:
        log_probs: Per-datapoint log-likelihoods of shape ``[num_datapoints]``.

    Returns:
        The sum over all finite log-likelihoods.

    Raises:
        NumericalError: If any log-likelihood is NaN or positive infinity, or none is finite.
    """
    finite = torch.isfinite(log_probs)
    if torch.isnan(log_probs).any() or torch.isposinf(log_probs).any():
        raise NumericalError("Log-likelihood of some datapoints is undefined")
    if not finite.any():
        raise NumericalError("No datapoint has a finite log-likelihood")
    return log_probs[finite].sum().item()
