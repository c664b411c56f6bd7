class NotFittedError(Exception):
    """
    Exception which is raised whenever properties of an estimator are accessed before the estimator
    has been fitted.
    """


class InvalidConfigurationError(ValueError):
    """
    Exception which is raised when an estimator or initializer is configured with values outside of
    their valid ranges. It is always raised before any computation is started.
    """


class DimensionalityMismatchError(ValueError):
    """
    Exception which is raised when a model used for a warm start has a different dimensionality
    than the data it ought to be trained on.
    """


class NumericalError(ArithmeticError):
    """
    Exception which is raised when a single training run cannot be continued: a covariance matrix
    became non-invertible or the log-likelihood became non-finite. During multi-trial training, it
    only aborts the affected trial.
    """


class NoValidModelError(RuntimeError):
    """
    Exception which is raised when every trial of a multi-trial training run failed and, thus, no
    model can be returned.
    """
