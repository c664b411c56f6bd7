from __future__ import annotations
import inspect
import logging
import pickle
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Generic, Optional, Type, TypeVar
import pytorch_lightning as pl
from .exception import NotFittedError
from .module import ConfigModule, generic_argument

M = TypeVar("M", bound=ConfigModule)  # type: ignore
E = TypeVar("E", bound="Estimator")  # type: ignore
D = TypeVar("D")
T = TypeVar("T")
PM = TypeVar("PM", bound="PredictorMixin")  # type: ignore

logger = logging.getLogger(__name__)

_PARAMS_FILE = "estimator.pickle"


class Estimator(Generic[M], ABC):
    """
    Base class of the estimators in this package, following the conventions of scikit-learn:
    hyperparameters are passed to the initializer and stored unchanged, :meth:`fit` sets
    attributes with a trailing underscore. Reading such an attribute before fitting raises
    :class:`~emfit.core.NotFittedError`.

    Every pass over the data is run by a PyTorch Lightning trainer created via :meth:`trainer`.
    """

    def __init__(
        self,
        *,
        default_params: Optional[Dict[str, Any]] = None,
        user_params: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            default_params: Trainer arguments specific to the estimator.
            user_params: Trainer arguments passed by the user. They take precedence over the
                defaults.
        """
        level = logger.getEffectiveLevel()
        self.trainer_params_user = user_params
        self.trainer_params: Dict[str, Any] = dict(
            accelerator="cpu",
            devices=1,
            logger=False,
            enable_checkpointing=False,
            log_every_n_steps=1,
            enable_progress_bar=level <= logging.INFO,
            enable_model_summary=level <= logging.DEBUG,
        )
        self.trainer_params.update(default_params or {})
        self.trainer_params.update(user_params or {})

    @property
    def model_(self) -> M:
        """
        The module holding the fitted parameters.
        """
        if "_model" not in self.__dict__:
            raise NotFittedError(f"`{self.__class__.__name__}` has not been fitted yet")
        return self.__dict__["_model"]

    def load_model(self, model: M) -> None:
        """
        Uses the given module as the fitted model, replacing the current one.
        """
        self._model = model

    # ---------------------------------------------------------------------------------------------
    # PERSISTENCE

    def save(self, path: Path) -> None:
        """
        Writes the hyperparameters and, once fitted, the model into an existing directory.

        Args:
            path: The target directory.

        Note:
            Hyperparameters are pickled. Use :meth:`emfit.core.ConfigModule.save` on
            :attr:`model_` for a format that does not depend on the package version.
        """
        assert path.is_dir(), "Estimators can only be saved to a directory."

        with (path / _PARAMS_FILE).open("wb+") as f:
            pickle.dump(self.get_params(), f)
        if "_model" in self.__dict__:
            self.model_.save(path)

    @classmethod
    def load(cls: Type[E], path: Path) -> E:
        """
        Restores an estimator written by :meth:`save`. The result is fitted if a model was
        saved along with it.
        """
        with (path / _PARAMS_FILE).open("rb") as f:
            estimator = cls().set_params(pickle.load(f))

        if (path / "config.json").exists():
            model_cls = generic_argument(cls, Estimator)
            estimator.load_model(model_cls.load(path))
        return estimator

    # ---------------------------------------------------------------------------------------------
    # SKLEARN INTERFACE

    def get_params(self, deep: bool = True) -> Dict[str, Any]:  # pylint: disable=unused-argument
        """
        Returns the hyperparameters by the names of the initializer's arguments. ``deep`` only
        exists for compatibility with scikit-learn.
        """
        names = inspect.signature(self.__class__.__init__).parameters
        return {name: getattr(self, name) for name in names if name != "self"}

    def set_params(self: E, values: Dict[str, Any]) -> E:
        """
        Overrides hyperparameters and returns the estimator.
        """
        for name, value in values.items():
            setattr(self, name, value)
        return self

    # ---------------------------------------------------------------------------------------------
    # TRAINING

    def trainer(self, **kwargs: Any) -> pl.Trainer:
        """
        Creates a fresh trainer from :attr:`trainer_params`, overridden by ``kwargs``.
        """
        params = {**self.trainer_params, **kwargs}
        if isinstance(params.get("callbacks"), list):
            # Lightning appends its own callbacks to the list it is passed
            params["callbacks"] = list(params["callbacks"])
        return pl.Trainer(**params)

    def __getattr__(self, key: str) -> Any:
        # Only called for attributes that are missing
        if key.endswith("_") and not key.endswith("__"):
            raise NotFittedError(f"`{self.__class__.__name__}` has not been fitted yet")
        raise AttributeError(
            f"Attribute `{key}` does not exist on type `{self.__class__.__name__}`."
        )


class PredictorMixin(Generic[D, T], ABC):
    """
    Mixin for estimators that assign labels to datapoints.
    """

    @abstractmethod
    def fit(self: PM, data: D) -> PM:  # pylint: disable=missing-docstring
        pass

    @abstractmethod
    def predict(self, data: D) -> T:  # pylint: disable=missing-docstring
        pass

    def fit_predict(self, data: D) -> T:
        """
        Fits the estimator and returns the labels it predicts for the same data.
        """
        return self.fit(data).predict(data)
