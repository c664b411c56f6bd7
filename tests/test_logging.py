# pylint: disable=missing-function-docstring
import logging
import emfit
from emfit.bayes import GaussianMixture


def test_set_logging_level_controls_trainer_output():
    try:
        emfit.set_logging_level(logging.WARNING)
        quiet = GaussianMixture(2)
        assert not quiet.trainer_params["enable_progress_bar"]
        assert not quiet.trainer_params["enable_model_summary"]
        assert logging.getLogger("pytorch_lightning").level == logging.WARNING

        emfit.set_logging_level(logging.DEBUG)
        verbose = GaussianMixture(2)
        assert verbose.trainer_params["enable_progress_bar"]
        assert verbose.trainer_params["enable_model_summary"]
    finally:
        emfit.set_logging_level(logging.INFO)


def test_user_trainer_params_take_precedence():
    estimator = GaussianMixture(2, trainer_params=dict(enable_progress_bar=False))
    assert not estimator.trainer_params["enable_progress_bar"]
    assert estimator.get_params()["trainer_params"]["accelerator"] == "cpu"
