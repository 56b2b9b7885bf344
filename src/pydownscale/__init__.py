"""
pydownscale
===========

Statistical downscaling of climate-model predictors to local observations.

Three interchangeable transfer functions map large-scale predictors
(gridded fields, optionally reduced to per-site neighborhoods) onto
station-scale predictands such as daily precipitation or temperature:

- ``"analogs"`` — outcomes of the closest historical predictor days,
- ``"GLM"`` — generalized linear models (plain, stepwise, penalized,
  group lasso, or Moore-Penrose least squares),
- ``"NN"`` — feed-forward neural networks.

Training is either **single-site** (one model per site, optional
observation filter, local predictors when available) or **multi-site**
(one joint model on the global predictors).

Main entry points
-----------------
- :class:`PredictorGrid`, :class:`PredictandSet`, :class:`PreparedGrid`
- :func:`downscale_train`, :func:`downscale_predict`
- :func:`score_training`, :func:`plot_site_predictions`
- :func:`save_training_result`, :func:`load_training_result`

Example
-------
    >>> import numpy as np
    >>> import pandas as pd
    >>> from pydownscale import PredictorGrid, PredictandSet, PreparedGrid, downscale_train
    >>> dates = pd.date_range("2000-01-01", periods=200, freq="D")
    >>> x = np.random.default_rng(0).normal(size=(200, 3))
    >>> y = PredictandSet(np.abs(x @ [[1.0, 0.5], [0.2, 1.0], [0.0, 0.3]]),
    ...                   dimension_names=("time", "loc"), reference_dates=dates)
    >>> grid = PreparedGrid(PredictorGrid(x_global=x), y)

    # (1) Gaussian GLM per site, fitted on wet days only
    >>> res = downscale_train(grid, "GLM", family="gaussian", filt=">0")

    # (2) Joint analog model over all sites
    >>> res = downscale_train(grid, "analogs", singlesite=False, n_analogs=4)
"""

from __future__ import annotations

# Public version (update in sync with pyproject.toml)
__version__ = "0.1.0"

from .exceptions import (
    DownscaleError,
    UnsupportedMethodError,
    ShapeMismatchError,
    AllMissingError,
    OptionsError,
)

# ---------------------------------------------------------------------------
# Data containers, filters and options
# ---------------------------------------------------------------------------

from .data import (
    PredictorGrid,
    PredictandSet,
    PreparedGrid,
    predictand_from_long,
)
from .filters import (
    GreaterThan,
    GreaterEqual,
    LessThan,
    LessEqual,
    Equal,
    NotEqual,
    parse_filter,
    describe_filter,
    valid_indices,
)
from .options import (
    Method,
    AnalogOptions,
    GLMOptions,
    NNOptions,
    build_options,
)

# ---------------------------------------------------------------------------
# Training, dispatch and evaluation
# ---------------------------------------------------------------------------

from .dispatch import dispatch_train, dispatch_predict, available_methods
from .estimators import set_warning_policy
from .train import (
    TrainingConfig,
    TrainingResult,
    fit_site,
    downscale_train,
    downscale_predict,
)
from .metrics import kge, nse, regression_metrics, aggregate_and_score, score_training
from .plotting import plot_site_predictions
from .persistence import TrainingMeta, save_training_result, load_training_result

__all__ = [
    "__version__",
    # errors
    "DownscaleError",
    "UnsupportedMethodError",
    "ShapeMismatchError",
    "AllMissingError",
    "OptionsError",
    # data
    "PredictorGrid",
    "PredictandSet",
    "PreparedGrid",
    "predictand_from_long",
    # filters
    "GreaterThan",
    "GreaterEqual",
    "LessThan",
    "LessEqual",
    "Equal",
    "NotEqual",
    "parse_filter",
    "describe_filter",
    "valid_indices",
    # options
    "Method",
    "AnalogOptions",
    "GLMOptions",
    "NNOptions",
    "build_options",
    # training
    "dispatch_train",
    "dispatch_predict",
    "available_methods",
    "set_warning_policy",
    "TrainingConfig",
    "TrainingResult",
    "fit_site",
    "downscale_train",
    "downscale_predict",
    # evaluation
    "kge",
    "nse",
    "regression_metrics",
    "aggregate_and_score",
    "score_training",
    "plot_site_predictions",
    # persistence
    "TrainingMeta",
    "save_training_result",
    "load_training_result",
]
