# src/pydownscale/train.py
# =============================================================================
# MIT License
#
# (c) 2025 The pydownscale authors.
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN
# THE SOFTWARE.
# =============================================================================
"""
Training of downscaling models.

This module provides the two entry points of the package:

1) :func:`downscale_train`
   Fits a transfer function (analogs, GLM or NN) between large-scale
   predictors and local predictands, either

   - **single-site** (default): one independent model per site, each one
     trained on that site's valid (and optionally filtered) observations,
     using the site's local neighborhood predictors when the grid has them
     and the global predictors otherwise; or
   - **multi-site**: one joint model over all sites on the global
     predictors.

   It returns a :class:`TrainingResult` holding the predictions on the
   training period (same shape, dimension names and metadata as the
   predictand) and a :class:`TrainingConfig` with the fitted model(s).

2) :func:`downscale_predict`
   Applies the fitted model(s) of a :class:`TrainingResult` to new
   predictors laid out like the training ones.

Multi-site fitting is supported by analogs and NN. GLM supports it only
with ``fitting="MP"`` or ``fitting="gLASSO"``; other GLM fittings raise
from the estimator.

Analog models keep two date series: the *training* dates are those of the
rows used for fitting (after filtering), while ``test_dates`` is set to the
*complete* reference dates of the predictand. The window exclusion at
prediction time is therefore evaluated against every training day.

Runtime dependencies
--------------------
- numpy
- joblib (parallel single-site loop)
- tqdm (progress bar)
"""

from __future__ import annotations

import copy
import time
import warnings
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

import numpy as np
from joblib import Parallel, delayed
from tqdm.auto import tqdm

from .data import PredictandSet, PredictorGrid, PreparedGrid, ensure_datetime_index
from .dispatch import dispatch_predict, dispatch_train
from .exceptions import AllMissingError, ShapeMismatchError
from .filters import FilterLike, describe_filter, valid_indices
from .options import FitOptions, Method, build_options


__all__ = [
    "TrainingConfig",
    "TrainingResult",
    "fit_site",
    "downscale_train",
    "downscale_predict",
]


# ---------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class TrainingConfig:
    """How a :class:`TrainingResult` was produced.

    Attributes
    ----------
    method :
        Transfer-function family.
    singlesite :
        ``True`` for one model per site, ``False`` for one joint model.
    models :
        Fitted models ordered by site index (single-site) or a one-element
        list (multi-site).
    options :
        Options dataclass the models were fitted with.
    filt :
        Text form of the observation filter, if any (single-site only):
        the normalized comparison, or the qualified name of a callable.
    """

    method: Method
    singlesite: bool
    models: List
    options: FitOptions
    filt: Optional[str] = None


@dataclass(frozen=True)
class TrainingResult:
    """Predictions on the training period plus the fitted configuration."""

    predictions: PredictandSet
    configuration: TrainingConfig

    @property
    def models(self) -> List:
        return self.configuration.models


# ---------------------------------------------------------------------
# Single site
# ---------------------------------------------------------------------


def _select_predictors(predictors: PredictorGrid, site: int) -> np.ndarray:
    """Local predictors of ``site`` when the grid has local ones, else global."""
    if predictors.has_local:
        x = predictors.local_for(site)
        if x is None:
            raise ShapeMismatchError(f"No local predictors for site {site}.")
        return x
    if predictors.x_global is None:
        raise ShapeMismatchError("Predictor grid has neither global nor local predictors.")
    return predictors.x_global


def fit_site(
    site: int,
    predictors: PredictorGrid,
    column,
    method: Union[Method, str],
    filt: FilterLike = None,
    options: Optional[FitOptions] = None,
    reference_dates=None,
) -> Tuple[object, np.ndarray]:
    """
    Fit and predict one site.

    The model is fitted on the rows where ``column`` is not missing and
    satisfies ``filt``; predictions are produced for *every* row of the
    site's predictors, including the excluded ones.

    Parameters
    ----------
    site :
        Site position (column index of the predictand).
    predictors :
        Predictor grid; the site's local entry is used when present.
    column :
        1-D observations of the site.
    method, options :
        Transfer function and its options (defaults when ``None``).
    filt :
        Optional observation filter (see :mod:`pydownscale.filters`).
    reference_dates :
        Dates of the rows; used by the analog method only.

    Returns
    -------
    model, prediction :
        Fitted model and the full-length 1-D prediction.

    Raises
    ------
    ShapeMismatchError
        Missing local predictors or misaligned rows/dates.
    AllMissingError
        No observation left after filtering.
    """
    method = Method.coerce(method)
    if options is None:
        options = build_options(method)

    x = _select_predictors(predictors, site)
    y = np.asarray(column, dtype=float).reshape(-1)
    if x.shape[0] != y.shape[0]:
        raise ShapeMismatchError(
            f"Site {site}: predictors have {x.shape[0]} rows, predictand has {y.shape[0]}."
        )

    ind = valid_indices(y, filt)
    if ind.size == 0:
        raise AllMissingError(site)

    if method is Method.ANALOGS:
        reference_dates = ensure_datetime_index(reference_dates)
        if reference_dates is not None and len(reference_dates) != y.shape[0]:
            raise ShapeMismatchError(
                f"Site {site}: {len(reference_dates)} reference dates for {y.shape[0]} rows."
            )
        train_dates = None if reference_dates is None else reference_dates[ind]
        model = dispatch_train(
            x[ind, :], y[ind, None], method, dates=train_dates, options=options
        )
        model.test_dates = reference_dates
    else:
        model = dispatch_train(x[ind, :], y[ind, None], method, options=options)

    yhat = np.asarray(dispatch_predict(x, method, model), dtype=float)
    return model, yhat.reshape(x.shape[0], -1)[:, 0]


# ---------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------


def _train_multisite(grid: PreparedGrid, method: Method, options: FitOptions):
    x = grid.predictors.x_global
    if x is None:
        raise ShapeMismatchError("Multi-site training requires global predictors.")
    y = grid.predictand.as_2d()
    if x.shape[0] != y.shape[0]:
        raise ShapeMismatchError(
            f"Predictors have {x.shape[0]} rows, predictand has {y.shape[0]}."
        )

    dates = grid.predictand.reference_dates
    if method is Method.ANALOGS:
        model = dispatch_train(x, y, method, dates=dates, options=options)
        model.test_dates = dates
    else:
        model = dispatch_train(x, y, method, options=options)

    pred = np.asarray(dispatch_predict(x, method, model), dtype=float)
    return [model], pred.reshape(y.shape)


def _train_singlesite(
    grid: PreparedGrid,
    method: Method,
    options: FitOptions,
    filt: FilterLike,
    n_jobs: int,
    show_progress: bool,
):
    y = grid.predictand
    n_obs, n_sites = y.n_obs, y.n_sites
    pred = np.full((n_obs, n_sites), np.nan)
    models: List = [None] * n_sites

    sites = range(n_sites)
    iterator = tqdm(sites, desc="Training sites", unit="site") if show_progress else sites
    tasks = (
        (i, grid.predictors, y.column(i), method, filt, options, y.reference_dates)
        for i in iterator
    )
    if n_jobs == 1:
        results = (fit_site(*args) for args in tasks)
    else:
        results = Parallel(n_jobs=n_jobs)(delayed(fit_site)(*args) for args in tasks)

    for i, (model, column) in enumerate(results):
        models[i] = model
        pred[:, i] = column
    return models, pred


def downscale_train(
    grid: PreparedGrid,
    method: Union[Method, str],
    singlesite: bool = True,
    filt: FilterLike = None,
    *,
    n_jobs: int = 1,
    show_progress: bool = False,
    verbose: bool = False,
    **options,
) -> TrainingResult:
    """
    Train a downscaling model.

    Parameters
    ----------
    grid :
        Predictors and predictand (:class:`~pydownscale.data.PreparedGrid`).
    method :
        ``"analogs"``, ``"GLM"`` or ``"NN"``.
    singlesite :
        If ``True`` (default) fit one model per site; otherwise fit one
        joint model on the global predictors.
    filt :
        Observation filter for single-site fitting, e.g. ``">0"`` to fit a
        precipitation amount model on wet days only. Ignored (with a
        warning) in multi-site mode.
    n_jobs :
        Number of joblib workers for the single-site loop. Results are
        placed by site index whatever the execution order.
    show_progress :
        If ``True``, show a :func:`tqdm` progress bar over sites.
    verbose :
        If ``True``, print a one-line summary when done.
    **options :
        Method-specific options (see :class:`~pydownscale.options.AnalogOptions`,
        :class:`~pydownscale.options.GLMOptions`,
        :class:`~pydownscale.options.NNOptions`).

    Returns
    -------
    TrainingResult
        ``predictions`` has the shape, dimension names and metadata of the
        predictand; ``configuration`` holds method, mode and fitted models.

    Raises
    ------
    UnsupportedMethodError, OptionsError, ShapeMismatchError, AllMissingError
        Any failure aborts the call; no partial result is returned.

    Examples
    --------
    >>> res = downscale_train(grid, "GLM", family="gaussian", filt=">0")
    >>> res.predictions.values.shape == grid.predictand.values.shape
    True
    """
    t0 = time.time()
    method = Method.coerce(method)
    fit_options = build_options(method, **options)

    if singlesite:
        models, pred = _train_singlesite(
            grid, method, fit_options, filt, n_jobs=n_jobs, show_progress=show_progress
        )
    else:
        if filt is not None:
            warnings.warn("filt is ignored in multi-site mode.", UserWarning)
        models, pred = _train_multisite(grid, method, fit_options)

    predictions = grid.predictand.with_values(pred)
    config = TrainingConfig(
        method=method,
        singlesite=bool(singlesite),
        models=models,
        options=fit_options,
        filt=describe_filter(filt) if singlesite else None,
    )

    if verbose:
        tqdm.write(
            f"[pydownscale] {method.value} "
            f"{'single-site' if singlesite else 'multi-site'}: "
            f"{grid.predictand.n_sites} site(s) x {grid.predictand.n_obs} rows "
            f"in {time.time() - t0:.2f}s"
        )
    return TrainingResult(predictions=predictions, configuration=config)


def downscale_predict(
    predictors: PredictorGrid,
    result: TrainingResult,
    reference_dates=None,
) -> PredictandSet:
    """
    Predict new data with the models of ``result``.

    ``predictors`` must be laid out like the training predictors (same
    features; local entries per site if the models were trained on local
    predictors). ``reference_dates`` are the dates of the new rows; for
    analog models they replace the stored test dates, so the exclusion
    window applies only when they are given.

    Returns
    -------
    PredictandSet
        Same dimension names, sites and metadata as the training predictand.
    """
    conf = result.configuration
    template = result.predictions

    dates = ensure_datetime_index(reference_dates)

    def _predict(x, model):
        if conf.method is Method.ANALOGS:
            model = copy.copy(model)
            model.test_dates = dates
        return np.asarray(dispatch_predict(x, conf.method, model), dtype=float)

    if not conf.singlesite:
        x = predictors.x_global
        if x is None:
            raise ShapeMismatchError("Multi-site models require global predictors.")
        pred = _predict(x, conf.models[0]).reshape(x.shape[0], -1)
    else:
        pred = None
        for i, model in enumerate(conf.models):
            x = _select_predictors(predictors, i)
            if pred is None:
                pred = np.full((x.shape[0], len(conf.models)), np.nan)
            elif x.shape[0] != pred.shape[0]:
                raise ShapeMismatchError(
                    f"Site {i}: predictors have {x.shape[0]} rows, expected {pred.shape[0]}."
                )
            pred[:, i] = _predict(x, model).reshape(x.shape[0], -1)[:, 0]

    if dates is not None and len(dates) != pred.shape[0]:
        raise ShapeMismatchError(
            f"{len(dates)} reference dates for {pred.shape[0]} predicted rows."
        )
    return template.with_values(pred, reference_dates=dates)
