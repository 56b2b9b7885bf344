# SPDX-License-Identifier: MIT
"""
Estimator families behind the uniform ``train`` / ``predict`` contract.

Each family is a pair of plain functions over NumPy arrays:

- ``*_train(x, y, options) -> model`` with ``x`` of shape ``N x P`` and
  ``y`` of shape ``N x K`` (``K`` = number of sites fitted jointly).
- ``*_predict(x, model) -> yhat`` with ``yhat`` of shape ``M x K``.

The numerical work is delegated to scikit-learn:

- Analogs: :class:`sklearn.neighbors.KDTree` nearest predictor days.
- GLM: :mod:`sklearn.linear_model` (plain GLMs, cross-validated penalties,
  multi-task lasso), :class:`sklearn.feature_selection.SequentialFeatureSelector`
  for stepwise fitting, and :func:`numpy.linalg.pinv` for the Moore-Penrose
  least squares fit.
- NN: :class:`sklearn.neural_network.MLPRegressor` /
  :class:`sklearn.neural_network.MLPClassifier` trained by SGD.

Parameter validation lives in :mod:`pydownscale.options`; numerical
failures (singular systems, non-convergence, invalid labels) are left to
the underlying library.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
from sklearn.exceptions import ConvergenceWarning, UndefinedMetricWarning
from sklearn.feature_selection import SequentialFeatureSelector
from sklearn.linear_model import (
    ElasticNetCV,
    GammaRegressor,
    LassoCV,
    LinearRegression,
    LogisticRegression,
    LogisticRegressionCV,
    MultiTaskLassoCV,
    PoissonRegressor,
    RidgeCV,
    TweedieRegressor,
)
from sklearn.neighbors import KDTree
from sklearn.neural_network import MLPClassifier, MLPRegressor

from .exceptions import OptionsError, ShapeMismatchError
from .options import NN_ACTIVATIONS, AnalogOptions, GLMOptions, NNOptions, percentile_of


# ---------------------------------------------------------------------
# Warning policy
# ---------------------------------------------------------------------


def set_warning_policy(silence: bool = True) -> None:
    """
    Silence warnings that are not actionable during routine training.

    With ``silence=True`` (the default applied at import), pandas/scikit-learn
    ``FutureWarning`` and scikit-learn ``ConvergenceWarning`` /
    ``UndefinedMetricWarning`` are ignored. ``silence=False`` restores the
    default filters.
    """
    warnings.resetwarnings()
    if silence:
        warnings.filterwarnings("ignore", category=FutureWarning)
        warnings.filterwarnings("ignore", category=ConvergenceWarning)
        warnings.filterwarnings("ignore", category=UndefinedMetricWarning)


set_warning_policy(True)


def _as_xy(x, y):
    xx = np.asarray(x, dtype=float)
    if xx.ndim == 1:
        xx = xx.reshape(-1, 1)
    yy = np.asarray(y, dtype=float)
    if yy.ndim == 1:
        yy = yy.reshape(-1, 1)
    if xx.shape[0] != yy.shape[0]:
        raise ShapeMismatchError(
            f"Predictors have {xx.shape[0]} rows but predictands have {yy.shape[0]}."
        )
    return xx, yy


def _as_x(x) -> np.ndarray:
    xx = np.asarray(x, dtype=float)
    return xx.reshape(-1, 1) if xx.ndim == 1 else xx


# ---------------------------------------------------------------------
# Analogs
# ---------------------------------------------------------------------


@dataclass
class AnalogModel:
    """Analog pool: predictor days indexed in a KD-tree and their outcomes.

    ``test_dates`` is left empty by :func:`analogs_train` and attached
    afterwards by the caller; it is used to apply the exclusion ``window``
    when predicting.
    """

    options: AnalogOptions
    tree: KDTree
    y: np.ndarray
    train_dates: Optional[pd.DatetimeIndex] = None
    test_dates: Optional[pd.DatetimeIndex] = None

    @property
    def n_pool(self) -> int:
        return int(self.y.shape[0])


def analogs_train(x, y, options: AnalogOptions, dates=None) -> AnalogModel:
    """Build the analog pool from training predictors ``x`` and outcomes ``y``."""
    xx, yy = _as_xy(x, y)
    train_dates = None
    if dates is not None:
        train_dates = pd.DatetimeIndex(pd.to_datetime(dates))
        if len(train_dates) != xx.shape[0]:
            raise ShapeMismatchError(
                f"Got {len(train_dates)} training dates for {xx.shape[0]} rows."
            )
    if xx.shape[0] < options.n_analogs:
        warnings.warn(
            f"Analog pool has {xx.shape[0]} days, fewer than n_analogs={options.n_analogs}.",
            RuntimeWarning,
        )
    return AnalogModel(options=options, tree=KDTree(xx), y=yy, train_dates=train_dates)


def _combine_analogs(vals: np.ndarray, dist: np.ndarray, sel_fun: str) -> np.ndarray:
    """Reduce ``M x A x K`` analog outcomes to ``M x K``. NaNs are ignored."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        if sel_fun == "mean":
            return np.nanmean(vals, axis=1)
        if sel_fun == "median":
            return np.nanmedian(vals, axis=1)
        if sel_fun == "max":
            return np.nanmax(vals, axis=1)
        if sel_fun == "min":
            return np.nanmin(vals, axis=1)
        if sel_fun == "wmean":
            w = 1.0 / (dist + np.finfo(float).eps)
            w = np.where(np.isnan(vals), 0.0, w[:, :, None])
            num = np.nansum(np.nan_to_num(vals) * w, axis=1)
            den = w.sum(axis=1)
            return np.where(den > 0, num / np.where(den > 0, den, 1.0), np.nan)
        return np.nanpercentile(vals, percentile_of(sel_fun), axis=1)


def analogs_predict(x, model: AnalogModel, dates=None) -> np.ndarray:
    """
    Predict by combining the outcomes of the closest predictor days.

    ``dates`` (or ``model.test_dates`` when omitted) are the dates of the
    rows of ``x``. When both they and the training dates are known and
    ``window > 0``, training days within ``window`` days of a test date are
    not eligible as its analogs.
    """
    opts = model.options
    xx = _as_x(x)
    test_dates = model.test_dates if dates is None else pd.DatetimeIndex(pd.to_datetime(dates))

    use_window = (
        opts.window > 0
        and model.train_dates is not None
        and test_dates is not None
        and len(test_dates) == xx.shape[0]
    )
    if opts.window > 0 and not use_window:
        warnings.warn(
            "Analog window ignored: training or test dates unavailable for these rows.",
            RuntimeWarning,
        )

    k = opts.n_analogs + (2 * opts.window + 1 if use_window else 0)
    k = min(k, model.n_pool)
    dist, idx = model.tree.query(xx, k=k)

    if use_window:
        lag = (
            model.train_dates.values[idx] - test_dates.values[:, None]
        ) / np.timedelta64(1, "D")
        excluded = np.abs(lag) <= opts.window
        order = np.argsort(excluded, axis=1, kind="stable")
        idx = np.take_along_axis(idx, order, axis=1)
        dist = np.take_along_axis(dist, order, axis=1)
        available = (~excluded).sum(axis=1)
    else:
        available = np.full(xx.shape[0], k)

    n = min(opts.n_analogs, k)
    idx, dist = idx[:, :n], dist[:, :n]
    valid = np.arange(n)[None, :] < available[:, None]
    if not valid.all():
        warnings.warn(
            f"{int((~valid.all(axis=1)).sum())} row(s) have fewer than "
            f"{opts.n_analogs} eligible analogs.",
            RuntimeWarning,
        )

    if opts.n_random is not None and opts.n_random < n:
        rng = np.random.default_rng(opts.random_state)
        pick = rng.permuted(np.tile(np.arange(n), (xx.shape[0], 1)), axis=1)
        pick = pick[:, : opts.n_random]
        idx = np.take_along_axis(idx, pick, axis=1)
        dist = np.take_along_axis(dist, pick, axis=1)
        valid = np.take_along_axis(valid, pick, axis=1)

    vals = model.y[idx]  # M x A x K
    vals[~valid] = np.nan
    return _combine_analogs(vals, dist, opts.sel_fun)


# ---------------------------------------------------------------------
# GLM
# ---------------------------------------------------------------------


@dataclass
class GLMModel:
    """Fitted GLM.

    ``coefficients`` is set for the Moore-Penrose fit (intercept in the first
    row); ``joint`` for the multi-task lasso; otherwise ``estimators`` holds
    one scikit-learn estimator per output column and ``features`` the column
    indices each one uses.
    """

    options: GLMOptions
    n_outputs: int
    coefficients: Optional[np.ndarray] = None
    joint: Optional[object] = None
    estimators: List[object] = field(default_factory=list)
    features: List[np.ndarray] = field(default_factory=list)


def _base_glm(options: GLMOptions):
    family = options.family
    if family == "binomial":
        return LogisticRegression(C=np.inf, max_iter=options.max_iter)
    if family == "poisson":
        return PoissonRegressor(alpha=0.0, max_iter=options.max_iter)
    if family == "Gamma":
        return GammaRegressor(alpha=0.0, max_iter=options.max_iter)
    if family == "inverse.gaussian":
        return TweedieRegressor(power=3.0, alpha=0.0, link="log", max_iter=options.max_iter)
    return LinearRegression()


def _penalized_glm(options: GLMOptions):
    cv = options.n_folds
    if options.family == "binomial":
        ratio = {"L1": 1.0, "L2": 0.0}.get(options.fitting, options.l1_ratio)
        return LogisticRegressionCV(
            cv=cv,
            l1_ratios=(ratio,),
            solver="lbfgs" if ratio == 0.0 else "saga",
            max_iter=options.max_iter,
        )
    if options.fitting == "L1":
        return LassoCV(cv=cv, max_iter=options.max_iter)
    if options.fitting == "L2":
        return RidgeCV(alphas=np.logspace(-4, 4, 50), cv=cv)
    return ElasticNetCV(l1_ratio=options.l1_ratio, cv=cv, max_iter=options.max_iter)


def _forward_selection(xx: np.ndarray, y: np.ndarray, options: GLMOptions) -> np.ndarray:
    n_features = xx.shape[1]
    target = options.max_features
    if n_features < 2 or (target is not None and target >= n_features):
        return np.arange(n_features)
    selector = SequentialFeatureSelector(
        _base_glm(options),
        n_features_to_select=target if target is not None else "auto",
        tol=None if target is not None else 1e-4,
        direction="forward",
        cv=min(options.n_folds, xx.shape[0]),
    )
    selector.fit(xx, y)
    selected = np.flatnonzero(selector.get_support())
    return selected if selected.size else np.arange(n_features)


def glm_train(x, y, options: GLMOptions) -> GLMModel:
    """Fit a GLM of ``y`` on ``x``. Several columns need ``MP`` or ``gLASSO``."""
    xx, yy = _as_xy(x, y)
    n_outputs = yy.shape[1]
    if n_outputs > 1 and not options.multisite_capable:
        raise OptionsError(
            f"GLM with fitting={options.fitting!r} fits one site at a time; "
            "use fitting='MP' or fitting='gLASSO' for multi-site training."
        )

    if options.fitting == "MP":
        design = np.column_stack([np.ones(xx.shape[0]), xx])
        return GLMModel(
            options=options,
            n_outputs=n_outputs,
            coefficients=np.linalg.pinv(design) @ yy,
        )

    if options.fitting == "gLASSO":
        est = MultiTaskLassoCV(cv=options.n_folds, max_iter=options.max_iter)
        est.fit(xx, yy)
        return GLMModel(options=options, n_outputs=n_outputs, joint=est)

    model = GLMModel(options=options, n_outputs=n_outputs)
    for k in range(n_outputs):
        yk = yy[:, k]
        if options.fitting == "stepwise":
            cols = _forward_selection(xx, yk, options)
            est = _base_glm(options)
        elif options.fitting is None:
            cols = np.arange(xx.shape[1])
            est = _base_glm(options)
        else:
            cols = np.arange(xx.shape[1])
            est = _penalized_glm(options)
        est.fit(xx[:, cols], yk)
        model.estimators.append(est)
        model.features.append(cols)
    return model


def glm_predict(x, model: GLMModel) -> np.ndarray:
    """Predictions on the response scale (probabilities for ``binomial``)."""
    xx = _as_x(x)
    if model.coefficients is not None:
        return np.column_stack([np.ones(xx.shape[0]), xx]) @ model.coefficients
    if model.joint is not None:
        return np.asarray(model.joint.predict(xx)).reshape(xx.shape[0], -1)
    out = np.empty((xx.shape[0], model.n_outputs))
    for k, (est, cols) in enumerate(zip(model.estimators, model.features)):
        if model.options.family == "binomial":
            out[:, k] = est.predict_proba(xx[:, cols])[:, -1]
        else:
            out[:, k] = est.predict(xx[:, cols])
    return out


# ---------------------------------------------------------------------
# Neural network
# ---------------------------------------------------------------------


@dataclass
class NNModel:
    """Fitted feed-forward network and the number of outputs it predicts."""

    options: NNOptions
    network: object
    n_outputs: int


def nn_train(x, y, options: NNOptions) -> NNModel:
    """Train a multi-layer perceptron by stochastic gradient descent."""
    xx, yy = _as_xy(x, y)
    params = dict(
        hidden_layer_sizes=options.hidden,
        activation=NN_ACTIVATIONS[options.activationfun],
        solver="sgd",
        learning_rate_init=options.learningrate,
        momentum=options.momentum,
        max_iter=options.numepochs,
        batch_size=min(options.batchsize, xx.shape[0]),
        alpha=options.alpha,
        random_state=options.random_state,
    )
    n_outputs = yy.shape[1]
    if options.output == "sigm":
        net = MLPClassifier(**params)
        target = yy.astype(int)
        net.fit(xx, target[:, 0] if n_outputs == 1 else target)
    else:
        net = MLPRegressor(**params)
        net.fit(xx, yy[:, 0] if n_outputs == 1 else yy)
    return NNModel(options=options, network=net, n_outputs=n_outputs)


def nn_predict(x, model: NNModel) -> np.ndarray:
    """Network outputs; probabilities when ``output="sigm"``."""
    xx = _as_x(x)
    if model.options.output == "sigm":
        proba = np.asarray(model.network.predict_proba(xx))
        if model.n_outputs == 1:
            return proba[:, -1].reshape(-1, 1)
        return proba.reshape(xx.shape[0], model.n_outputs)
    return np.asarray(model.network.predict(xx)).reshape(xx.shape[0], model.n_outputs)


__all__ = [
    "AnalogModel",
    "GLMModel",
    "NNModel",
    "analogs_train",
    "analogs_predict",
    "glm_train",
    "glm_predict",
    "nn_train",
    "nn_predict",
]
