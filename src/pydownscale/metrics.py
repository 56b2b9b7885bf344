# src/pydownscale/metrics.py
# SPDX-License-Identifier: MIT
"""
Scores for downscaled series.

- :func:`kge` — Kling–Gupta efficiency (Gupta et al., 2009).
- :func:`nse` — Nash–Sutcliffe efficiency.
- :func:`regression_metrics` — MAE, RMSE, R², KGE and NSE in one dict.
- :func:`aggregate_and_score` — resample a dated pair of series, then score.
- :func:`score_training` — per-site scores of a
  :class:`~pydownscale.train.TrainingResult` against the observations.

R² is the squared Pearson correlation between observations and
predictions, not :func:`sklearn.metrics.r2_score` (NSE already plays that
role). Undefined scores (too few points, constant observations) are
``numpy.nan``.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error

from .data import PredictandSet


_NAN_SCORES = {"MAE": np.nan, "RMSE": np.nan, "R2": np.nan, "KGE": np.nan, "NSE": np.nan}

_FREQ_ALIAS = {"M": "ME", "A": "YE", "Y": "YE", "Q": "QE"}


def _paired(y_true: Iterable[float], y_pred: Iterable[float]) -> Tuple[np.ndarray, np.ndarray]:
    yt = np.asarray(y_true, dtype=float)
    yp = np.asarray(y_pred, dtype=float)
    if yt.shape != yp.shape:
        raise ValueError(
            f"Shapes of y_true {yt.shape} and y_pred {yp.shape} do not match."
        )
    return yt, yp


def kge(y_true: Iterable[float], y_pred: Iterable[float]) -> float:
    """
    Kling–Gupta efficiency.

    .. math::

        \\mathrm{KGE} = 1 - \\sqrt{(r - 1)^2 + (\\alpha - 1)^2 + (\\beta - 1)^2}

    with ``r`` the Pearson correlation, ``alpha`` the ratio of standard
    deviations and ``beta`` the ratio of means (predicted over observed).
    NaN for fewer than two points, a constant series or a zero observed mean.
    """
    yt, yp = _paired(y_true, y_pred)
    if yt.size < 2:
        return np.nan

    mu_t, mu_p = float(np.mean(yt)), float(np.mean(yp))
    sd_t, sd_p = float(np.std(yt, ddof=1)), float(np.std(yp, ddof=1))
    if sd_t == 0.0 or sd_p == 0.0 or mu_t == 0.0:
        return np.nan

    r = float(np.corrcoef(yt, yp)[0, 1])
    if not np.isfinite(r):
        return np.nan
    return float(1.0 - np.sqrt((r - 1.0) ** 2 + (sd_p / sd_t - 1.0) ** 2 + (mu_p / mu_t - 1.0) ** 2))


def nse(y_true: Iterable[float], y_pred: Iterable[float]) -> float:
    """Nash–Sutcliffe efficiency; NaN for < 2 points or constant observations."""
    yt, yp = _paired(y_true, y_pred)
    if yt.size < 2:
        return np.nan
    denom = float(np.sum((yt - yt.mean()) ** 2))
    if denom == 0.0:
        return np.nan
    return float(1.0 - np.sum((yt - yp) ** 2) / denom)


def regression_metrics(y_true: Iterable[float], y_pred: Iterable[float]) -> Dict[str, float]:
    """
    MAE, RMSE, R² (squared correlation), KGE and NSE.

    Empty input gives all-NaN scores. A single pair scores 1.0 on R², KGE
    and NSE when it matches exactly and 0.0 otherwise, which keeps
    aggregations that collapse to one period comparable.
    """
    yt, yp = _paired(y_true, y_pred)
    if yt.size == 0:
        return dict(_NAN_SCORES)

    mae = float(mean_absolute_error(yt, yp))
    rmse = float(np.sqrt(mean_squared_error(yt, yp)))

    if yt.size == 1:
        same = 1.0 if float(yt[0]) == float(yp[0]) else 0.0
        return {"MAE": mae, "RMSE": rmse, "R2": same, "KGE": same, "NSE": same}

    if np.std(yt) == 0.0 or np.std(yp) == 0.0:
        r2 = np.nan
    else:
        r2 = float(np.corrcoef(yt, yp)[0, 1] ** 2)

    scores = {"MAE": mae, "RMSE": rmse, "R2": r2, "KGE": kge(yt, yp), "NSE": nse(yt, yp)}
    return {k: (float(v) if np.isfinite(v) else np.nan) for k, v in scores.items()}


def aggregate_and_score(
    df_pred: pd.DataFrame,
    *,
    date_col: str = "date",
    y_col: str = "y_true",
    yhat_col: str = "y_pred",
    freq: str = "M",
    agg: str = "sum",
) -> Tuple[Dict[str, float], pd.DataFrame]:
    """
    Resample ``[date_col, y_col, yhat_col]`` to ``freq`` and score the result.

    ``freq`` aliases ``M``, ``A``/``Y`` and ``Q`` are mapped to their
    period-end codes. ``agg`` is one of ``"sum"``, ``"mean"``, ``"median"``.

    Returns
    -------
    (metrics, aggregated_dataframe)
    """
    freq = _FREQ_ALIAS.get(freq, freq)
    agg = agg.lower()
    if agg not in {"sum", "mean", "median"}:
        raise ValueError("agg must be one of: 'sum', 'mean', or 'median'.")

    df = df_pred[[date_col, y_col, yhat_col]].copy()
    df[date_col] = pd.to_datetime(df[date_col], errors="coerce")
    df = df.dropna()
    if df.empty:
        return dict(_NAN_SCORES), df

    agg_df = getattr(df.set_index(date_col).sort_index().resample(freq), agg)().dropna()
    if agg_df.empty:
        return dict(_NAN_SCORES), agg_df
    return regression_metrics(agg_df[y_col].values, agg_df[yhat_col].values), agg_df


def score_training(
    result,
    observed: PredictandSet,
    *,
    freq: Optional[str] = None,
    agg: str = "sum",
) -> pd.DataFrame:
    """
    Per-site scores of training predictions against observations.

    Parameters
    ----------
    result :
        :class:`~pydownscale.train.TrainingResult` (or a
        :class:`~pydownscale.data.PredictandSet` of predictions).
    observed :
        The predictand the model was trained on.
    freq, agg :
        Optional temporal aggregation before scoring (requires reference
        dates), see :func:`aggregate_and_score`.

    Returns
    -------
    DataFrame
        One row per site: ``site``, ``n_rows`` and the five scores. Only rows
        where both series are finite are used.
    """
    pred = getattr(result, "predictions", result)
    yo, yp = observed.as_2d(), pred.as_2d()
    if yo.shape != yp.shape:
        raise ValueError(f"Observed {yo.shape} and predicted {yp.shape} shapes differ.")
    if freq is not None and observed.reference_dates is None:
        raise ValueError("Temporal aggregation requires reference dates.")

    rows = []
    for i, label in enumerate(observed.site_labels()):
        ok = np.isfinite(yo[:, i]) & np.isfinite(yp[:, i])
        if freq is None:
            scores = regression_metrics(yo[ok, i], yp[ok, i])
        else:
            pair = pd.DataFrame(
                {
                    "date": observed.reference_dates[ok],
                    "y_true": yo[ok, i],
                    "y_pred": yp[ok, i],
                }
            )
            scores, _ = aggregate_and_score(pair, freq=freq, agg=agg)
        rows.append({"site": label, "n_rows": int(ok.sum()), **scores})
    return pd.DataFrame(rows)


__all__ = [
    "kge",
    "nse",
    "regression_metrics",
    "aggregate_and_score",
    "score_training",
]
