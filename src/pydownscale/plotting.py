# SPDX-License-Identifier: MIT
"""Plot helpers for downscaled series."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

import matplotlib
import matplotlib.pyplot as plt
import pandas as pd

from .data import PredictandSet
from .metrics import regression_metrics


def plot_site_predictions(
    result,
    observed: PredictandSet,
    *,
    site: int = 0,
    resample: Optional[str] = None,
    agg: str = "mean",
    figsize: Tuple[int, int] = (12, 5),
    title: Optional[str] = None,
    ylabel: Optional[str] = None,
    save_to: Optional[str] = None,
    obs_style: Optional[Dict] = None,
    pred_style: Optional[Dict] = None,
) -> Tuple[matplotlib.figure.Figure, matplotlib.axes.Axes, Dict[str, float]]:
    """
    Observed vs. modeled series for one site.

    Parameters
    ----------
    result :
        :class:`~pydownscale.train.TrainingResult` or a prediction
        :class:`~pydownscale.data.PredictandSet`.
    observed :
        Observations aligned with the predictions.
    site :
        Column position of the site.
    resample, agg :
        Optional resampling (e.g. ``"ME"``) with ``"mean"``, ``"sum"`` or
        ``"median"``; needs reference dates.
    save_to :
        Optional output path for the figure.

    Returns
    -------
    fig, ax, metrics
        ``metrics`` are computed on the plotted (possibly resampled) pairs.
    """
    pred = getattr(result, "predictions", result)
    if not 0 <= site < observed.n_sites:
        raise ValueError(f"Site {site} out of range (0..{observed.n_sites - 1}).")

    index = observed.reference_dates
    if index is None:
        if resample is not None:
            raise ValueError("Resampling requires reference dates.")
        index = pd.RangeIndex(observed.n_obs)
    frame = pd.DataFrame(
        {"obs": observed.column(site), "pred": pred.column(site)}, index=index
    )
    if resample is not None:
        frame = getattr(frame.resample(resample), agg.lower())()

    pair = frame.dropna()
    metrics = regression_metrics(pair["obs"].values, pair["pred"].values)

    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(frame.index, frame["obs"], label="Observed", **({"lw": 1.0} | (obs_style or {})))
    ax.plot(
        frame.index,
        frame["pred"],
        label=f"Modeled (RMSE={metrics['RMSE']:.2f}, R²={metrics['R2']:.2f})",
        **({"lw": 1.0, "alpha": 0.8} | (pred_style or {})),
    )

    label = observed.site_labels()[site]
    variable = observed.metadata.get("variable", "")
    ax.set_title(title or f"Site {label} {variable}".strip())
    ax.set_ylabel(ylabel or variable)
    ax.grid(True, alpha=0.3)
    ax.legend(loc="best")
    fig.tight_layout()

    if save_to:
        fig.savefig(save_to, dpi=150)
    return fig, ax, metrics


__all__ = ["plot_site_predictions"]
