# src/pydownscale/data.py
# SPDX-License-Identifier: MIT
"""
Input and output containers for downscaling.

The training core works on two read-only structures produced by an external
preparation step:

- :class:`PredictorGrid` holds the large-scale predictors, either as one
  global ``time x feature`` matrix usable by every site, or as one local
  neighborhood matrix per site (or both).
- :class:`PredictandSet` holds the local observations (``time`` or
  ``time x site``), the names of its axes and, optionally, the reference
  dates of the time axis.

:class:`PreparedGrid` bundles both. The pandas helpers at the bottom of the
module build a :class:`PredictandSet` from a wide (date x station) or a
long (station | date | value) table, following the canonical column names
used across the package::

    station | date | prec
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pandas.api.types import DatetimeTZDtype


LocalPredictors = Union[Sequence[Optional[np.ndarray]], Mapping[int, np.ndarray]]

_KEEP = object()


def ensure_datetime_index(dates) -> Optional[pd.DatetimeIndex]:
    """Return a timezone-naive :class:`DatetimeIndex` (or ``None``)."""
    if dates is None:
        return None
    idx = pd.DatetimeIndex(pd.to_datetime(dates))
    if isinstance(idx.dtype, DatetimeTZDtype):
        idx = idx.tz_localize(None)
    return idx


def _as_float_matrix(x) -> np.ndarray:
    arr = np.asarray(x, dtype=float)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    return arr


# ---------------------------------------------------------------------
# Predictors
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class PredictorGrid:
    """Predictor values aligned to the predictand time axis.

    Attributes
    ----------
    x_global :
        ``time x feature`` matrix shared by all sites. May be ``None`` when
        only local predictors are available (single-site mode only).
    x_local :
        Optional per-site ``time x feature`` matrices (local neighborhood
        predictors), as a sequence indexed by site position or a mapping
        ``{site_index: matrix}``.
    """

    x_global: Optional[np.ndarray] = None
    x_local: Optional[LocalPredictors] = None

    def __post_init__(self) -> None:
        if self.x_global is not None:
            object.__setattr__(self, "x_global", _as_float_matrix(self.x_global))
        if self.x_local is not None:
            if isinstance(self.x_local, Mapping):
                local = {int(k): _as_float_matrix(v) for k, v in self.x_local.items()}
            else:
                local = [None if v is None else _as_float_matrix(v) for v in self.x_local]
            object.__setattr__(self, "x_local", local)

    @property
    def has_local(self) -> bool:
        return self.x_local is not None

    def local_for(self, site: int) -> Optional[np.ndarray]:
        """Local predictors of ``site`` or ``None`` when there is no entry."""
        if self.x_local is None:
            return None
        if isinstance(self.x_local, Mapping):
            return self.x_local.get(int(site))
        if 0 <= site < len(self.x_local):
            return self.x_local[site]
        return None

    @property
    def n_rows(self) -> Optional[int]:
        if self.x_global is not None:
            return int(self.x_global.shape[0])
        if self.x_local:
            entries = self.x_local.values() if isinstance(self.x_local, Mapping) else self.x_local
            for v in entries:
                if v is not None:
                    return int(v.shape[0])
        return None


# ---------------------------------------------------------------------
# Predictands
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class PredictandSet:
    """Observed (or modeled) local values.

    Attributes
    ----------
    values :
        1-D (``time``) or 2-D (``time x site``) float array. Missing values
        are ``NaN``.
    dimension_names :
        Semantic labels of each axis, e.g. ``("time", "loc")``. Carried
        verbatim into every prediction built from this set.
    reference_dates :
        Dates of the time axis. Required by the analog method only.
    sites :
        Optional site identifiers (one per column).
    metadata :
        Free-form attributes (variable name, units, ...). Copied to
        predictions.
    """

    values: np.ndarray
    dimension_names: Tuple[str, ...] = ()
    reference_dates: Optional[pd.DatetimeIndex] = None
    sites: Optional[List] = None
    metadata: Dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        values = np.asarray(self.values, dtype=float)
        if values.ndim not in (1, 2):
            raise ValueError(
                f"Predictand values must be 1-D or 2-D, got {values.ndim} dimensions."
            )
        object.__setattr__(self, "values", values)
        dims = tuple(self.dimension_names) or (
            ("time",) if values.ndim == 1 else ("time", "loc")
        )
        object.__setattr__(self, "dimension_names", dims)
        object.__setattr__(
            self, "reference_dates", ensure_datetime_index(self.reference_dates)
        )
        if self.sites is not None:
            object.__setattr__(self, "sites", list(self.sites))

    @property
    def n_obs(self) -> int:
        return int(self.values.shape[0])

    @property
    def n_sites(self) -> int:
        return 1 if self.values.ndim == 1 else int(self.values.shape[1])

    def as_2d(self) -> np.ndarray:
        """Values as a ``time x site`` matrix (1-D input becomes one column)."""
        if self.values.ndim == 1:
            return self.values.reshape(-1, 1)
        return self.values

    def column(self, site: int) -> np.ndarray:
        """1-D view of the observations of ``site``."""
        return self.as_2d()[:, site]

    def with_values(self, values: np.ndarray, reference_dates=_KEEP) -> "PredictandSet":
        """Copy with new values, same dimension names, sites and metadata.

        An ``N x 1`` array is flattened back to ``N`` when this set is 1-D.
        ``reference_dates`` replaces the dates when given (``None`` clears
        them).
        """
        values = np.asarray(values, dtype=float)
        if self.values.ndim == 1 and values.ndim == 2 and values.shape[1] == 1:
            values = values[:, 0]
        dates = self.reference_dates if reference_dates is _KEEP else reference_dates
        return replace(
            self,
            values=values,
            reference_dates=dates,
            metadata=dict(self.metadata),
        )

    def site_labels(self) -> List:
        if self.sites is not None:
            return list(self.sites)
        return list(range(self.n_sites))

    def to_frame(self, value_col: str = "value", site_col: str = "station",
                 date_col: str = "date") -> pd.DataFrame:
        """Long-format table ``[date, station, value]`` of the values."""
        y = self.as_2d()
        n, s = y.shape
        if self.reference_dates is not None:
            dates = np.asarray(self.reference_dates)
        else:
            dates = np.arange(n)
        labels = self.site_labels()
        return pd.DataFrame(
            {
                date_col: np.tile(dates, s),
                site_col: np.repeat(labels, n),
                value_col: y.T.reshape(-1),
            }
        )

    # -- constructors -------------------------------------------------

    @classmethod
    def from_frame(cls, wide: pd.DataFrame, *, dimension_names=("time", "loc"),
                   metadata: Optional[Dict] = None) -> "PredictandSet":
        """Build from a wide table (index = dates, one column per site)."""
        return cls(
            values=wide.to_numpy(dtype=float),
            dimension_names=tuple(dimension_names),
            reference_dates=wide.index,
            sites=list(wide.columns),
            metadata=dict(metadata or {}),
        )


def predictand_from_long(
    data: pd.DataFrame,
    *,
    id_col: str = "station",
    date_col: str = "date",
    target_col: str = "prec",
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> PredictandSet:
    """
    Pivot a long-format daily table into a :class:`PredictandSet`.

    Duplicated (station, date) pairs are averaged. Days where a station has
    no record are ``NaN``. The target column name is stored in
    ``metadata["variable"]``.
    """
    df = data[[id_col, date_col, target_col]].copy()
    df[date_col] = pd.to_datetime(df[date_col], errors="coerce")
    if isinstance(df[date_col].dtype, DatetimeTZDtype):
        df[date_col] = df[date_col].dt.tz_localize(None)
    df = df.dropna(subset=[date_col])

    if start or end:
        lo = pd.to_datetime(start) if start else df[date_col].min()
        hi = pd.to_datetime(end) if end else df[date_col].max()
        df = df[(df[date_col] >= lo) & (df[date_col] <= hi)]
    if df.empty:
        raise ValueError("No rows left for the requested period.")

    wide = df.pivot_table(
        index=date_col,
        columns=id_col,
        values=target_col,
        aggfunc="mean",
        dropna=False,
    ).sort_index()
    return PredictandSet.from_frame(wide, metadata={"variable": target_col})


# ---------------------------------------------------------------------
# Prepared grid (predictors + predictands)
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class PreparedGrid:
    """Predictors and predictands ready for training."""

    predictors: PredictorGrid
    predictand: PredictandSet

    @property
    def x_global(self) -> Optional[np.ndarray]:
        return self.predictors.x_global

    @property
    def y(self) -> PredictandSet:
        return self.predictand


__all__ = [
    "PredictorGrid",
    "PredictandSet",
    "PreparedGrid",
    "predictand_from_long",
    "ensure_datetime_index",
]
