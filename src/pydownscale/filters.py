# SPDX-License-Identifier: MIT
"""
Observation filters.

A filter decides which observations of a site take part in fitting. Missing
values (``NaN``) are always excluded, and they are excluded *before* the
predicate is evaluated, so a predicate never sees a missing value.

Filters can be given as:

- ``None`` (keep every non-missing value),
- a typed predicate (:class:`GreaterThan`, :class:`LessEqual`, ...),
- any callable mapping a 1-D float array to a boolean array of the same
  length,
- a comparison string such as ``">0"``, ``"<= 1.5"`` or ``"!=0"``.

Examples
--------
>>> import numpy as np
>>> valid_indices(np.array([1.0, np.nan, 3.0, 4.0]), ">2")
array([2, 3])
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Callable, Optional, Union

import numpy as np


@dataclass(frozen=True)
class Comparison:
    """Compare every value against a fixed ``threshold``."""

    threshold: float
    symbol = "?"

    def _op(self, a, b):  # pragma: no cover - overridden
        raise NotImplementedError

    def __call__(self, values: np.ndarray) -> np.ndarray:
        return self._op(values, self.threshold)

    def __str__(self) -> str:
        return f"{self.symbol}{self.threshold:g}"


class GreaterThan(Comparison):
    symbol = ">"
    _op = staticmethod(operator.gt)


class GreaterEqual(Comparison):
    symbol = ">="
    _op = staticmethod(operator.ge)


class LessThan(Comparison):
    symbol = "<"
    _op = staticmethod(operator.lt)


class LessEqual(Comparison):
    symbol = "<="
    _op = staticmethod(operator.le)


class Equal(Comparison):
    symbol = "=="
    _op = staticmethod(operator.eq)


class NotEqual(Comparison):
    symbol = "!="
    _op = staticmethod(operator.ne)


_SYMBOLS = {
    ">": GreaterThan,
    ">=": GreaterEqual,
    "<": LessThan,
    "<=": LessEqual,
    "==": Equal,
    "=": Equal,
    "!=": NotEqual,
}

_FILTER_RE = re.compile(
    r"^\s*(>=|<=|==|!=|>|<|=)\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)\s*$"
)

FilterLike = Union[None, str, Comparison, Callable[[np.ndarray], np.ndarray]]


def parse_filter(text: str) -> Comparison:
    """
    Parse a comparison string into a typed predicate.

    Only a single comparison operator followed by a number is accepted;
    nothing is evaluated as code.

    Raises
    ------
    ValueError
        If ``text`` is not of the form ``<op><number>``.
    """
    m = _FILTER_RE.match(str(text))
    if m is None:
        raise ValueError(
            f"Invalid filter expression {text!r}. "
            f"Expected an operator in {sorted(set(_SYMBOLS))} followed by a number, e.g. '>0'."
        )
    return _SYMBOLS[m.group(1)](float(m.group(2)))


def as_filter(filt: FilterLike) -> Optional[Callable[[np.ndarray], np.ndarray]]:
    """Normalize any accepted filter form to a callable (or ``None``)."""
    if filt is None:
        return None
    if isinstance(filt, str):
        return parse_filter(filt)
    if callable(filt):
        return filt
    raise TypeError(f"Unsupported filter of type {type(filt).__name__}.")


def describe_filter(filt: FilterLike) -> Optional[str]:
    """
    Short text form of a filter, suitable for logs and JSON metadata.

    Comparison strings and typed predicates give their normalized form
    (``"> 0"`` becomes ``">0"``); other callables give their qualified name.
    """
    if filt is None:
        return None
    if isinstance(filt, (str, Comparison)):
        return str(as_filter(filt))
    if callable(filt):
        return getattr(filt, "__qualname__", type(filt).__qualname__)
    raise TypeError(f"Unsupported filter of type {type(filt).__name__}.")


def valid_indices(values, filt: FilterLike = None) -> np.ndarray:
    """
    Ascending row indices of the non-missing values satisfying ``filt``.

    Parameters
    ----------
    values :
        1-D observations of a single site (an ``N x 1`` column is accepted).
    filt :
        Optional filter (see module docstring).

    Returns
    -------
    numpy.ndarray
        Integer indices in their original (temporal) order.
    """
    y = np.asarray(values, dtype=float)
    if y.ndim == 2 and y.shape[1] == 1:
        y = y[:, 0]
    if y.ndim != 1:
        raise ValueError(f"Expected a single-site column, got shape {y.shape}.")

    keep = ~np.isnan(y)
    predicate = as_filter(filt)
    if predicate is not None and keep.any():
        mask = np.zeros(y.shape, dtype=bool)
        mask[keep] = np.asarray(predicate(y[keep]), dtype=bool)
        keep = mask
    return np.flatnonzero(keep)


__all__ = [
    "Comparison",
    "GreaterThan",
    "GreaterEqual",
    "LessThan",
    "LessEqual",
    "Equal",
    "NotEqual",
    "parse_filter",
    "as_filter",
    "describe_filter",
    "valid_indices",
]
