# SPDX-License-Identifier: MIT
"""
Method dispatch.

Routes ``train`` / ``predict`` calls to the estimator family selected by a
:class:`~pydownscale.options.Method`. Nothing else happens here: options are
validated by their dataclass, numerics by the estimator.

.. autosummary::

    dispatch_train
    dispatch_predict
    available_methods
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from . import estimators
from .exceptions import OptionsError
from .options import OPTIONS_BY_METHOD, FitOptions, Method, build_options


_train_methods: Dict[Method, Callable] = {
    Method.ANALOGS: estimators.analogs_train,
    Method.GLM: estimators.glm_train,
    Method.NN: estimators.nn_train,
}

_predict_methods: Dict[Method, Callable] = {
    Method.ANALOGS: estimators.analogs_predict,
    Method.GLM: estimators.glm_predict,
    Method.NN: estimators.nn_predict,
}


def available_methods() -> List[str]:
    """Names accepted as ``method``."""
    return [m.value for m in _train_methods]


def _resolve(method, options: Optional[FitOptions], kwargs) -> Tuple[Method, FitOptions]:
    method = Method.coerce(method)
    if options is None:
        return method, build_options(method, **kwargs)
    if kwargs:
        raise OptionsError("Pass either an options object or keyword options, not both.")
    if not isinstance(options, OPTIONS_BY_METHOD[method]):
        raise OptionsError(
            f"{type(options).__name__} cannot configure method {method.value!r}."
        )
    return method, options


def dispatch_train(
    x,
    y,
    method: Union[Method, str],
    *,
    dates=None,
    options: Optional[FitOptions] = None,
    **kwargs,
):
    """
    Fit the estimator family of ``method`` on ``x`` (``N x P``) and ``y``
    (``N x K``).

    Parameters
    ----------
    method :
        ``"analogs"``, ``"GLM"`` or ``"NN"`` (or a :class:`Method`).
    dates :
        Training dates, forwarded to the analog method only.
    options :
        Prebuilt options dataclass. When omitted, ``**kwargs`` are turned
        into one with :func:`~pydownscale.options.build_options`.

    Raises
    ------
    UnsupportedMethodError
        ``method`` is not a known family.
    """
    method, opts = _resolve(method, options, kwargs)
    train = _train_methods[method]
    if method is Method.ANALOGS:
        return train(x, y, opts, dates=dates)
    return train(x, y, opts)


def dispatch_predict(x, method: Union[Method, str], model) -> np.ndarray:
    """Predict with a model returned by :func:`dispatch_train` (``M x K``)."""
    method = Method.coerce(method)
    return _predict_methods[method](x, model)


__all__ = ["dispatch_train", "dispatch_predict", "available_methods"]
