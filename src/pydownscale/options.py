# SPDX-License-Identifier: MIT
"""
Transfer-function identifiers and their fitting options.

Each method has its own frozen options dataclass. Options are validated when
the dataclass is built, so a typo or an out-of-range value fails before any
estimator is touched:

>>> build_options("analogs", n_analogs=3, sel_fun="prc90")
AnalogOptions(n_analogs=3, sel_fun='prc90', window=0, n_random=None, random_state=None)
>>> build_options("GLM", famly="binomial")
Traceback (most recent call last):
...
pydownscale.exceptions.OptionsError: Unknown option(s) for GLM: ['famly']. ...
"""

from __future__ import annotations

import numbers
import re
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from .exceptions import OptionsError, UnsupportedMethodError


class Method(str, Enum):
    """Transfer-function families."""

    ANALOGS = "analogs"
    GLM = "GLM"
    NN = "NN"

    @classmethod
    def coerce(cls, method: Union["Method", str]) -> "Method":
        """Return the :class:`Method` for ``method`` (case-insensitive names)."""
        if isinstance(method, cls):
            return method
        if isinstance(method, str):
            key = method.strip().lower()
            for m in cls:
                if m.value.lower() == key:
                    return m
        raise UnsupportedMethodError(
            f"Unsupported method {method!r}. "
            f"Available methods: {[m.value for m in cls]}"
        )


_PRC_RE = re.compile(r"^prc(\d{1,3}(?:\.\d+)?)$")
_SEL_FUNS = {"mean", "wmean", "max", "min", "median"}


def percentile_of(sel_fun: str) -> Optional[float]:
    """Percentile encoded in a ``prcXX`` selection function, else ``None``."""
    m = _PRC_RE.match(sel_fun)
    return float(m.group(1)) if m else None


def _whole(obj, name: str, optional: bool = False) -> None:
    """Store attribute ``name`` of a frozen ``obj`` as a plain ``int``.

    Integral floats (``4.0``, as passed from R) are accepted; anything else
    raises :class:`OptionsError`.
    """
    value = getattr(obj, name)
    if value is None and optional:
        return
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        raise OptionsError(f"{name} must be an integer, got {value!r}.") from None
    if isinstance(value, bool) or not as_float.is_integer():
        raise OptionsError(f"{name} must be an integer, got {value!r}.")
    object.__setattr__(obj, name, int(as_float))


# ---------------------------------------------------------------------
# Analogs
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class AnalogOptions:
    """Options of the analog method.

    Attributes
    ----------
    n_analogs :
        Number of closest predictor days used for each prediction.
    sel_fun :
        How analog outcomes are combined: ``"mean"``, ``"wmean"``
        (inverse-distance weighted mean), ``"max"``, ``"min"``, ``"median"``
        or ``"prcXX"`` (XX-th percentile, e.g. ``"prc85"``).
    window :
        Days on each side of a test date excluded from its analog pool.
        Only applied when the model knows its test dates.
    n_random :
        If given, pick this many analogs at random among the ``n_analogs``
        closest ones.
    random_state :
        Seed for ``n_random``.
    """

    n_analogs: int = 4
    sel_fun: str = "mean"
    window: int = 0
    n_random: Optional[int] = None
    random_state: Optional[int] = None

    def __post_init__(self) -> None:
        for name in ("n_analogs", "window"):
            _whole(self, name)
        _whole(self, "n_random", optional=True)
        if self.n_analogs < 1:
            raise OptionsError("n_analogs must be >= 1.")
        if self.sel_fun not in _SEL_FUNS:
            q = percentile_of(str(self.sel_fun))
            if q is None or not 0.0 <= q <= 100.0:
                raise OptionsError(
                    f"Invalid sel_fun {self.sel_fun!r}. "
                    f"Use one of {sorted(_SEL_FUNS)} or 'prcXX' with 0 <= XX <= 100."
                )
        if self.window < 0:
            raise OptionsError("window must be >= 0.")
        if self.n_random is not None and not 1 <= self.n_random <= self.n_analogs:
            raise OptionsError("n_random must be between 1 and n_analogs.")


# ---------------------------------------------------------------------
# GLM
# ---------------------------------------------------------------------

GLM_FITTINGS = (None, "stepwise", "L1", "L2", "L1L2", "gLASSO", "MP")
GLM_FAMILIES = ("gaussian", "binomial", "poisson", "Gamma", "inverse.gaussian", "mgaussian")
_PENALIZED_FAMILIES = ("gaussian", "binomial")


@dataclass(frozen=True)
class GLMOptions:
    """Options of the generalized linear model.

    ``fitting`` selects how the model is fitted:

    - ``None``: plain GLM of the given ``family``.
    - ``"stepwise"``: forward feature selection, then a plain GLM.
    - ``"L1"``, ``"L2"``, ``"L1L2"``: lasso, ridge and elastic-net with the
      penalty chosen by ``n_folds`` cross-validation (gaussian/binomial).
    - ``"gLASSO"``: multi-output group lasso (``family="mgaussian"``).
    - ``"MP"``: ordinary least squares through the Moore-Penrose inverse.

    Only ``"MP"`` and ``"gLASSO"`` fit several sites jointly.
    """

    fitting: Optional[str] = None
    family: str = "gaussian"
    n_folds: int = 10
    l1_ratio: float = 0.5
    max_features: Optional[int] = None
    max_iter: int = 1000

    def __post_init__(self) -> None:
        _whole(self, "n_folds")
        _whole(self, "max_iter")
        _whole(self, "max_features", optional=True)
        if self.fitting not in GLM_FITTINGS:
            raise OptionsError(
                f"Invalid fitting {self.fitting!r}. Options are {list(GLM_FITTINGS)}."
            )
        if self.family not in GLM_FAMILIES:
            raise OptionsError(
                f"Invalid family {self.family!r}. Options are {list(GLM_FAMILIES)}."
            )
        if self.fitting == "gLASSO" and self.family != "mgaussian":
            raise OptionsError("fitting='gLASSO' requires family='mgaussian'.")
        if self.family == "mgaussian" and self.fitting not in ("gLASSO", "MP"):
            raise OptionsError("family='mgaussian' is only valid with fitting='gLASSO' or 'MP'.")
        if self.fitting == "MP" and self.family not in ("gaussian", "mgaussian"):
            raise OptionsError("fitting='MP' is ordinary least squares; family must be gaussian.")
        if self.fitting in ("L1", "L2", "L1L2") and self.family not in _PENALIZED_FAMILIES:
            raise OptionsError(
                f"fitting={self.fitting!r} supports families {list(_PENALIZED_FAMILIES)}."
            )
        if self.n_folds < 2:
            raise OptionsError("n_folds must be >= 2.")
        if not 0.0 <= float(self.l1_ratio) <= 1.0:
            raise OptionsError("l1_ratio must lie in [0, 1].")
        if self.max_features is not None and self.max_features < 1:
            raise OptionsError("max_features must be >= 1.")

    @property
    def multisite_capable(self) -> bool:
        return self.fitting in ("MP", "gLASSO")


# ---------------------------------------------------------------------
# Neural network
# ---------------------------------------------------------------------

NN_ACTIVATIONS = {"sigm": "logistic", "tanh": "tanh", "linear": "identity", "relu": "relu"}
NN_OUTPUTS = ("linear", "sigm")


@dataclass(frozen=True)
class NNOptions:
    """Options of the feed-forward neural network.

    Names follow the deepnet conventions (``hidden``, ``activationfun``,
    ``learningrate``, ``numepochs``, ``batchsize``, ``output``). With
    ``output="sigm"`` the targets must be binary and predictions are
    probabilities; ``"linear"`` is plain regression.
    """

    hidden: Tuple[int, ...] = (10,)
    activationfun: str = "sigm"
    learningrate: float = 0.1
    momentum: float = 0.5
    numepochs: int = 200
    batchsize: int = 100
    output: str = "linear"
    alpha: float = 1e-4
    random_state: Optional[int] = None

    def __post_init__(self) -> None:
        hidden = self.hidden
        if isinstance(hidden, numbers.Real):
            hidden = (hidden,)
        try:
            hidden = tuple(float(h) for h in hidden)
        except (TypeError, ValueError):
            raise OptionsError(f"hidden must be layer sizes, got {self.hidden!r}.") from None
        if not hidden or any(h < 1 or not h.is_integer() for h in hidden):
            raise OptionsError("hidden must contain positive integer layer sizes.")
        object.__setattr__(self, "hidden", tuple(int(h) for h in hidden))
        for name in ("numepochs", "batchsize"):
            _whole(self, name)
        if self.activationfun not in NN_ACTIVATIONS:
            raise OptionsError(
                f"Invalid activationfun {self.activationfun!r}. "
                f"Options are {list(NN_ACTIVATIONS)}."
            )
        if self.output not in NN_OUTPUTS:
            raise OptionsError(f"Invalid output {self.output!r}. Options are {list(NN_OUTPUTS)}.")
        if float(self.learningrate) <= 0.0:
            raise OptionsError("learningrate must be > 0.")
        if not 0.0 <= float(self.momentum) <= 1.0:
            raise OptionsError("momentum must lie in [0, 1].")
        if self.numepochs < 1 or self.batchsize < 1:
            raise OptionsError("numepochs and batchsize must be >= 1.")


FitOptions = Union[AnalogOptions, GLMOptions, NNOptions]

OPTIONS_BY_METHOD = {
    Method.ANALOGS: AnalogOptions,
    Method.GLM: GLMOptions,
    Method.NN: NNOptions,
}

# R-style dotted names accepted as aliases
_ALIASES = {
    "n.analogs": "n_analogs",
    "sel.fun": "sel_fun",
    "n.random": "n_random",
    "n.folds": "n_folds",
}


def build_options(method: Union[Method, str], **kwargs) -> FitOptions:
    """
    Build the options dataclass of ``method`` from keyword arguments.

    Raises
    ------
    UnsupportedMethodError
        Unknown method name.
    OptionsError
        Unknown keyword or invalid value.
    """
    method = Method.coerce(method)
    cls = OPTIONS_BY_METHOD[method]
    kwargs = {_ALIASES.get(k, k): v for k, v in kwargs.items()}
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(kwargs) - allowed)
    if unknown:
        raise OptionsError(
            f"Unknown option(s) for {method.value}: {unknown}. Allowed: {sorted(allowed)}"
        )
    return cls(**kwargs)


def options_to_dict(options: FitOptions) -> Dict:
    """JSON-friendly dictionary of an options dataclass."""
    d = asdict(options)
    for k, v in d.items():
        if isinstance(v, tuple):
            d[k] = list(v)
    return d


__all__ = [
    "Method",
    "AnalogOptions",
    "GLMOptions",
    "NNOptions",
    "FitOptions",
    "OPTIONS_BY_METHOD",
    "build_options",
    "options_to_dict",
    "percentile_of",
]
