# SPDX-License-Identifier: MIT
"""Exception hierarchy for pydownscale."""

from __future__ import annotations


class DownscaleError(Exception):
    """Base class for every error raised by pydownscale itself."""


class UnsupportedMethodError(DownscaleError, ValueError):
    """The transfer-function name is not one of ``analogs``, ``GLM``, ``NN``."""


class ShapeMismatchError(DownscaleError, ValueError):
    """Predictors and predictands cannot be aligned row-wise or site-wise."""


class AllMissingError(DownscaleError, ValueError):
    """A site has no valid observation left after filtering."""

    def __init__(self, site: int, message: str | None = None):
        self.site = site
        super().__init__(
            message
            or f"Site {site} has no valid observations after filtering."
        )


class OptionsError(DownscaleError, ValueError):
    """Invalid or unknown method-specific fitting options."""


__all__ = [
    "DownscaleError",
    "UnsupportedMethodError",
    "ShapeMismatchError",
    "AllMissingError",
    "OptionsError",
]
