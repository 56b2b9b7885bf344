# SPDX-License-Identifier: MIT
"""
Persistence of trained downscaling models.

A :class:`~pydownscale.train.TrainingResult` is stored as a joblib artifact,
optionally with a small JSON side-car (:class:`TrainingMeta`) describing it,
so a model directory can be inspected without unpickling anything.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

from joblib import dump, load

from .options import options_to_dict
from .train import TrainingResult


def _ensure_parent_dir(path: Optional[str]) -> None:
    if not path:
        return
    os.makedirs(os.path.dirname(str(path)) or ".", exist_ok=True)


@dataclass(frozen=True)
class TrainingMeta:
    """Metadata persisted alongside a trained result.

    Attributes
    ----------
    method, singlesite, filt :
        Training configuration.
    options :
        Method options as a plain dictionary.
    dimension_names, sites, n_obs, n_sites :
        Layout of the training predictand.
    variable :
        ``metadata["variable"]`` of the predictand, if any.
    version :
        Package version that wrote the artifact.
    """

    method: str
    singlesite: bool
    filt: Optional[str]
    options: Dict
    dimension_names: List[str]
    sites: Optional[List]
    n_obs: int
    n_sites: int
    variable: Optional[str]
    version: str

    @staticmethod
    def from_result(result: TrainingResult) -> "TrainingMeta":
        from . import __version__

        conf, pred = result.configuration, result.predictions
        sites = None
        if pred.sites is not None:
            sites = [s.item() if hasattr(s, "item") else s for s in pred.sites]
        return TrainingMeta(
            method=conf.method.value,
            singlesite=conf.singlesite,
            filt=conf.filt,
            options=options_to_dict(conf.options),
            dimension_names=list(pred.dimension_names),
            sites=sites,
            n_obs=pred.n_obs,
            n_sites=pred.n_sites,
            variable=pred.metadata.get("variable"),
            version=__version__,
        )

    @staticmethod
    def load(path: str) -> "TrainingMeta":
        """Load metadata from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            return TrainingMeta(**json.load(f))

    def save(self, path: str) -> None:
        """Save metadata to a JSON file."""
        _ensure_parent_dir(path)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(asdict(self), f, ensure_ascii=False, indent=2, default=str)


def save_training_result(
    result: TrainingResult,
    model_path: str,
    meta_path: Optional[str] = None,
) -> Tuple[str, Optional[str]]:
    """
    Dump ``result`` with joblib and, if ``meta_path`` is given, its
    :class:`TrainingMeta` as JSON. Parent directories are created.

    Returns
    -------
    (model_path, meta_path)
    """
    _ensure_parent_dir(model_path)
    dump(result, model_path)
    if meta_path is not None:
        TrainingMeta.from_result(result).save(meta_path)
    return model_path, meta_path


def load_training_result(model_path: str) -> TrainingResult:
    """Load a result written by :func:`save_training_result`."""
    obj = load(model_path)
    if not isinstance(obj, TrainingResult):
        raise TypeError(
            f"{model_path} does not contain a TrainingResult (got {type(obj).__name__})."
        )
    return obj


__all__ = ["TrainingMeta", "save_training_result", "load_training_result"]
