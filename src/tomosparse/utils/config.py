from __future__ import annotations

import json
import os
from dataclasses import asdict, is_dataclass
from typing import Any, Dict

import yaml

from ..data.io_hdf5 import load_weight_store


def load_config(path: str) -> Dict[str, Any]:
    """Load a JSON or YAML projector config file into a dict.

    A ``MatrixFile`` entry under ``ProjectionGeometry`` is resolved against the
    config file's directory and loaded into ``ProjectionGeometry["Matrix"]`` as a
    :class:`~tomosparse.core.sparse.SparseWeightStore`.
    """
    with open(path, "r") as f:
        if path.endswith((".yaml", ".yml")):
            cfg = yaml.safe_load(f) or {}
        else:
            cfg = json.load(f)
    pg = cfg.get("ProjectionGeometry")
    if isinstance(pg, dict) and "MatrixFile" in pg and not os.path.isabs(str(pg["MatrixFile"])):
        pg["MatrixFile"] = os.path.join(os.path.dirname(os.path.abspath(path)), str(pg["MatrixFile"]))
    if isinstance(pg, dict) and "MatrixFile" in pg and "Matrix" not in pg:
        pg["Matrix"] = load_weight_store(str(pg["MatrixFile"]))
    return cfg


def dump_config(obj: Any) -> Dict[str, Any]:
    """Convert dataclass or object to plain dict for logging/serialization."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if is_dataclass(obj):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {k: getattr(obj, k) for k in dir(obj) if not k.startswith("_")}
