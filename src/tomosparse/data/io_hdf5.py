"""HDF5 IO for sparse-matrix projection geometries.

Layout written by :func:`save_sparse_geometry`::

    /entry                         NX_class=NXentry
        @projection_geometry_json  scalar metadata (counts, angles, detector width)
        @volume_geometry_json      grid size and window
    /entry/matrix                  NX_class=NXdata
        indptr  (n_rows + 1,) int64
        indices (nnz,)        int64
        data    (nnz,)        float32
        @shape                 [n_rows, n_cols]

Entry order inside each row is written and read back verbatim.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional, Tuple

import numpy as np
import h5py
import scipy.sparse as sp

from ..core.errors import InvalidGeometryError
from ..core.geometry.base import SparseMatrixProjectionGeometry, VolumeGeometry
from ..core.sparse import SparseWeightStore


LOG = logging.getLogger(__name__)

_HDF5_EXTS = (".h5", ".hdf5", ".nxs")


def _attr_to_str(v: Any, default: str | None = None) -> str | None:
    """Convert an HDF5 attribute (bytes, numpy scalar, str) to a Python string."""
    if v is None:
        return default
    if isinstance(v, bytes):
        return v.decode("utf-8", errors="ignore")
    if isinstance(v, np.ndarray):
        if v.shape == ():
            return _attr_to_str(v.item(), default)
        if v.size >= 1:
            return _attr_to_str(v.flat[0], default)
        return default
    return str(v)


def _ensure_group(root: h5py.Group, name: str, nx_class: Optional[str] = None) -> h5py.Group:
    g = root.require_group(name)
    if nx_class:
        g.attrs["NX_class"] = nx_class
    return g


def _write_string_attr(obj: h5py.Group | h5py.Dataset, key: str, value: str) -> None:
    obj.attrs[key] = np.array(value, dtype=h5py.string_dtype(encoding="utf-8"))


def save_sparse_geometry(
    path: str,
    projection_geometry: SparseMatrixProjectionGeometry,
    volume_geometry: VolumeGeometry,
    *,
    compression: str | None = "lzf",
    overwrite: bool = True,
) -> None:
    """Write a projection geometry, its weight matrix and the volume grid to HDF5."""
    matrix = projection_geometry.matrix
    if matrix is None:
        raise InvalidGeometryError("projection geometry has no weight matrix to save")

    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    mode = "w" if overwrite else "x"
    with h5py.File(path, mode) as f:
        entry = _ensure_group(f, "entry", "NXentry")
        _write_string_attr(entry, "projection_geometry_json", json.dumps(projection_geometry.to_dict()))
        _write_string_attr(entry, "volume_geometry_json", json.dumps(volume_geometry.to_dict()))
        mg = _ensure_group(entry, "matrix", "NXdata")
        # Empty datasets cannot be chunked/compressed
        comp = compression if matrix.nnz > 0 else None
        mg.create_dataset("indptr", data=np.asarray(matrix.indptr, dtype=np.int64))
        mg.create_dataset("indices", data=np.asarray(matrix.indices, dtype=np.int64), compression=comp)
        mg.create_dataset("data", data=np.asarray(matrix.weights, dtype=np.float32), compression=comp)
        mg.attrs["shape"] = np.asarray(matrix.shape, dtype=np.int64)
        if matrix.declared_cols is None:
            mg.attrs["width_inferred"] = True
    LOG.info("Saved sparse geometry to %s (nnz=%d)", path, matrix.nnz)


def _read_store(f: h5py.File) -> SparseWeightStore:
    mg = f["entry/matrix"]
    shape = None
    if "shape" in mg.attrs and not bool(mg.attrs.get("width_inferred", False)):
        shape = tuple(int(s) for s in np.asarray(mg.attrs["shape"]).ravel())
    return SparseWeightStore(mg["indptr"][...], mg["indices"][...], mg["data"][...], shape=shape)


def load_sparse_geometry(path: str) -> Tuple[SparseMatrixProjectionGeometry, VolumeGeometry]:
    """Read back what :func:`save_sparse_geometry` wrote."""
    report = validate_sparse_file(path)
    if report["issues"]:
        raise InvalidGeometryError(f"{path}: " + "; ".join(report["issues"]))
    with h5py.File(path, "r") as f:
        entry = f["entry"]
        pg = json.loads(_attr_to_str(entry.attrs["projection_geometry_json"]))
        vg = json.loads(_attr_to_str(entry.attrs["volume_geometry_json"]))
        store = _read_store(f)
    return SparseMatrixProjectionGeometry.from_dict(pg, matrix=store), VolumeGeometry.from_dict(vg)


def load_weight_store(path: str) -> SparseWeightStore:
    """Load only the weight matrix, from HDF5 or a scipy ``save_npz`` file."""
    if path.endswith(".npz"):
        return SparseWeightStore.from_scipy(sp.load_npz(path))
    if path.endswith(_HDF5_EXTS):
        with h5py.File(path, "r") as f:
            if "entry/matrix" not in f:
                raise InvalidGeometryError(f"{path}: missing /entry/matrix")
            return _read_store(f)
    raise InvalidGeometryError(f"unsupported weight matrix file '{path}' (use .npz or .h5/.hdf5/.nxs)")


def save_weight_store(path: str, store: SparseWeightStore, n_cols: int | None = None) -> None:
    """Write only the weight matrix as a scipy ``.npz`` file.

    The npz format always records a column count, so a store whose width was
    inferred from its data needs an explicit ``n_cols`` (normally the volume's
    pixel count). Otherwise the reloaded store would declare a width narrower
    than the grid it was built for.
    """
    width = store.declared_cols if n_cols is None else int(n_cols)
    if width is None:
        raise InvalidGeometryError("store has no declared width; pass n_cols to save it as .npz")
    if store.declared_cols is not None and width != store.declared_cols:
        raise InvalidGeometryError(f"n_cols={width} disagrees with the store's declared width {store.declared_cols}")
    if width <= store.max_index():
        raise InvalidGeometryError(f"n_cols={width} too small for stored pixel index {store.max_index()}")
    m = sp.csr_matrix((store.weights, store.indices, store.indptr), shape=(store.n_rows, width), copy=False)
    sp.save_npz(path, m, compressed=True)


def validate_sparse_file(path: str) -> Dict[str, Any]:
    """Lightweight schema checks. Returns a report dict; empty `issues` means OK."""
    report: Dict[str, Any] = {"issues": []}
    issues = report["issues"]
    with h5py.File(path, "r") as f:
        if "entry" not in f:
            issues.append("Missing /entry")
            return report
        e = f["entry"]
        for key in ("projection_geometry_json", "volume_geometry_json"):
            if key not in e.attrs:
                issues.append(f"Missing /entry@{key}")
        if "matrix" not in e:
            issues.append("Missing /entry/matrix")
            return report
        m = e["matrix"]
        for name in ("indptr", "indices", "data"):
            if name not in m:
                issues.append(f"Missing /entry/matrix/{name}")
            elif m[name].ndim != 1:
                issues.append(f"/entry/matrix/{name} must be 1D")
        if "indices" in m and "data" in m and m["indices"].shape != m["data"].shape:
            issues.append("indices and data differ in length")
    return report
