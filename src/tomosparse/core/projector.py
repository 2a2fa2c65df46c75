from __future__ import annotations

import enum
import logging
from typing import Any, List, Mapping, NamedTuple, Protocol, Tuple

import numpy as np

from .errors import (
    CapacityExceededError,
    DimensionMismatchError,
    IndexOutOfRangeError,
    InvalidGeometryError,
    NotReadyError,
    OutOfRangeReferenceError,
)
from .geometry.base import SparseMatrixProjectionGeometry, VolumeGeometry
from .sparse import SparseWeightStore

# Conventions:
# - Ray (p, d) is matrix row p * n_detectors + d; pixel (row, col) is matrix column
#   row * n_cols + col (row-major volume).
# - Every traversal replays a row's entries in stored order, so forward and back
#   projection see identical (pixel, weight) sequences.

LOG = logging.getLogger(__name__)

PIXEL_WEIGHT_DTYPE = np.dtype([("index", np.int64), ("weight", np.float32)])


class Detector2D(NamedTuple):
    projection: int
    detector: int


class RayContext(NamedTuple):
    projection: int
    detector: int
    index: int


class ProjectorState(enum.Enum):
    UNCONFIGURED = "unconfigured"
    READY = "ready"


class TraversalPolicy(Protocol):
    """Callbacks driven by the projector for every ray it visits.

    ``prior`` may return ``False`` to skip a ray; any other value (including
    ``None``) lets the traversal continue with ``add_weight`` for each stored
    entry and a final ``posterior``.
    """

    def prior(self, ray: RayContext) -> bool | None: ...

    def add_weight(self, ray: RayContext, pixel_index: int, weight: float) -> None: ...

    def posterior(self, ray: RayContext) -> None: ...


def allocate_weight_buffer(capacity: int) -> np.ndarray:
    """Caller-side helper: an uninitialised buffer for ``ray_weights``."""
    return np.empty(int(capacity), dtype=PIXEL_WEIGHT_DTYPE)


class SparseMatrixProjector2D:
    """2D projector replaying an explicit sparse ray/pixel weight matrix.

    The projector holds its own copies of both descriptors; the weight matrix is
    shared with the caller's projection geometry and never modified. Every query
    requires the ``READY`` state reached through :meth:`configure`.
    """

    type = "sparse_matrix"

    def __init__(
        self,
        projection_geometry: SparseMatrixProjectionGeometry | None = None,
        volume_geometry: VolumeGeometry | None = None,
    ) -> None:
        self._clear()
        if projection_geometry is not None or volume_geometry is not None:
            self.configure(projection_geometry, volume_geometry)

    def _clear(self) -> None:
        self._proj_geom: SparseMatrixProjectionGeometry | None = None
        self._vol_geom: VolumeGeometry | None = None
        self._state = ProjectorState.UNCONFIGURED
        self._col_index: Tuple[np.ndarray, np.ndarray] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "SparseMatrixProjector2D":
        """Build from a mapping with ``ProjectionGeometry`` and ``VolumeGeometry`` entries.

        ``ProjectionGeometry["Matrix"]`` is either an inline CSR mapping or an
        already loaded :class:`SparseWeightStore`; :func:`tomosparse.utils.config.load_config`
        replaces a ``MatrixFile`` reference with the latter.
        """
        ptype = str(cfg.get("type", cls.type))
        if ptype != cls.type:
            raise InvalidGeometryError(f"config type '{ptype}' is not '{cls.type}'")
        pg = cfg.get("ProjectionGeometry")
        vg = cfg.get("VolumeGeometry")
        if pg is None:
            raise InvalidGeometryError("config is missing ProjectionGeometry")
        if vg is None:
            raise InvalidGeometryError("config is missing VolumeGeometry")

        m = pg.get("Matrix")
        if isinstance(m, SparseWeightStore):
            matrix = m
        elif m is not None:
            try:
                matrix = SparseWeightStore(m["indptr"], m["indices"], m["data"], shape=m.get("shape"))
            except KeyError as exc:
                raise InvalidGeometryError(f"Matrix is missing {exc.args[0]!r}") from exc
        elif "MatrixFile" in pg:
            raise InvalidGeometryError(
                f"MatrixFile '{pg['MatrixFile']}' has not been loaded; read the config with load_config"
            )
        else:
            raise InvalidGeometryError("ProjectionGeometry needs Matrix or MatrixFile")

        proj_geom = SparseMatrixProjectionGeometry.from_dict(pg, matrix=matrix)
        vol_geom = VolumeGeometry.from_dict(vg)
        return cls(proj_geom, vol_geom)

    def configure(
        self,
        projection_geometry: SparseMatrixProjectionGeometry | None,
        volume_geometry: VolumeGeometry | None,
    ) -> None:
        """Attach copies of both descriptors and validate them.

        On any validation error the projector is left ``UNCONFIGURED`` and the
        error propagates to the caller.
        """
        self._clear()
        if projection_geometry is not None and not isinstance(projection_geometry, SparseMatrixProjectionGeometry):
            raise InvalidGeometryError(f"expected SparseMatrixProjectionGeometry, got {type(projection_geometry).__name__}")
        if volume_geometry is not None and not isinstance(volume_geometry, VolumeGeometry):
            raise InvalidGeometryError(f"expected VolumeGeometry, got {type(volume_geometry).__name__}")
        self._proj_geom = projection_geometry.copy() if projection_geometry is not None else None
        self._vol_geom = volume_geometry.copy() if volume_geometry is not None else None
        try:
            self.validate()
        except Exception:
            self._clear()
            raise
        LOG.debug(
            "Configured %s: %d projections x %d detectors, %dx%d grid, nnz=%d",
            self.type,
            self._proj_geom.n_projections,
            self._proj_geom.n_detectors,
            self._vol_geom.n_rows,
            self._vol_geom.n_cols,
            self._proj_geom.matrix.nnz,
        )

    def validate(self) -> None:
        """Check descriptors against the weight matrix; mark the projector ready.

        Raises InvalidGeometryError (missing or empty descriptor),
        DimensionMismatchError (matrix shape) or OutOfRangeReferenceError
        (a stored pixel index outside the volume grid).
        """
        self._state = ProjectorState.UNCONFIGURED
        pg, vg = self._proj_geom, self._vol_geom
        if pg is None:
            raise InvalidGeometryError("no projection geometry attached")
        if vg is None:
            raise InvalidGeometryError("no volume geometry attached")
        pg.check()
        vg.check()

        matrix = pg.matrix
        if matrix.n_rows != pg.n_rays:
            raise DimensionMismatchError(
                f"matrix has {matrix.n_rows} rows, geometry has "
                f"{pg.n_projections}x{pg.n_detectors}={pg.n_rays} rays"
            )
        if matrix.max_index() >= vg.n_pixels:
            raise OutOfRangeReferenceError(
                f"matrix references pixel {matrix.max_index()}, volume has {vg.n_pixels} pixels"
            )
        if matrix.declared_cols is not None and matrix.declared_cols != vg.n_pixels:
            raise DimensionMismatchError(
                f"matrix has {matrix.declared_cols} columns, volume has "
                f"{vg.n_rows}x{vg.n_cols}={vg.n_pixels} pixels"
            )
        self._state = ProjectorState.READY

    def reset(self) -> None:
        self._clear()
        LOG.debug("Projector reset")

    @property
    def state(self) -> ProjectorState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ProjectorState.READY

    @property
    def projection_geometry(self) -> SparseMatrixProjectionGeometry:
        self._require_ready()
        return self._proj_geom

    @property
    def volume_geometry(self) -> VolumeGeometry:
        self._require_ready()
        return self._vol_geom

    @property
    def matrix(self) -> SparseWeightStore:
        self._require_ready()
        return self._proj_geom.matrix

    def _require_ready(self) -> None:
        if self._state is not ProjectorState.READY:
            raise NotReadyError("projector is not configured")

    def _check_projection(self, projection: int) -> None:
        n = self._proj_geom.n_projections
        if not 0 <= projection < n:
            raise IndexOutOfRangeError(f"projection {projection} out of range [0, {n})")

    def _check_ray(self, projection: int, detector: int) -> None:
        self._check_projection(projection)
        n = self._proj_geom.n_detectors
        if not 0 <= detector < n:
            raise IndexOutOfRangeError(f"detector {detector} out of range [0, {n})")

    # ------------------------------------------------------------------
    # Forward enumeration
    def weight_count(self, projection: int) -> int:
        """Number of stored weights over all rays of one projection.

        An upper bound for the buffer size needed by :meth:`ray_weights` for any
        ray of that projection.
        """
        self._require_ready()
        self._check_projection(projection)
        n_det = self._proj_geom.n_detectors
        indptr = self._proj_geom.matrix.indptr
        return int(indptr[(projection + 1) * n_det] - indptr[projection * n_det])

    def ray_weights(self, projection: int, detector: int, out: np.ndarray, max_count: int | None = None) -> int:
        """Copy the weights of one ray into ``out`` and return how many were written.

        ``out`` is a caller-allocated array of ``PIXEL_WEIGHT_DTYPE``; its
        capacity is ``max_count`` when given, else ``len(out)``. Entries keep the
        matrix's stored order, duplicates included. A ray with more weights than
        the capacity raises CapacityExceededError and writes nothing.
        """
        self._require_ready()
        self._check_ray(projection, detector)
        if max_count is not None and int(max_count) < 0:
            raise ValueError(f"max_count must be non-negative, got {max_count}")
        capacity = len(out) if max_count is None else min(int(max_count), len(out))
        indices, weights = self._proj_geom.matrix.row(self._proj_geom.ray_index(projection, detector))
        n = int(indices.size)
        if n > capacity:
            raise CapacityExceededError(n, capacity, ray=(projection, detector))
        out["index"][:n] = indices
        out["weight"][:n] = weights
        return n

    # ------------------------------------------------------------------
    # Reverse lookup
    def _column_index(self) -> Tuple[np.ndarray, np.ndarray]:
        """(col_ptr, rays) with the rays of each pixel in ascending order."""
        if self._col_index is None:
            matrix = self._proj_geom.matrix
            order = np.argsort(matrix.indices, kind="stable")
            rays = matrix.row_ids()[order]
            counts = np.bincount(matrix.indices, minlength=self._vol_geom.n_pixels)
            col_ptr = np.concatenate([[0], np.cumsum(counts)]).astype(np.int64)
            self._col_index = (col_ptr, rays)
            LOG.debug("Built column index over %d entries", matrix.nnz)
        return self._col_index

    def detectors_affected_by(self, row: int, col: int) -> List[Detector2D]:
        """Rays with a stored weight at pixel (row, col), ascending by ray index."""
        self._require_ready()
        vg = self._vol_geom
        if not vg.contains(row, col):
            raise IndexOutOfRangeError(f"pixel ({row}, {col}) outside {vg.n_rows}x{vg.n_cols} grid")
        col_ptr, rays = self._column_index()
        pix = vg.pixel_index(row, col)
        hits = np.unique(rays[col_ptr[pix]:col_ptr[pix + 1]])
        n_det = self._proj_geom.n_detectors
        return [Detector2D(*divmod(int(r), n_det)) for r in hits]

    # ------------------------------------------------------------------
    # Policy-driven traversal
    def traverse_all(self, policy: TraversalPolicy) -> None:
        self._require_ready()
        for p in range(self._proj_geom.n_projections):
            self._traverse_projection(p, policy)

    def traverse_projection(self, projection: int, policy: TraversalPolicy) -> None:
        self._require_ready()
        self._check_projection(projection)
        self._traverse_projection(projection, policy)

    def traverse_ray(self, projection: int, detector: int, policy: TraversalPolicy) -> None:
        self._require_ready()
        self._check_ray(projection, detector)
        self._traverse_ray(projection, detector, self._proj_geom.ray_index(projection, detector), policy)

    def _traverse_projection(self, projection: int, policy: TraversalPolicy) -> None:
        n_det = self._proj_geom.n_detectors
        base = projection * n_det
        for d in range(n_det):
            self._traverse_ray(projection, d, base + d, policy)

    def _traverse_ray(self, projection: int, detector: int, ray_index: int, policy: TraversalPolicy) -> None:
        ctx = RayContext(projection, detector, ray_index)
        if policy.prior(ctx) is False:
            return
        matrix = self._proj_geom.matrix
        start, stop = int(matrix.indptr[ray_index]), int(matrix.indptr[ray_index + 1])
        add_weight = policy.add_weight
        for pix, w in zip(matrix.indices[start:stop].tolist(), matrix.weights[start:stop].tolist()):
            add_weight(ctx, pix, w)
        policy.posterior(ctx)

    def traverse_voxel(self, row: int, col: int, policy: TraversalPolicy) -> None:
        """Not supported by a row-indexed matrix; intentionally does nothing.

        Use :meth:`detectors_affected_by` together with :meth:`ray_weights` for
        pixel-driven access.
        """
        self._require_ready()

    def traverse_all_voxels(self, policy: TraversalPolicy) -> None:
        """Not supported by a row-indexed matrix; intentionally does nothing."""
        self._require_ready()

    def __repr__(self) -> str:
        if not self.is_ready:
            return f"SparseMatrixProjector2D(state={self._state.value})"
        return (
            f"SparseMatrixProjector2D({self._proj_geom.n_projections}x{self._proj_geom.n_detectors} rays, "
            f"{self._vol_geom.n_rows}x{self._vol_geom.n_cols} grid, nnz={self._proj_geom.matrix.nnz})"
        )
