"""Volume grid and sparse-matrix projection geometry dataclasses.

These descriptors are shared by the projector, IO, policies and reconstruction.
Keep them lightweight: shape bookkeeping and index arithmetic only, the weights
themselves live in :class:`~tomosparse.core.sparse.SparseWeightStore`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Tuple

from ..errors import InvalidGeometryError
from ..sparse import SparseWeightStore


def _int_field(d: Mapping[str, Any], key: str) -> int:
    if key not in d:
        raise InvalidGeometryError(f"missing '{key}'")
    try:
        v = int(d[key])
    except (TypeError, ValueError) as exc:
        raise InvalidGeometryError(f"'{key}' must be an integer, got {d[key]!r}") from exc
    return v


@dataclass(frozen=True)
class VolumeGeometry:
    """Row-major 2D reconstruction grid.

    Pixel (row, col) has linear index ``row * n_cols + col``, which is the column
    space of the sparse weight matrix. The window extents are informational and
    default to unit pixels centred on the origin.
    """

    n_rows: int
    n_cols: int
    min_x: float | None = None
    max_x: float | None = None
    min_y: float | None = None
    max_y: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "n_rows", int(self.n_rows))
        object.__setattr__(self, "n_cols", int(self.n_cols))
        for lo, hi, n in (("min_x", "max_x", self.n_cols), ("min_y", "max_y", self.n_rows)):
            a, b = getattr(self, lo), getattr(self, hi)
            if a is None and b is None:
                a, b = -n / 2.0, n / 2.0
            elif a is None or b is None:
                raise InvalidGeometryError(f"volume window needs both {lo} and {hi}, got {lo}={a!r}, {hi}={b!r}")
            object.__setattr__(self, lo, float(a))
            object.__setattr__(self, hi, float(b))

    @property
    def n_pixels(self) -> int:
        return self.n_rows * self.n_cols

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.n_rows, self.n_cols)

    @property
    def pixel_size(self) -> Tuple[float, float]:
        return (
            (self.max_y - self.min_y) / self.n_rows if self.n_rows else 0.0,
            (self.max_x - self.min_x) / self.n_cols if self.n_cols else 0.0,
        )

    def check(self) -> None:
        """Raise InvalidGeometryError if the grid is empty or its window degenerate."""
        if self.n_rows <= 0 or self.n_cols <= 0:
            raise InvalidGeometryError(f"volume grid must be non-empty, got {self.n_rows}x{self.n_cols}")
        if not (self.max_x > self.min_x and self.max_y > self.min_y):
            raise InvalidGeometryError("volume window must have positive extent")

    def contains(self, row: int, col: int) -> bool:
        return 0 <= row < self.n_rows and 0 <= col < self.n_cols

    def pixel_index(self, row: int, col: int) -> int:
        return int(row) * self.n_cols + int(col)

    def pixel_coords(self, index: int) -> Tuple[int, int]:
        return divmod(int(index), self.n_cols)

    def copy(self) -> "VolumeGeometry":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "GridRowCount": int(self.n_rows),
            "GridColCount": int(self.n_cols),
            "WindowMinX": float(self.min_x),
            "WindowMaxX": float(self.max_x),
            "WindowMinY": float(self.min_y),
            "WindowMaxY": float(self.max_y),
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "VolumeGeometry":
        window = {}
        for key, attr in (("WindowMinX", "min_x"), ("WindowMaxX", "max_x"), ("WindowMinY", "min_y"), ("WindowMaxY", "max_y")):
            if key in d:
                window[attr] = float(d[key])
        if window and len(window) != 4:
            raise InvalidGeometryError("volume window needs all of WindowMinX/MaxX/MinY/MaxY")
        return cls(n_rows=_int_field(d, "GridRowCount"), n_cols=_int_field(d, "GridColCount"), **window)


@dataclass(frozen=True)
class SparseMatrixProjectionGeometry:
    """Projection geometry whose rays are rows of an explicit weight matrix.

    Ray (projection p, detector d) is matrix row ``p * n_detectors + d``. The
    matrix is held by reference; copies of the descriptor share it.
    """

    n_projections: int
    n_detectors: int
    matrix: SparseWeightStore | None
    angles: Tuple[float, ...] | None = None
    detector_width: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "n_projections", int(self.n_projections))
        object.__setattr__(self, "n_detectors", int(self.n_detectors))
        object.__setattr__(self, "detector_width", float(self.detector_width))
        if self.angles is not None:
            object.__setattr__(self, "angles", tuple(float(a) for a in self.angles))

    @property
    def n_rays(self) -> int:
        return self.n_projections * self.n_detectors

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.n_projections, self.n_detectors)

    def check(self) -> None:
        """Raise InvalidGeometryError unless counts are positive and a matrix is attached."""
        if self.n_projections <= 0 or self.n_detectors <= 0:
            raise InvalidGeometryError(
                f"projection geometry must be non-empty, got {self.n_projections}x{self.n_detectors}"
            )
        if self.matrix is None:
            raise InvalidGeometryError("projection geometry has no weight matrix")
        if not isinstance(self.matrix, SparseWeightStore):
            raise InvalidGeometryError(f"matrix must be a SparseWeightStore, got {type(self.matrix).__name__}")
        if self.angles is not None and len(self.angles) != self.n_projections:
            raise InvalidGeometryError(
                f"{len(self.angles)} angles given for {self.n_projections} projections"
            )
        if self.detector_width <= 0.0:
            raise InvalidGeometryError("detector_width must be positive")

    def contains(self, projection: int, detector: int) -> bool:
        return 0 <= projection < self.n_projections and 0 <= detector < self.n_detectors

    def ray_index(self, projection: int, detector: int) -> int:
        return int(projection) * self.n_detectors + int(detector)

    def ray_coords(self, index: int) -> Tuple[int, int]:
        return divmod(int(index), self.n_detectors)

    def copy(self) -> "SparseMatrixProjectionGeometry":
        """New descriptor sharing the same (immutable) weight matrix."""
        return replace(self)

    def to_dict(self) -> dict:
        """Scalar metadata only; the matrix is persisted separately."""
        d: Dict[str, Any] = {
            "type": "sparse_matrix",
            "ProjectionCount": int(self.n_projections),
            "DetectorCount": int(self.n_detectors),
            "DetectorWidth": float(self.detector_width),
        }
        if self.angles is not None:
            d["ProjectionAngles"] = list(self.angles)
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any], matrix: SparseWeightStore | None = None) -> "SparseMatrixProjectionGeometry":
        gtype = str(d.get("type", "sparse_matrix"))
        if gtype != "sparse_matrix":
            raise InvalidGeometryError(f"unsupported projection geometry type '{gtype}'")
        angles = d.get("ProjectionAngles")
        if angles is not None:
            angles = tuple(float(a) for a in angles)
            n_proj = int(d.get("ProjectionCount", len(angles)))
        else:
            n_proj = _int_field(d, "ProjectionCount")
        return cls(
            n_projections=n_proj,
            n_detectors=_int_field(d, "DetectorCount"),
            matrix=matrix,
            angles=angles,
            detector_width=float(d.get("DetectorWidth", 1.0)),
        )
