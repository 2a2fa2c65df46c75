"""Error types raised by the sparse-matrix projector and its descriptors.

All errors derive from :class:`ProjectorError` (a ``ValueError``) so callers can
catch the whole family at once. None of them leave a projector half-configured.
"""

from __future__ import annotations


class ProjectorError(ValueError):
    """Base class for projector and geometry errors."""


class InvalidGeometryError(ProjectorError):
    """Descriptor or weight store missing, zero-sized, or internally inconsistent."""


class DimensionMismatchError(ProjectorError):
    """Weight store shape disagrees with the projection or volume geometry."""


class OutOfRangeReferenceError(DimensionMismatchError):
    """Weight store references a pixel index outside the volume grid."""


class IndexOutOfRangeError(ProjectorError, IndexError):
    """Projection, detector, row, or column index outside its valid range."""


class CapacityExceededError(ProjectorError):
    """Caller-provided output buffer is smaller than the ray's weight count."""

    def __init__(self, required: int, capacity: int, ray: tuple[int, int] | None = None):
        self.required = int(required)
        self.capacity = int(capacity)
        self.ray = ray
        where = f" for ray {ray}" if ray is not None else ""
        super().__init__(f"Output capacity {self.capacity} too small{where}: {self.required} weights")


class NotReadyError(ProjectorError, RuntimeError):
    """Operation called on a projector that has not been configured."""
