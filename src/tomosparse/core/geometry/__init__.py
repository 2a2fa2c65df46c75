from .base import VolumeGeometry, SparseMatrixProjectionGeometry

__all__ = [
    "VolumeGeometry",
    "SparseMatrixProjectionGeometry",
]
