"""Immutable row-indexed sparse weight storage.

Rows are rays, columns are volume pixel linear indices. The store keeps the
entries of every row in the order they were supplied (no sorting, no summing of
duplicates) so that every traversal replays exactly the same weights.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from .errors import InvalidGeometryError


def _readonly(a: np.ndarray) -> np.ndarray:
    a.flags.writeable = False
    return a


class SparseWeightStore:
    """CSR triple (indptr, indices, weights) with an optional declared column count.

    Without a declared shape the width is taken from the largest stored index.

    Explicit zeros are dropped at construction; non-finite weights are rejected.
    The arrays are copied once and then frozen, so views handed out by ``row``
    can be shared freely between threads and policies.
    """

    __slots__ = ("_indptr", "_indices", "_weights", "_n_rows", "_declared_cols")

    def __init__(
        self,
        indptr: Sequence[int] | np.ndarray,
        indices: Sequence[int] | np.ndarray,
        weights: Sequence[float] | np.ndarray,
        shape: Tuple[int, int] | None = None,
    ) -> None:
        indptr = np.array(indptr, dtype=np.int64).ravel()
        indices = np.array(indices, dtype=np.int64).ravel()
        weights = np.array(weights, dtype=np.float32).ravel()

        if indptr.size == 0:
            raise InvalidGeometryError("indptr must have at least one element")
        if indptr[0] != 0:
            raise InvalidGeometryError(f"indptr must start at 0, got {int(indptr[0])}")
        if np.any(np.diff(indptr) < 0):
            raise InvalidGeometryError("indptr must be non-decreasing")
        if indices.size != weights.size:
            raise InvalidGeometryError(
                f"indices and weights differ in length ({indices.size} vs {weights.size})"
            )
        if int(indptr[-1]) != indices.size:
            raise InvalidGeometryError(
                f"indptr[-1]={int(indptr[-1])} does not match entry count {indices.size}"
            )
        if indices.size and int(indices.min()) < 0:
            raise InvalidGeometryError("column indices must be non-negative")
        if not np.all(np.isfinite(weights)):
            raise InvalidGeometryError("weights must be finite")

        # Drop explicit zeros, keeping the order of what remains
        keep = weights != 0.0
        if not np.all(keep):
            row_of = np.repeat(np.arange(indptr.size - 1), np.diff(indptr))
            counts = np.bincount(row_of[keep], minlength=indptr.size - 1)
            indptr = np.concatenate([[0], np.cumsum(counts)]).astype(np.int64)
            indices = indices[keep]
            weights = weights[keep]

        n_rows = int(indptr.size - 1)
        n_cols = None
        if shape is not None:
            if len(shape) != 2:
                raise InvalidGeometryError(f"shape must be (n_rows, n_cols), got {shape!r}")
            if int(shape[0]) != n_rows:
                raise InvalidGeometryError(
                    f"shape declares {int(shape[0])} rows but indptr describes {n_rows}"
                )
            n_cols = int(shape[1])
            if n_cols < 0:
                raise InvalidGeometryError("shape must be non-negative")
            if indices.size and int(indices.max()) >= n_cols:
                raise InvalidGeometryError(
                    f"column index {int(indices.max())} outside declared width {n_cols}"
                )

        self._indptr = _readonly(indptr)
        self._indices = _readonly(indices)
        self._weights = _readonly(weights)
        self._n_rows = n_rows
        self._declared_cols = n_cols

    # ------------------------------------------------------------------
    # Alternate constructors
    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Iterable[Tuple[int, float]]],
        n_cols: int | None = None,
    ) -> "SparseWeightStore":
        """Build from an iterable of rows, each an iterable of (pixel_index, weight)."""
        indptr = [0]
        indices: list[int] = []
        weights: list[float] = []
        for row in rows:
            for idx, w in row:
                indices.append(int(idx))
                weights.append(float(w))
            indptr.append(len(indices))
        shape = None if n_cols is None else (len(indptr) - 1, int(n_cols))
        return cls(indptr, indices, weights, shape=shape)

    @classmethod
    def from_scipy(cls, matrix) -> "SparseWeightStore":
        """Wrap any scipy sparse matrix/array; CSR input keeps its stored entry order."""
        csr = matrix if getattr(matrix, "format", None) == "csr" else sp.csr_matrix(matrix)
        return cls(csr.indptr, csr.indices, csr.data, shape=csr.shape)

    @classmethod
    def from_dense(cls, array: np.ndarray) -> "SparseWeightStore":
        a = np.asarray(array, dtype=np.float32)
        if a.ndim != 2:
            raise InvalidGeometryError(f"dense weight matrix must be 2D, got {a.ndim}D")
        return cls.from_scipy(sp.csr_matrix(a))

    def to_scipy(self) -> sp.csr_matrix:
        """Return a CSR matrix over the same (read-only) arrays."""
        return sp.csr_matrix((self._weights, self._indices, self._indptr), shape=self.shape, copy=False)

    # ------------------------------------------------------------------
    @property
    def shape(self) -> Tuple[int, int]:
        return (self._n_rows, self.n_cols)

    @property
    def n_rows(self) -> int:
        return self._n_rows

    @property
    def n_cols(self) -> int:
        if self._declared_cols is not None:
            return self._declared_cols
        return self.max_index() + 1

    @property
    def declared_cols(self) -> int | None:
        """Column count given at construction, or None if inferred."""
        return self._declared_cols

    @property
    def nnz(self) -> int:
        return int(self._indices.size)

    @property
    def indptr(self) -> np.ndarray:
        return self._indptr

    @property
    def indices(self) -> np.ndarray:
        return self._indices

    @property
    def weights(self) -> np.ndarray:
        return self._weights

    def row_lengths(self) -> np.ndarray:
        return np.diff(self._indptr)

    def row_nnz(self, row: int) -> int:
        return int(self._indptr[row + 1] - self._indptr[row])

    def row(self, row: int) -> Tuple[np.ndarray, np.ndarray]:
        """Return (indices, weights) views of one row, in stored order."""
        if row < 0 or row >= self.n_rows:
            raise IndexError(f"row {row} out of range [0, {self.n_rows})")
        start, stop = int(self._indptr[row]), int(self._indptr[row + 1])
        return self._indices[start:stop], self._weights[start:stop]

    def max_index(self) -> int:
        """Largest referenced column index, or -1 for an empty store."""
        return int(self._indices.max()) if self._indices.size else -1

    def row_ids(self) -> np.ndarray:
        """Row index of every stored entry (length nnz)."""
        return np.repeat(np.arange(self.n_rows, dtype=np.int64), self.row_lengths())

    def __repr__(self) -> str:
        return f"SparseWeightStore(shape={self.shape}, nnz={self.nnz})"
