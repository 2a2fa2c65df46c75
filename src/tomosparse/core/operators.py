from __future__ import annotations

from functools import partial

import jax
import jax.numpy as jnp
import numpy as np

from .policies import (
    BackProjectionPolicy,
    ForwardProjectionPolicy,
    TotalPixelWeightPolicy,
    TotalRayLengthPolicy,
)
from .projector import SparseMatrixProjector2D


@partial(jax.jit, static_argnames=("n_rays",))
def _spmv(row_ids, indices, weights, x_flat, n_rays: int):
    return jax.ops.segment_sum(weights * x_flat[indices], row_ids, num_segments=n_rays)


@partial(jax.jit, static_argnames=("n_pixels",))
def _spmv_T(row_ids, indices, weights, y_flat, n_pixels: int):
    return jax.ops.segment_sum(weights * y_flat[row_ids], indices, num_segments=n_pixels)


def _device_matrix(projector: SparseMatrixProjector2D):
    m = projector.matrix
    return (
        jnp.asarray(m.row_ids(), dtype=jnp.int32),
        jnp.asarray(m.indices, dtype=jnp.int32),
        jnp.asarray(m.weights, dtype=jnp.float32),
    )


def forward_project(projector: SparseMatrixProjector2D, volume: jnp.ndarray) -> jnp.ndarray:
    """Sinogram (n_projections, n_detectors) = W @ volume (n_rows, n_cols)."""
    vg, pg = projector.volume_geometry, projector.projection_geometry
    vol = jnp.asarray(volume, dtype=jnp.float32)
    if vol.shape != vg.shape:
        raise ValueError(f"volume must be {vg.shape}, got {vol.shape}")
    row_ids, indices, weights = _device_matrix(projector)
    y = _spmv(row_ids, indices, weights, vol.ravel(), n_rays=pg.n_rays)
    return y.reshape(pg.shape)


def back_project(projector: SparseMatrixProjector2D, sinogram: jnp.ndarray) -> jnp.ndarray:
    """Volume (n_rows, n_cols) = W.T @ sinogram (n_projections, n_detectors)."""
    vg, pg = projector.volume_geometry, projector.projection_geometry
    sino = jnp.asarray(sinogram, dtype=jnp.float32)
    if sino.shape != pg.shape:
        raise ValueError(f"sinogram must be {pg.shape}, got {sino.shape}")
    row_ids, indices, weights = _device_matrix(projector)
    x = _spmv_T(row_ids, indices, weights, sino.ravel(), n_pixels=vg.n_pixels)
    return x.reshape(vg.shape)


def forward_project_policy(projector: SparseMatrixProjector2D, volume: np.ndarray) -> np.ndarray:
    """Reference forward projection driven ray by ray through the traversal hook."""
    vg, pg = projector.volume_geometry, projector.projection_geometry
    vol = np.ascontiguousarray(volume, dtype=np.float32)
    if vol.shape != vg.shape:
        raise ValueError(f"volume must be {vg.shape}, got {vol.shape}")
    sino = np.zeros(pg.shape, dtype=np.float32)
    projector.traverse_all(ForwardProjectionPolicy(vol, sino))
    return sino


def back_project_policy(projector: SparseMatrixProjector2D, sinogram: np.ndarray) -> np.ndarray:
    vg, pg = projector.volume_geometry, projector.projection_geometry
    sino = np.ascontiguousarray(sinogram, dtype=np.float32)
    if sino.shape != pg.shape:
        raise ValueError(f"sinogram must be {pg.shape}, got {sino.shape}")
    vol = np.zeros(vg.shape, dtype=np.float32)
    projector.traverse_all(BackProjectionPolicy(sino, vol))
    return vol


def ray_sums(projector: SparseMatrixProjector2D) -> np.ndarray:
    """Sum of weights along every ray, shaped (n_projections, n_detectors)."""
    out = np.zeros(projector.projection_geometry.shape, dtype=np.float32)
    projector.traverse_all(TotalRayLengthPolicy(out))
    return out


def pixel_sums(projector: SparseMatrixProjector2D) -> np.ndarray:
    """Sum of weights received by every pixel, shaped (n_rows, n_cols)."""
    out = np.zeros(projector.volume_geometry.shape, dtype=np.float32)
    projector.traverse_all(TotalPixelWeightPolicy(out))
    return out


def adjoint_test_once(
    projector: SparseMatrixProjector2D,
    volume: jnp.ndarray,
    y_like: jnp.ndarray,
) -> float:
    """Check <A x, y> vs <x, A^T y>; returns the relative mismatch."""
    Ax = forward_project(projector, volume)
    ATy = back_project(projector, y_like)
    lhs = jnp.vdot(Ax.ravel(), jnp.asarray(y_like, dtype=jnp.float32).ravel())
    rhs = jnp.vdot(jnp.asarray(volume, dtype=jnp.float32).ravel(), ATy.ravel())
    return float(jnp.abs(lhs - rhs) / (jnp.abs(lhs) + 1e-12))
