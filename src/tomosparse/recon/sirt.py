from __future__ import annotations

import logging
import time
from typing import Callable

import jax
import jax.numpy as jnp
import numpy as np

from ..core.operators import _device_matrix, _spmv, _spmv_T, back_project, pixel_sums, ray_sums
from ..core.projector import SparseMatrixProjector2D
from ..utils.logging import format_duration, progress_iter


LOG = logging.getLogger(__name__)


def _inverse_or_zero(s: np.ndarray) -> jnp.ndarray:
    s = np.asarray(s, dtype=np.float32)
    inv = np.zeros_like(s)
    np.divide(1.0, s, out=inv, where=s > 0)
    return jnp.asarray(inv.ravel())


def sirt(
    projector: SparseMatrixProjector2D,
    sinogram: jnp.ndarray,
    *,
    iters: int = 100,
    min_constraint: float | None = None,
    max_constraint: float | None = None,
    init_x: jnp.ndarray | None = None,
    callback: Callable[[int, float], None] | None = None,
    rel_tol: float | None = None,
    patience: int = 1,
) -> tuple[jnp.ndarray, dict]:
    """Simultaneous Iterative Reconstruction Technique.

    x <- x + C Wᵀ R (y - W x), with R and C the inverse ray and pixel weight
    sums (zero where a ray or pixel carries no weight). Both normalisations are
    gathered with a single traversal each.

    Args:
        min_constraint / max_constraint: Optional clamp applied after every update.
        rel_tol: Relative change of the residual loss below which an iteration
            counts towards early termination. ``None`` disables early stopping.
        patience: Consecutive small-change iterations needed to stop.

    Returns:
        (x, info) with ``info["loss"]`` the residual ``0.5 ||W x - y||²`` before
        each update, ``effective_iters`` and ``early_stop``.
    """
    vg, pg = projector.volume_geometry, projector.projection_geometry
    y = jnp.asarray(sinogram, dtype=jnp.float32)
    if y.shape != pg.shape:
        raise ValueError(f"sinogram must be {pg.shape}, got {y.shape}")
    x = (
        jnp.asarray(init_x, dtype=jnp.float32).ravel()
        if init_x is not None
        else jnp.zeros((vg.n_pixels,), dtype=jnp.float32)
    )
    if x.size != vg.n_pixels:
        raise ValueError(f"init_x must have {vg.n_pixels} pixels, got {x.size}")

    R = _inverse_or_zero(ray_sums(projector))
    C = _inverse_or_zero(pixel_sums(projector))
    row_ids, indices, weights = _device_matrix(projector)
    y_flat = y.ravel()
    lo = -jnp.inf if min_constraint is None else float(min_constraint)
    hi = jnp.inf if max_constraint is None else float(max_constraint)

    @jax.jit
    def step(x_c):
        resid = y_flat - _spmv(row_ids, indices, weights, x_c, n_rays=pg.n_rays)
        loss = 0.5 * jnp.vdot(resid, resid)
        upd = _spmv_T(row_ids, indices, weights, R * resid, n_pixels=vg.n_pixels)
        x_n = jnp.clip(x_c + C * upd, lo, hi)
        return x_n, loss

    use_early_stop = rel_tol is not None and float(rel_tol) > 0.0 and int(patience) > 0
    losses: list[float] = []
    streak = 0
    early = False
    t0 = time.perf_counter()
    for k in progress_iter(range(int(iters)), total=int(iters), desc="SIRT"):
        x, loss = step(x)
        loss_f = float(loss)
        if callback is not None:
            callback(k, loss_f)
        if use_early_stop and losses:
            prev = losses[-1]
            rel = abs(loss_f - prev) / max(abs(prev), 1e-6)
            streak = streak + 1 if rel <= float(rel_tol) else 0
        losses.append(loss_f)
        if use_early_stop and streak >= int(patience):
            early = True
            break

    LOG.info(
        "SIRT: %d/%d iterations in %s, final loss %.4g%s",
        len(losses),
        int(iters),
        format_duration(time.perf_counter() - t0),
        losses[-1] if losses else float("nan"),
        " (early stop)" if early else "",
    )
    info = {
        "loss": losses,
        "effective_iters": len(losses),
        "early_stop": early,
    }
    return x.reshape(vg.shape), info


def backprojection(projector: SparseMatrixProjector2D, sinogram: jnp.ndarray, *, normalize: bool = True) -> jnp.ndarray:
    """Unfiltered back projection, optionally divided by the pixel weight sums."""
    x = back_project(projector, sinogram)
    if normalize:
        x = x * _inverse_or_zero(pixel_sums(projector)).reshape(x.shape)
    return x
