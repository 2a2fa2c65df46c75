import numpy as np
import jax.numpy as jnp
import pytest
import scipy.sparse as sp

from tomosparse.core.geometry import SparseMatrixProjectionGeometry, VolumeGeometry
from tomosparse.core.operators import forward_project
from tomosparse.core.projector import SparseMatrixProjector2D
from tomosparse.core.sparse import SparseWeightStore
from tomosparse.recon.sirt import backprojection, sirt


def make_simple_case(n=8, n_proj=24, seed=0):
    """Overdetermined random system with a square phantom."""
    rng = np.random.default_rng(seed)
    shape = (n_proj * n, n * n)
    dense = np.where(rng.random(shape) < 0.3, rng.random(shape) + 0.1, 0.0).astype(np.float32)
    store = SparseWeightStore.from_scipy(sp.csr_matrix(dense))
    pg = SparseMatrixProjectionGeometry(n_projections=n_proj, n_detectors=n, matrix=store)
    proj = SparseMatrixProjector2D(pg, VolumeGeometry(n_rows=n, n_cols=n))
    vol = np.zeros((n, n), dtype=np.float32)
    vol[n // 4:3 * n // 4, n // 4:3 * n // 4] = 1.0
    sino = forward_project(proj, jnp.asarray(vol))
    return proj, vol, sino


def test_sirt_loss_decreases_and_converges():
    proj, vol, sino = make_simple_case()
    x, info = sirt(proj, sino, iters=200)
    loss = info["loss"]
    assert len(loss) == 200 and info["effective_iters"] == 200
    assert loss[-1] < 0.01 * loss[0]
    assert not info["early_stop"]
    assert np.mean((np.asarray(x) - vol) ** 2) < 0.05


def test_sirt_constraints():
    proj, _, sino = make_simple_case(seed=1)
    x, _ = sirt(proj, sino, iters=10, min_constraint=0.0, max_constraint=0.5)
    x = np.asarray(x)
    assert x.min() >= 0.0 and x.max() <= 0.5


def test_sirt_early_stop_on_zero_data():
    proj, _, sino = make_simple_case(seed=2)
    seen = []
    _, info = sirt(proj, jnp.zeros_like(sino), iters=8, rel_tol=1e-6, patience=1, callback=lambda k, l: seen.append(k))
    assert info["early_stop"] is True
    assert info["effective_iters"] == 2
    assert seen == [0, 1]


def test_sirt_shape_errors():
    proj, _, sino = make_simple_case()
    with pytest.raises(ValueError):
        sirt(proj, sino.T, iters=1)
    with pytest.raises(ValueError):
        sirt(proj, sino, iters=1, init_x=jnp.zeros((3,)))


def test_backprojection_normalized_of_constant_image():
    proj, _, _ = make_simple_case(seed=3)
    ones = jnp.ones((8, 8), dtype=jnp.float32)
    sino = jnp.ones(proj.projection_geometry.shape, dtype=jnp.float32)
    bp = backprojection(proj, sino)
    assert np.allclose(np.asarray(bp), np.asarray(ones), rtol=1e-5)
