import numpy as np
import pytest
import scipy.sparse as sp

from tomosparse.core.geometry import SparseMatrixProjectionGeometry, VolumeGeometry
from tomosparse.core.policies import CombinePolicy, RayMaskPolicy, StorePixelWeightsPolicy
from tomosparse.core.projector import RayContext, SparseMatrixProjector2D
from tomosparse.core.sparse import SparseWeightStore


def make_projector(n_proj=3, n_det=4, n_rows=5, n_cols=5, seed=0):
    rng = np.random.default_rng(seed)
    shape = (n_proj * n_det, n_rows * n_cols)
    dense = np.where(rng.random(shape) < 0.25, rng.random(shape) + 0.1, 0.0).astype(np.float32)
    store = SparseWeightStore.from_scipy(sp.csr_matrix(dense))
    pg = SparseMatrixProjectionGeometry(n_projections=n_proj, n_detectors=n_det, matrix=store)
    return SparseMatrixProjector2D(pg, VolumeGeometry(n_rows=n_rows, n_cols=n_cols))


def test_ray_call_sequence():
    store = SparseWeightStore.from_rows([[(0, 1.0), (2, 0.5)], [(1, 2.0)]], n_cols=4)
    pg = SparseMatrixProjectionGeometry(n_projections=1, n_detectors=2, matrix=store)
    proj = SparseMatrixProjector2D(pg, VolumeGeometry(n_rows=2, n_cols=2))
    pol = StorePixelWeightsPolicy()
    proj.traverse_ray(0, 0, pol)
    ctx = RayContext(0, 0, 0)
    assert pol.calls == [
        ("prior", ctx),
        ("add_weight", ctx, 0, 1.0),
        ("add_weight", ctx, 2, 0.5),
        ("posterior", ctx),
    ]


def test_traverse_all_equals_projections_equals_rays():
    proj = make_projector()
    pg = proj.projection_geometry

    a = StorePixelWeightsPolicy()
    proj.traverse_all(a)

    b = StorePixelWeightsPolicy()
    for p in range(pg.n_projections):
        proj.traverse_projection(p, b)

    c = StorePixelWeightsPolicy()
    for p in range(pg.n_projections):
        for d in range(pg.n_detectors):
            proj.traverse_ray(p, d, c)

    assert a.calls == b.calls == c.calls
    assert len(a.weights) == pg.matrix.nnz


def test_empty_ray_still_gets_prior_and_posterior():
    store = SparseWeightStore.from_rows([[], [(0, 1.0)]], n_cols=1)
    pg = SparseMatrixProjectionGeometry(n_projections=2, n_detectors=1, matrix=store)
    proj = SparseMatrixProjector2D(pg, VolumeGeometry(n_rows=1, n_cols=1))
    pol = StorePixelWeightsPolicy()
    proj.traverse_ray(0, 0, pol)
    assert [c[0] for c in pol.calls] == ["prior", "posterior"]


class _Rejecting(StorePixelWeightsPolicy):
    def prior(self, ray):
        super().prior(ray)
        return False


def test_prior_false_skips_ray():
    proj = make_projector()
    pol = _Rejecting()
    proj.traverse_all(pol)
    assert pol.weights == []
    assert all(c[0] == "prior" for c in pol.calls)


class _NoneReturning(StorePixelWeightsPolicy):
    def prior(self, ray):
        super().prior(ray)


def test_prior_none_continues():
    proj = make_projector()
    pol = _NoneReturning()
    proj.traverse_all(pol)
    assert len(pol.weights) == proj.matrix.nnz


def test_mask_and_combine():
    proj = make_projector()
    pg = proj.projection_geometry
    mask = np.zeros(pg.shape, dtype=bool)
    mask[1, :] = True
    masked = StorePixelWeightsPolicy()
    everything = StorePixelWeightsPolicy()
    proj.traverse_all(CombinePolicy([RayMaskPolicy(mask, masked), everything]))
    assert len(everything.weights) == pg.matrix.nnz
    assert masked.weights and all(pg.ray_coords(r)[0] == 1 for r, _, _ in masked.weights)
    expected = int(pg.matrix.row_lengths()[pg.n_detectors:2 * pg.n_detectors].sum())
    assert len(masked.weights) == expected


def test_voxel_traversals_are_noops():
    proj = make_projector()
    pol = StorePixelWeightsPolicy()
    proj.traverse_voxel(0, 0, pol)
    proj.traverse_all_voxels(pol)
    assert pol.calls == []


def test_policy_exception_propagates():
    proj = make_projector()

    class Boom(StorePixelWeightsPolicy):
        def add_weight(self, ray, pixel_index, weight):
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        proj.traverse_all(Boom())
    assert proj.is_ready
