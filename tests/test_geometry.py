import pytest

from tomosparse.core.errors import InvalidGeometryError
from tomosparse.core.geometry import SparseMatrixProjectionGeometry, VolumeGeometry
from tomosparse.core.sparse import SparseWeightStore


def test_volume_index_round_trip():
    vg = VolumeGeometry(n_rows=3, n_cols=5)
    assert vg.n_pixels == 15
    assert vg.pixel_index(2, 4) == 14
    assert vg.pixel_coords(7) == (1, 2)
    assert vg.contains(2, 4) and not vg.contains(3, 0) and not vg.contains(0, -1)
    assert vg.min_x == -2.5 and vg.max_y == 1.5
    assert vg.pixel_size == (1.0, 1.0)


def test_volume_dict_round_trip():
    vg = VolumeGeometry(n_rows=4, n_cols=2, min_x=0.0, max_x=1.0, min_y=0.0, max_y=2.0)
    assert VolumeGeometry.from_dict(vg.to_dict()) == vg


def test_volume_check_rejects_empty():
    with pytest.raises(InvalidGeometryError):
        VolumeGeometry(n_rows=0, n_cols=4).check()
    with pytest.raises(InvalidGeometryError):
        VolumeGeometry(n_rows=2, n_cols=2, min_x=1.0, max_x=1.0, min_y=0.0, max_y=1.0).check()


def test_volume_partial_window_rejected():
    with pytest.raises(InvalidGeometryError, match="max_x"):
        VolumeGeometry(n_rows=2, n_cols=2, min_x=0.0)
    with pytest.raises(InvalidGeometryError, match="min_y"):
        VolumeGeometry(n_rows=2, n_cols=2, max_y=3.0)
    # One axis given, the other defaults
    vg = VolumeGeometry(n_rows=2, n_cols=4, min_x=0.0, max_x=8.0)
    assert vg.pixel_size == (1.0, 2.0)
    vg.check()


def test_volume_from_dict_missing_key():
    with pytest.raises(InvalidGeometryError, match="GridColCount"):
        VolumeGeometry.from_dict({"GridRowCount": 4})
    with pytest.raises(InvalidGeometryError):
        VolumeGeometry.from_dict({"GridRowCount": 4, "GridColCount": 4, "WindowMinX": 0.0})


def test_projection_ray_index():
    store = SparseWeightStore.from_rows([[]] * 6, n_cols=4)
    pg = SparseMatrixProjectionGeometry(n_projections=2, n_detectors=3, matrix=store, angles=[0.0, 1.5])
    assert pg.n_rays == 6
    assert pg.ray_index(1, 2) == 5
    assert pg.ray_coords(4) == (1, 1)
    pg.check()


def test_projection_copy_shares_matrix():
    store = SparseWeightStore.from_rows([[(0, 1.0)]], n_cols=1)
    pg = SparseMatrixProjectionGeometry(n_projections=1, n_detectors=1, matrix=store)
    clone = pg.copy()
    assert clone is not pg
    assert clone == pg
    assert clone.matrix is store


def test_projection_check_failures():
    store = SparseWeightStore.from_rows([[(0, 1.0)]], n_cols=1)
    with pytest.raises(InvalidGeometryError):
        SparseMatrixProjectionGeometry(n_projections=0, n_detectors=1, matrix=store).check()
    with pytest.raises(InvalidGeometryError, match="no weight matrix"):
        SparseMatrixProjectionGeometry(n_projections=1, n_detectors=1, matrix=None).check()
    with pytest.raises(InvalidGeometryError, match="angles"):
        SparseMatrixProjectionGeometry(n_projections=1, n_detectors=1, matrix=store, angles=[0.0, 1.0]).check()


def test_projection_from_dict():
    d = {"type": "sparse_matrix", "DetectorCount": 3, "ProjectionAngles": [0.0, 0.5], "DetectorWidth": 2.0}
    pg = SparseMatrixProjectionGeometry.from_dict(d)
    assert pg.shape == (2, 3)
    assert pg.detector_width == 2.0
    assert pg.to_dict()["ProjectionCount"] == 2
    with pytest.raises(InvalidGeometryError, match="unsupported"):
        SparseMatrixProjectionGeometry.from_dict({"type": "parallel", "DetectorCount": 3, "ProjectionCount": 1})
