import numpy as np
import pytest
import scipy.sparse as sp

from tomosparse.core.errors import InvalidGeometryError
from tomosparse.core.sparse import SparseWeightStore


def test_from_rows_keeps_order_and_duplicates():
    store = SparseWeightStore.from_rows([[(2, 0.5), (0, 1.0), (2, 0.25)], [], [(1, 2.0)]], n_cols=4)
    assert store.shape == (3, 4)
    assert store.nnz == 4
    idx, w = store.row(0)
    assert idx.tolist() == [2, 0, 2]
    assert np.allclose(w, [0.5, 1.0, 0.25])
    assert store.row_nnz(1) == 0
    assert store.row_lengths().tolist() == [3, 0, 1]


def test_explicit_zeros_dropped_in_order():
    store = SparseWeightStore([0, 3, 4], [0, 1, 2, 3], [1.0, 0.0, 3.0, 0.0], shape=(2, 4))
    assert store.nnz == 2
    assert store.indptr.tolist() == [0, 2, 2]
    assert store.row(0)[0].tolist() == [0, 2]
    assert store.row_nnz(1) == 0


def test_arrays_are_read_only():
    store = SparseWeightStore.from_rows([[(0, 1.0)]])
    with pytest.raises(ValueError):
        store.weights[0] = 2.0
    with pytest.raises(ValueError):
        store.indices[0] = 1


def test_input_arrays_are_copied():
    indices = np.array([0, 1])
    weights = np.array([1.0, 2.0], dtype=np.float32)
    store = SparseWeightStore([0, 2], indices, weights)
    weights[0] = 9.0
    assert store.weights[0] == pytest.approx(1.0)


def test_width_inferred_without_shape():
    store = SparseWeightStore.from_rows([[(5, 1.0)], [(1, 1.0)]])
    assert store.declared_cols is None
    assert store.n_cols == 6
    assert store.max_index() == 5


@pytest.mark.parametrize(
    "indptr,indices,weights,shape",
    [
        ([], [], [], None),
        ([1, 1], [0], [1.0], None),
        ([0, 2, 1], [0, 1], [1.0, 1.0], None),
        ([0, 2], [0], [1.0], None),
        ([0, 1], [0, 1], [1.0, 1.0], None),
        ([0, 1], [-1], [1.0], None),
        ([0, 1], [0], [np.nan], None),
        ([0, 1], [0], [np.inf], None),
        ([0, 1], [3], [1.0], (1, 2)),
        ([0, 1], [0], [1.0], (2, 4)),
    ],
)
def test_inconsistent_structure_rejected(indptr, indices, weights, shape):
    with pytest.raises(InvalidGeometryError):
        SparseWeightStore(indptr, indices, weights, shape=shape)


def test_scipy_round_trip_shares_layout():
    dense = np.array([[0.0, 1.0, 0.0], [2.0, 0.0, 3.0]], dtype=np.float32)
    store = SparseWeightStore.from_dense(dense)
    assert store.shape == (2, 3)
    csr = store.to_scipy()
    assert np.allclose(csr.toarray(), dense)
    again = SparseWeightStore.from_scipy(sp.coo_matrix(dense))
    assert again.indices.tolist() == store.indices.tolist()


def test_row_out_of_range():
    store = SparseWeightStore.from_rows([[(0, 1.0)]])
    with pytest.raises(IndexError):
        store.row(1)
    with pytest.raises(IndexError):
        store.row(-1)
