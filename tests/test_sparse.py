# SPDX-FileCopyrightText: Copyright (c) 2024 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
import numpy as np
import pytest
import scipy.sparse

from icebin.sparse import SparseMatrix, SparseSet, SparseVector, WeightedSparse, compose, multiply


def test_sparse_set_round_trip():
    dim = SparseSet(100)
    sparse = [17, 3, 99, 42, 3, 0]
    dense = [dim.add_dense(i) for i in sparse]

    assert dense == [0, 1, 2, 3, 1, 4]
    assert dim.dense_extent == 5
    for d in range(dim.dense_extent):
        assert dim.to_dense(dim.to_sparse(d)) == d
    for i in sparse:
        assert dim.to_sparse(dim.to_dense(i)) == i
    np.testing.assert_array_equal(dim.to_sparse_array(dim.to_dense_array(sparse)), sparse)


def test_sparse_set_missing():
    dim = SparseSet(10)
    dim.add([1, 2])
    with pytest.raises(KeyError):
        dim.to_dense(5)
    assert dim.to_dense_or(5) == -1
    assert 2 in dim
    assert not dim.in_sparse(5)


def test_sparse_set_out_of_range():
    dim = SparseSet(10)
    with pytest.raises(ValueError):
        dim.add_dense(10)
    dim.add_dense(7)
    with pytest.raises(ValueError):
        dim.set_sparse_extent(5)


def test_sum_duplicates():
    M = SparseMatrix((3, 3))
    M.add(2, 1, 1.0)
    M.add(0, 2, 2.0)
    M.add(2, 1, 3.0)
    M.add_many([0, 0], [2, 0], [1.0, 5.0])
    M.sum_duplicates()

    np.testing.assert_array_equal(M.rows, [0, 0, 2])
    np.testing.assert_array_equal(M.cols, [0, 2, 1])
    np.testing.assert_array_equal(M.values, [5.0, 3.0, 4.0])


def test_add_out_of_range():
    M = SparseMatrix((2, 2))
    with pytest.raises(ValueError):
        M.add(2, 0, 1.0)
    v = SparseVector(3)
    with pytest.raises(ValueError):
        v.add_many([0, 3], [1.0, 1.0])


def test_append_and_transpose():
    A = SparseMatrix((2, 3))
    A.add(0, 1, 1.0)
    B = SparseMatrix((2, 3))
    B.add(1, 2, 2.0)
    A.append(B)
    assert A.nnz == 2
    np.testing.assert_array_equal(A.transpose().toarray(), A.toarray().T)


def test_scipy_round_trip():
    m = scipy.sparse.random(5, 4, density=0.4, random_state=0)
    M = SparseMatrix.from_scipy(m)
    np.testing.assert_allclose(M.toarray(), m.toarray())
    np.testing.assert_allclose(multiply(M, M.T).toarray(), (m @ m.T).toarray())


def test_divide_by_drops_empty_rows():
    M = SparseMatrix((3, 2))
    M.add_many([0, 1, 2], [0, 1, 1], [2.0, 4.0, 6.0])
    div = SparseVector(3)
    div.add_many([0, 2], [2.0, 3.0])
    np.testing.assert_allclose(M.divide_by(div).toarray(), [[1.0, 0.0], [0.0, 0.0], [0.0, 2.0]])


def test_densify_sparsify():
    M = SparseMatrix((100, 50))
    M.add_many([90, 10, 90], [40, 5, 5], [1.0, 2.0, 3.0])
    rows, cols = SparseSet(100), SparseSet(50)
    dense = M.densify(rows, cols)
    assert dense.shape == (2, 2)
    assert dense.sparsify(rows, cols) == M


def test_vector_to_array():
    v = SparseVector(4)
    v.add_many([1, 3, 1], [1.0, 2.0, 0.5])
    np.testing.assert_array_equal(v.to_array(), [0.0, 1.5, 0.0, 2.0])
    assert v.to_dict() == {1: 1.5, 3: 2.0}
    out = v.to_array(fill=np.nan)
    assert np.isnan(out[0]) and out[3] == 2.0


def test_weighted_sparse_row_mismatch():
    with pytest.raises(ValueError):
        WeightedSparse(SparseMatrix((3, 2)), SparseVector(2))


def test_weighted_sparse_apply_masks_zero_weight():
    M = SparseMatrix((2, 2))
    M.add_many([0, 0], [0, 1], [1.0, 3.0])
    ws = WeightedSparse.from_matrix(M)
    out = ws.apply(np.array([2.0, 6.0]))
    assert out[0] == pytest.approx(5.0)
    assert np.isnan(out[1])


def _random_operator(rng, shape):
    dense = rng.uniform(0.1, 1.0, size=shape)
    dense[rng.uniform(size=shape) < 0.3] = 0.0
    # every row and column keeps at least one entry
    dense[np.arange(shape[0]), np.arange(shape[0]) % shape[1]] = 1.0
    dense[np.arange(shape[1]) % shape[0], np.arange(shape[1])] = 1.0
    return WeightedSparse.from_matrix(SparseMatrix.from_scipy(scipy.sparse.coo_matrix(dense)))


def test_conservation():
    rng = np.random.default_rng(0)
    A = _random_operator(rng, (4, 6))
    src_weight = A.M.transpose().row_sums().to_array()

    const = 3.5
    out = A.apply(np.full(6, const))
    assert np.sum(A.weight.to_array() * out) == pytest.approx(np.sum(src_weight * const))


def test_compose_matches_sequential_application():
    rng = np.random.default_rng(1)
    A = _random_operator(rng, (3, 5))
    B = _random_operator(rng, (5, 4))
    x = rng.normal(size=4)
    np.testing.assert_allclose(compose(A, B).apply(x), A.apply(B.apply(x)))


def test_compose_associative():
    rng = np.random.default_rng(2)
    A = _random_operator(rng, (3, 5))
    B = _random_operator(rng, (5, 4))
    C = _random_operator(rng, (4, 6))
    x = rng.normal(size=6)

    left = compose(compose(A, B), C)
    right = compose(A, compose(B, C))
    np.testing.assert_allclose(left.apply(x), right.apply(x))
    np.testing.assert_allclose(left.weight.to_array(), right.weight.to_array())


def test_compose_does_not_multiply_weights():
    M = SparseMatrix((1, 1))
    M.add(0, 0, 2.0)
    A = WeightedSparse.from_matrix(M)
    B = WeightedSparse.from_matrix(M.copy())

    AB = compose(A, B)
    assert AB.weight.to_array()[0] == pytest.approx(2.0)
    assert AB.apply(np.array([7.0]))[0] == pytest.approx(7.0)
