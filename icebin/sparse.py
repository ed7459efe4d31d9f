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
"""Sparse index sets, coordinate-form sparse arrays and weighted regridding matrices

Two index spaces travel together in IceBin:

- *sparse* indices are stable and global; they cover the whole domain and are
  what gets written to files or shared between MPI ranks.
- *dense* indices are local working indices; only the cells actually touched
  by a computation get one.

:py:class:`SparseSet` translates between the two.  :py:class:`SparseMatrix` and
:py:class:`SparseVector` are growable (index, value) builders: entries are
appended in any order, duplicates are allowed, and a single
:py:meth:`~_CooArray.sum_duplicates` pass produces the canonical sorted form.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse


class SparseSet:
    """Bidirectional mapping between sparse (global) and dense (local) indices"""

    def __init__(self, sparse_extent: int = -1):
        self._sparse_extent = sparse_extent
        self._s2d: Dict[int, int] = {}
        self._d2s = []

    @property
    def sparse_extent(self) -> int:
        return self._sparse_extent

    @property
    def dense_extent(self) -> int:
        return len(self._d2s)

    def set_sparse_extent(self, extent: int):
        if self._d2s and extent >= 0 and max(self._d2s) >= extent:
            raise ValueError(f"sparse_extent {extent} is smaller than an index already in the set.")
        self._sparse_extent = extent

    def __len__(self):
        return self.dense_extent

    def __contains__(self, sparse_index) -> bool:
        return int(sparse_index) in self._s2d

    def in_sparse(self, sparse_index) -> bool:
        return int(sparse_index) in self._s2d

    def add_dense(self, sparse_index) -> int:
        """Register ``sparse_index`` on first encounter; return its dense index"""
        sparse_index = int(sparse_index)
        dense = self._s2d.get(sparse_index)
        if dense is not None:
            return dense
        if sparse_index < 0 or (self._sparse_extent >= 0 and sparse_index >= self._sparse_extent):
            raise ValueError(f"sparse index {sparse_index} out of range [0, {self._sparse_extent})")
        dense = len(self._d2s)
        self._s2d[sparse_index] = dense
        self._d2s.append(sparse_index)
        return dense

    def add(self, sparse_indices: Iterable[int]):
        for i in sparse_indices:
            self.add_dense(i)

    def to_dense(self, sparse_index) -> int:
        try:
            return self._s2d[int(sparse_index)]
        except KeyError:
            raise KeyError(f"sparse index {sparse_index} not present in SparseSet") from None

    def to_dense_or(self, sparse_index, default: int = -1) -> int:
        return self._s2d.get(int(sparse_index), default)

    def to_sparse(self, dense_index) -> int:
        return self._d2s[int(dense_index)]

    def to_dense_array(self, sparse_indices, default: Optional[int] = None) -> np.ndarray:
        if default is None:
            return np.array([self.to_dense(i) for i in np.ravel(sparse_indices)], dtype=np.int64)
        return np.array([self.to_dense_or(i, default) for i in np.ravel(sparse_indices)], dtype=np.int64)

    def to_sparse_array(self, dense_indices) -> np.ndarray:
        d2s = np.asarray(self._d2s, dtype=np.int64)
        return d2s[np.asarray(dense_indices, dtype=np.int64)]

    def sparse_indices(self) -> np.ndarray:
        """All registered sparse indices, in dense order"""
        return np.asarray(self._d2s, dtype=np.int64)


class _CooArray:
    """Coordinate-form sparse array of rank ``len(shape)``

    A shape entry of -1 means the extent along that dimension is unknown and
    is not range-checked.
    """

    def __init__(self, shape: Sequence[int]):
        self.shape = tuple(int(n) for n in shape)
        self._indices = [[] for _ in self.shape]
        self._values = []

    @property
    def rank(self) -> int:
        return len(self.shape)

    @property
    def nnz(self) -> int:
        return len(self._values)

    def __len__(self):
        return self.nnz

    def index(self, dim: int) -> np.ndarray:
        return np.asarray(self._indices[dim], dtype=np.int64)

    @property
    def indices(self) -> np.ndarray:
        """(nnz, rank) array of indices"""
        if self.nnz == 0:
            return np.zeros((0, self.rank), dtype=np.int64)
        return np.stack([self.index(k) for k in range(self.rank)], axis=-1)

    @property
    def values(self) -> np.ndarray:
        return np.asarray(self._values, dtype=np.float64)

    def _check_range(self, dim: int, ix: np.ndarray):
        extent = self.shape[dim]
        if ix.size == 0:
            return
        if ix.min() < 0 or (extent >= 0 and ix.max() >= extent):
            raise ValueError(f"index out of range along dimension {dim}: extent is {extent}")

    def add_index(self, index: Sequence[int], value: float):
        if len(index) != self.rank:
            raise ValueError(f"expected an index of rank {self.rank}, got {index}")
        for k, i in enumerate(index):
            self._check_range(k, np.array([i]))
        for k, i in enumerate(index):
            self._indices[k].append(int(i))
        self._values.append(float(value))

    def add_many(self, *args):
        """add_many(i0, i1, ..., values) with one index array per dimension"""
        *index_arrays, values = args
        if len(index_arrays) != self.rank:
            raise ValueError(f"expected {self.rank} index arrays, got {len(index_arrays)}")
        values = np.asarray(values, dtype=np.float64).ravel()
        arrays = [np.asarray(ix, dtype=np.int64).ravel() for ix in index_arrays]
        for k, ix in enumerate(arrays):
            if ix.shape != values.shape:
                raise ValueError(f"index array {k} has {ix.size} entries, values has {values.size}")
            self._check_range(k, ix)
        for k, ix in enumerate(arrays):
            self._indices[k].extend(ix.tolist())
        self._values.extend(values.tolist())

    def append(self, other: "_CooArray"):
        """Concatenate the entries of ``other`` onto this array"""
        if other.rank != self.rank:
            raise ValueError(f"cannot append rank {other.rank} array to rank {self.rank} array")
        for k in range(self.rank):
            if self.shape[k] >= 0 and other.shape[k] >= 0 and self.shape[k] != other.shape[k]:
                raise ValueError(f"shape mismatch: {self.shape} vs {other.shape}")
        for k in range(self.rank):
            self._indices[k].extend(other._indices[k])
        self._values.extend(other._values)

    def clear(self):
        self._indices = [[] for _ in self.shape]
        self._values = []

    def _set(self, indices: np.ndarray, values: np.ndarray):
        self._indices = [indices[:, k].tolist() for k in range(self.rank)]
        self._values = values.tolist()

    def sum_duplicates(self):
        """Sort by index (first dimension slowest) and merge duplicate entries in place"""
        if self.nnz == 0:
            return self
        indices = self.indices
        values = self.values
        perm = np.lexsort(indices.T[::-1])
        indices = indices[perm]
        values = values[perm]
        new_run = np.ones(len(values), dtype=bool)
        new_run[1:] = np.any(indices[1:] != indices[:-1], axis=-1)
        starts = np.flatnonzero(new_run)
        self._set(indices[starts], np.add.reduceat(values, starts))
        return self

    def compressed(self):
        """Return a canonical (sorted, duplicate-free) copy"""
        out = self.copy()
        return out.sum_duplicates()

    def copy(self):
        out = self.__class__.__new__(self.__class__)
        _CooArray.__init__(out, self.shape)
        out._indices = [list(ix) for ix in self._indices]
        out._values = list(self._values)
        return out

    def __iter__(self):
        for entry in zip(*self._indices, self._values):
            yield entry

    def __eq__(self, other):
        if not isinstance(other, _CooArray) or other.shape != self.shape:
            return False
        a = self.compressed()
        b = other.compressed()
        return np.array_equal(a.indices, b.indices) and np.array_equal(a.values, b.values)

    def __repr__(self):
        return f"{self.__class__.__name__}(shape={self.shape}, nnz={self.nnz})"


class SparseVector(_CooArray):
    def __init__(self, extent):
        if isinstance(extent, (tuple, list)):
            (extent,) = extent
        super().__init__((extent,))

    def add(self, i: int, value: float):
        self.add_index((i,), value)

    def to_dict(self) -> Dict[int, float]:
        """Index -> value, with duplicates summed"""
        out: Dict[int, float] = {}
        for i, v in zip(self._indices[0], self._values):
            out[i] = out.get(i, 0.0) + v
        return out

    def to_array(self, fill: float = 0.0, n: Optional[int] = None) -> np.ndarray:
        n = self.shape[0] if n is None else n
        if n < 0:
            raise ValueError("cannot densify a SparseVector of unknown extent")
        out = np.zeros(n)
        np.add.at(out, self.index(0), self.values)
        if fill != 0.0:
            touched = np.zeros(n, dtype=bool)
            touched[self.index(0)] = True
            out[~touched] = fill
        return out

    @classmethod
    def from_array(cls, array, keep_zeros: bool = False) -> "SparseVector":
        array = np.asarray(array, dtype=np.float64)
        out = cls(array.shape[0])
        (ix,) = np.nonzero(np.ones_like(array, dtype=bool) if keep_zeros else array != 0)
        out.add_many(ix, array[ix])
        return out

    def densify(self, dim: SparseSet) -> "SparseVector":
        """Translate to dense indices, registering new sparse indices in ``dim``"""
        out = SparseVector(-1)
        out.add_many([dim.add_dense(i) for i in self._indices[0]], self.values)
        out.shape = (dim.dense_extent,)
        return out

    def sparsify(self, dim: SparseSet) -> "SparseVector":
        out = SparseVector(dim.sparse_extent)
        out.add_many(dim.to_sparse_array(self.index(0)), self.values)
        return out


class SparseMatrix(_CooArray):
    def __init__(self, shape: Tuple[int, int]):
        if len(shape) != 2:
            raise ValueError(f"SparseMatrix needs a 2-d shape, got {shape}")
        super().__init__(shape)

    @property
    def rows(self) -> np.ndarray:
        return self.index(0)

    @property
    def cols(self) -> np.ndarray:
        return self.index(1)

    def add(self, row: int, col: int, value: float):
        self.add_index((row, col), value)

    def transpose(self) -> "SparseMatrix":
        out = SparseMatrix(self.shape[::-1])
        out._indices = [list(self._indices[1]), list(self._indices[0])]
        out._values = list(self._values)
        return out

    @property
    def T(self) -> "SparseMatrix":
        return self.transpose()

    def to_scipy(self) -> scipy.sparse.csr_matrix:
        # coo -> csr sums duplicates
        return scipy.sparse.coo_matrix((self.values, (self.rows, self.cols)), shape=self.shape).tocsr()

    def toarray(self) -> np.ndarray:
        return self.to_scipy().toarray()

    @classmethod
    def from_scipy(cls, m) -> "SparseMatrix":
        m = scipy.sparse.coo_matrix(m)
        out = cls(m.shape)
        out.add_many(m.row, m.col, m.data)
        return out

    def row_sums(self) -> SparseVector:
        out = SparseVector(self.shape[0])
        out.add_many(self.rows, self.values)
        return out.sum_duplicates()

    def scale_rows(self, factors: np.ndarray) -> "SparseMatrix":
        """Return a copy with row ``i`` multiplied by ``factors[i]``"""
        factors = np.asarray(factors, dtype=np.float64)
        out = SparseMatrix(self.shape)
        rows = self.rows
        out.add_many(rows, self.cols, self.values * factors[rows])
        return out

    def divide_by(self, divisor: SparseVector) -> "SparseMatrix":
        """Divide each row by ``divisor[row]``; rows with no or zero divisor are dropped"""
        div = divisor.to_dict()
        rows = self.rows
        d = np.array([div.get(r, 0.0) for r in rows.tolist()])
        keep = d != 0
        out = SparseMatrix(self.shape)
        out.add_many(rows[keep], self.cols[keep], self.values[keep] / d[keep])
        return out

    def densify(self, dim_rows: SparseSet, dim_cols: SparseSet) -> "SparseMatrix":
        """Translate to dense indices, registering new sparse indices in the SparseSets"""
        rows = [dim_rows.add_dense(i) for i in self._indices[0]]
        cols = [dim_cols.add_dense(j) for j in self._indices[1]]
        out = SparseMatrix((-1, -1))
        out.add_many(rows, cols, self.values)
        out.shape = (dim_rows.dense_extent, dim_cols.dense_extent)
        return out

    def sparsify(self, dim_rows: SparseSet, dim_cols: SparseSet) -> "SparseMatrix":
        out = SparseMatrix((dim_rows.sparse_extent, dim_cols.sparse_extent))
        out.add_many(dim_rows.to_sparse_array(self.rows), dim_cols.to_sparse_array(self.cols), self.values)
        return out


def multiply(A: SparseMatrix, B: SparseMatrix) -> SparseMatrix:
    """Ordinary sparse matrix product ``A @ B``"""
    if A.shape[1] != B.shape[0]:
        raise ValueError(f"cannot multiply {A.shape} by {B.shape}")
    return SparseMatrix.from_scipy(A.to_scipy() @ B.to_scipy())


def _inverse(w: np.ndarray) -> np.ndarray:
    inv = np.zeros_like(w)
    np.divide(1.0, w, out=inv, where=w != 0)
    return inv


@dataclass
class WeightedSparse:
    """A regridding operator: ``M @ x / weight`` is the regridded field

    Rows with ``weight == 0`` have no defined output; :py:meth:`apply` fills
    them with NaN.
    """

    M: SparseMatrix
    weight: SparseVector

    def __post_init__(self):
        if self.M.shape[0] != self.weight.shape[0]:
            raise ValueError(f"M has {self.M.shape[0]} rows but weight has extent {self.weight.shape[0]}")

    @classmethod
    def empty(cls, shape: Tuple[int, int]) -> "WeightedSparse":
        return cls(SparseMatrix(shape), SparseVector(shape[0]))

    @classmethod
    def from_matrix(cls, M: SparseMatrix) -> "WeightedSparse":
        """Conservative operator whose weights are the row sums of ``M``"""
        return cls(M, M.row_sums())

    @property
    def shape(self) -> Tuple[int, int]:
        return self.M.shape

    def sum_duplicates(self) -> "WeightedSparse":
        self.M.sum_duplicates()
        self.weight.sum_duplicates()
        return self

    def apply(self, x) -> np.ndarray:
        """Regrid ``x`` of shape (ncols,) or (ncols, nfields)"""
        x = np.asarray(x, dtype=np.float64)
        if x.shape[0] != self.shape[1]:
            raise ValueError(f"expected {self.shape[1]} source values, got {x.shape[0]}")
        w = self.weight.to_array()
        y = self.M.to_scipy() @ x
        if y.ndim > 1:
            w = w[:, None]
        with np.errstate(divide="ignore", invalid="ignore"):
            out = y / w
        return np.where(w == 0, np.nan, out)

    def regridder(self):
        from icebin._regrid import WeightedSparseRegridder

        return WeightedSparseRegridder(self)

    def __eq__(self, other):
        return isinstance(other, WeightedSparse) and self.M == other.M and self.weight == other.weight


def compose(A: WeightedSparse, B: WeightedSparse) -> WeightedSparse:
    """Operator equivalent to regridding with ``B`` and then with ``A``

    The weights represent areas, so they are re-derived by pushing the
    fraction of each ``B`` row that is covered through ``A.M`` rather than
    multiplying the two weight vectors.
    """
    if A.shape[1] != B.shape[0]:
        raise ValueError(f"cannot compose {A.shape} with {B.shape}")
    Am = A.M.to_scipy()
    Bm = B.M.to_scipy()
    inv_wB = _inverse(B.weight.to_array())

    M = Am @ scipy.sparse.diags(inv_wB) @ Bm
    coverage = np.asarray(Bm.sum(axis=1)).ravel() * inv_wB
    weight = Am @ coverage

    out = WeightedSparse(SparseMatrix.from_scipy(M), SparseVector.from_array(weight))
    out.M.sum_duplicates()
    return out
