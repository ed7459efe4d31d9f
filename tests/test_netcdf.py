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
import netCDF4
import numpy as np
import pytest
import torch

from icebin import netcdf, stereographic
from icebin.contract import ELEVATION, ICE, INITIAL, CouplingContract
from icebin.contracts import INPUT, OUTPUT, IceModelKind, setup_contracts
from icebin.sparse import SparseMatrix, SparseSet, SparseVector, WeightedSparse


@pytest.fixture
def nc(tmp_path):
    with netCDF4.Dataset(str(tmp_path / "test.nc"), "w") as ds:
        yield ds


def test_sparse_round_trip(nc):
    M = SparseMatrix((5, 7))
    M.add_many([4, 0, 4], [6, 1, 6], [1.0, 2.0, 3.0])
    v = SparseVector(5)
    v.add_many([3, 1], [0.5, 0.25])
    netcdf.write_sparse(nc, "M", M)
    netcdf.write_sparse(nc, "v", v)

    M2 = netcdf.read_sparse_matrix(nc, "M")
    assert M2.shape == (5, 7)
    assert M2 == M
    assert M2.nnz == 2  # written compressed
    assert netcdf.read_sparse_vector(nc, "v") == v


def test_empty_sparse_round_trip(nc):
    netcdf.write_sparse(nc, "M", SparseMatrix((3, 2)))
    M = netcdf.read_sparse_matrix(nc, "M")
    assert M.shape == (3, 2)
    assert M.nnz == 0


def test_weighted_sparse_round_trip(nc):
    M = SparseMatrix((2, 3))
    M.add_many([0, 1], [2, 0], [1.5, 2.5])
    ws = WeightedSparse.from_matrix(M)
    netcdf.write_weighted_sparse(nc, "AvI", ws)
    assert netcdf.read_weighted_sparse(nc, "AvI") == ws


def test_sparse_set_round_trip(nc):
    dim = SparseSet(100)
    dim.add([42, 7, 99])
    netcdf.write_sparse_set(nc, "dimA", dim)

    dim2 = netcdf.read_sparse_set(nc, "dimA")
    assert dim2.sparse_extent == 100
    assert [dim2.to_sparse(d) for d in range(3)] == [42, 7, 99]


def test_contract_round_trip(nc):
    contract = CouplingContract()
    contract.add_field("elev2", 0.0, "m", ICE | INITIAL, "ice upper surface elevation")
    contract.add_field("litg2", -5.0, "degC", ELEVATION, "firn temperature")
    netcdf.write_contract(nc, "contract", contract)
    assert netcdf.read_contract(nc, "contract") == contract


def test_var_transformer_round_trip(nc):
    setup = setup_contracts(IceModelKind.PISM, "modele")
    for io, name in ((INPUT, "vt_in"), (OUTPUT, "vt_out")):
        netcdf.write_var_transformer(nc, name, setup.var_transformer[io])
        vt = netcdf.read_var_transformer(nc, name)
        assert vt == setup.var_transformer[io]
        assert torch.equal(vt.coeff, setup.var_transformer[io].coeff)


def test_grid_round_trip(nc, gridA):
    gridI = stereographic.searise_grid("greenland", 20, "searise")
    netcdf.write_grid(nc, "gridA", gridA)
    netcdf.write_grid(nc, "gridI", gridI)

    gridA2 = netcdf.read_grid(nc, "gridA")
    assert gridA2 == gridA
    assert gridA2.name == "toy"
    gridI2 = netcdf.read_grid(nc, "gridI")
    assert gridI2 == gridI
    assert gridI2.name == gridI.name
    assert gridI2.indexing.order == (1, 0)


def test_matrix_maker_round_trip(tmp_path, matrix_maker):
    fname = str(tmp_path / "mm.nc")
    netcdf.save(fname, m=matrix_maker)

    with netCDF4.Dataset(fname) as ds:
        mm = netcdf.read_matrix_maker(ds, "m")
    assert mm.gridA == matrix_maker.gridA
    np.testing.assert_array_equal(mm.hcdefs, matrix_maker.hcdefs)
    assert mm.eq_rad == matrix_maker.eq_rad
    assert [s.name for s in mm] == ["greenland"]
    np.testing.assert_array_equal(mm.sheet("greenland").elevI, matrix_maker.sheet("greenland").elevI)

    mm.realize()
    assert mm.AvI("greenland") == matrix_maker.AvI("greenland")


def test_save_many(tmp_path, matrix_maker):
    fname = str(tmp_path / "matrices.nc")
    EvA = matrix_maker.EvA()
    netcdf.save(fname, EvA=EvA, sheet=matrix_maker.sheet("greenland"), gridA=matrix_maker.gridA)

    with netCDF4.Dataset(fname) as ds:
        assert netcdf.read_weighted_sparse(ds, "EvA") == EvA
        sheet = netcdf.read_ice_regridder(ds, "sheet")
        assert sheet.name == "greenland"
        assert sheet.gridI == matrix_maker.sheet("greenland").gridI


def test_save_unknown_type(tmp_path):
    with pytest.raises(ValueError):
        netcdf.save(str(tmp_path / "x.nc"), x=object())
