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

from icebin import merge_topo, netcdf, projections
from icebin.ice_regridder import IceRegridder
from icebin.indexing import HCIndex
from icebin.latlon import EQ_RAD
from icebin.matrix_maker import MatrixMaker
from icebin.sparse import SparseMatrix, SparseSet

ICE_CELL = 4
GLOBAL_HCDEFS = [0.0, 1500.0]

# half the ice grid is ice at 1200m, the rest bare land at 800m
ICE = np.arange(16) < 8
EMI_LAND = np.where(ICE, 1200.0, 800.0)
EMI_ICE = np.where(ICE, 1200.0, np.nan)


def make_topo(shape=(2, 3)):
    values = {
        "FOCEAN": 0.2,
        "FLAKE": 0.1,
        "FGRND": 0.5,
        "FGICE": 0.2,
        "FOCEANF": 0.2,
        "FGICEF": 0.2,
        "ZATMO": 100.0,
        "ZATMOF": 100.0,
        "ZLAKE": 0.0,
        "ZICETOP": 50.0,
    }
    return {name: np.full(shape, value) for name, value in values.items()}


def test_merge_topoO(matrix_maker):
    topo = make_topo()
    before = {name: arr.copy() for name, arr in topo.items()}
    errors = merge_topo.merge_topoO(topo, matrix_maker, [EMI_LAND], [EMI_ICE])
    assert errors == []

    j, i = matrix_maker.gridA.ij(ICE_CELL)
    assert topo["FGICE"][j, i] == pytest.approx(0.5)
    assert topo["FGICEF"][j, i] == pytest.approx(0.5)
    assert topo["FLAKE"][j, i] == pytest.approx(0.1)
    assert topo["FGRND"][j, i] == pytest.approx(0.2)
    assert topo["FOCEAN"][j, i] == 0.2
    assert topo["ZATMO"][j, i] == pytest.approx(1000.0)
    assert topo["ZICETOP"][j, i] == pytest.approx(1200.0)

    # cells with no local ice keep their exact values
    untouched = np.ones((2, 3), dtype=bool)
    untouched[j, i] = False
    for name in before:
        np.testing.assert_array_equal(topo[name][untouched], before[name][untouched])

    total = sum(topo[name] for name in merge_topo.FRACTIONS)
    np.testing.assert_allclose(total, 1.0, atol=1e-9)
    assert merge_topo.sanity_check_land_fractions(topo, []) == []


def test_merge_topoO_lakes_shrink(matrix_maker):
    topo = make_topo()
    topo["FLAKE"][:] = 0.5
    topo["FGRND"][:] = 0.1
    merge_topo.merge_topoO(topo, matrix_maker, [EMI_LAND], [np.full(16, 1200.0)])

    j, i = matrix_maker.gridA.ij(ICE_CELL)
    assert topo["FGICE"][j, i] == pytest.approx(0.8)
    assert topo["FLAKE"][j, i] == pytest.approx(0.0)
    assert topo["FGRND"][j, i] == pytest.approx(0.0)


def test_merge_topoO_reports_excess_ice(matrix_maker):
    topo = make_topo()
    topo["FOCEAN"][:] = 0.5
    topo["FGRND"][:] = 0.2
    topo["FOCEANF"][:] = 0.5
    errors = merge_topo.merge_topoO(topo, matrix_maker, [EMI_LAND], [np.full(16, 1200.0)])

    assert len(errors) == 2
    assert "exceeds non-ocean fraction" in errors[0]
    j, i = matrix_maker.gridA.ij(ICE_CELL)
    assert topo["FGICE"][j, i] == pytest.approx(0.5)
    total = sum(topo[name] for name in merge_topo.FRACTIONS)
    np.testing.assert_allclose(total, 1.0, atol=1e-9)


def test_merge_topoO_structural_errors(matrix_maker):
    topo = make_topo()
    del topo["ZLAKE"]
    with pytest.raises(ValueError):
        merge_topo.merge_topoO(topo, matrix_maker, [EMI_LAND], [EMI_ICE])
    with pytest.raises(ValueError):
        merge_topo.merge_topoO(make_topo((3, 3)), matrix_maker, [EMI_LAND], [EMI_ICE])
    with pytest.raises(ValueError):
        merge_topo.merge_topoO(make_topo(), matrix_maker, [EMI_LAND[:4]], [EMI_ICE])
    with pytest.raises(ValueError):
        merge_topo.merge_topoO(make_topo(), matrix_maker, [], [])


def test_sanity_check_collects_all_errors():
    topo = make_topo()
    topo["FGRND"][0, 0] = 0.4
    topo["FLAKE"][1, 2] = -0.1
    topo["FGRND"][1, 2] = 0.7
    errors = merge_topo.sanity_check_land_fractions(topo, [])
    assert len(errors) == 2
    assert errors[0].startswith("(j=0, i=0)")
    assert "FLAKE" in errors[1]


def global_EvA(nA, areaA):
    """Global ice: class 0 in cell 1, class 1 in the cell the local sheet covers"""
    index = HCIndex(nA, len(GLOBAL_HCDEFS))
    M = SparseMatrix((index.size, nA))
    M.add(index.tuple_to_index((1, 0)), 1, 0.3 * areaA[1])
    M.add(index.tuple_to_index((ICE_CELL, 1)), ICE_CELL, 0.2 * areaA[ICE_CELL])
    return M


def _rows_by_cell(result, dimAOp):
    M = result.sparse_matrix(dimAOp)
    iA, ihc = result.indexingHC.index_to_tuple(M.rows)
    return M, iA, ihc


def test_EOpvAOp_appends_local_classes(matrix_maker):
    areaA = matrix_maker.gridA.cell_areas(EQ_RAD)
    dimAOp = SparseSet()
    errors = []
    result = merge_topo.compute_EOpvAOp_merged(
        dimAOp,
        global_EvA(matrix_maker.nA, areaA),
        matrix_maker,
        EQ_RAD,
        [EMI_ICE],
        hcdefs=GLOBAL_HCDEFS,
        errors=errors,
    )
    assert errors == []
    np.testing.assert_array_equal(result.hcdefs, [0.0, 1500.0, 0.0, 1000.0, 2000.0])
    assert result.underice_hc.tolist() == [merge_topo.UI_NOTHING] * 2 + [merge_topo.UI_ICEBIN] * 3
    assert result.indexingHC.extents == (6, 5)
    assert result.EOpvAOp.shape == (result.dimEOp.dense_extent, dimAOp.dense_extent)

    M, iA, ihc = _rows_by_cell(result, dimAOp)
    # global ice in the local cell is replaced, elsewhere it is kept
    assert set(zip(iA.tolist(), ihc.tolist(), M.cols.tolist())) == {(1, 0, 1), (ICE_CELL, 3, ICE_CELL)}
    local = M.values[M.cols == ICE_CELL]
    assert local.tolist() == pytest.approx([0.5 * areaA[ICE_CELL]])


def test_EOpvAOp_squash_one_class_per_cell(gridA, make_sheet):
    elevI = np.where(np.arange(16) % 2 == 0, 100.0, 1900.0)
    mm = MatrixMaker(gridA, [0.0, 1000.0, 2000.0])
    mm.add_ice_sheet(make_sheet(elevI=elevI))
    mm.realize()
    areaA = gridA.cell_areas(EQ_RAD)

    dimAOp = SparseSet()
    result = merge_topo.compute_EOpvAOp_merged(
        dimAOp, global_EvA(mm.nA, areaA), mm, EQ_RAD, [elevI], hcdefs=GLOBAL_HCDEFS, squash_ec=True
    )
    np.testing.assert_array_equal(result.hcdefs, GLOBAL_HCDEFS)
    assert result.underice_hc.tolist() == [merge_topo.UI_NOTHING] * 2

    M, iA, ihc = _rows_by_cell(result, dimAOp)
    local = M.cols == ICE_CELL
    assert local.sum() == 1
    # mean elevation 1000m falls in the global class around 1500m
    assert ihc[local].tolist() == [1]
    assert M.values[local].tolist() == pytest.approx([areaA[ICE_CELL]])


def test_EOpvAOp_local_only(matrix_maker):
    areaA = matrix_maker.gridA.cell_areas(EQ_RAD)
    dimAOp = SparseSet()
    result = merge_topo.compute_EOpvAOp_merged(
        dimAOp,
        global_EvA(matrix_maker.nA, areaA),
        matrix_maker,
        EQ_RAD,
        [EMI_ICE],
        use_global_ice=False,
        hcdefs=GLOBAL_HCDEFS,
    )
    M, _, _ = _rows_by_cell(result, dimAOp)
    assert M.cols.tolist() == [ICE_CELL]
    assert dimAOp.dense_extent == 1


def test_EOpvAOp_reports_overfull_cell(matrix_maker):
    areaA = matrix_maker.gridA.cell_areas(EQ_RAD)
    EvA = global_EvA(matrix_maker.nA, areaA)
    EvA.add(0, 0, 2.0 * areaA[0])
    errors = []
    merge_topo.compute_EOpvAOp_merged(
        SparseSet(), EvA, matrix_maker, EQ_RAD, [EMI_ICE], hcdefs=GLOBAL_HCDEFS, errors=errors
    )
    assert len(errors) == 1
    assert "(j=0, i=0)" in errors[0]


def test_EOpvAOp_shape_mismatch(matrix_maker):
    with pytest.raises(ValueError):
        merge_topo.compute_EOpvAOp_merged(
            SparseSet(), SparseMatrix((4, 6)), matrix_maker, EQ_RAD, [EMI_ICE], hcdefs=GLOBAL_HCDEFS
        )


def test_make_merged_topoo(tmp_path, matrix_maker, write_pism_state):
    topoo_ng = str(tmp_path / "topoo_ng.nc")
    global_ec = str(tmp_path / "global_ec.nc")
    mm_fname = str(tmp_path / "mm.nc")
    elevmask_fname = str(tmp_path / "state.nc")
    out_fname = str(tmp_path / "topoo_merged.nc")

    with netCDF4.Dataset(topoo_ng, "w") as nc:
        merge_topo.write_topo(nc, make_topo())

    nA = matrix_maker.nA
    with netCDF4.Dataset(global_ec, "w") as nc:
        netcdf.write_sparse(nc, "EvA.M", global_EvA(nA, matrix_maker.gridA.cell_areas(EQ_RAD)))
        nc.createDimension("nhc", len(GLOBAL_HCDEFS))
        nc.createVariable("hcdefs", "f8", ("nhc",))[:] = GLOBAL_HCDEFS
        nc.createVariable("indexingHC", "i4").setncatts(HCIndex(nA, len(GLOBAL_HCDEFS)).to_attrs())

    netcdf.save(mm_fname, m=matrix_maker)

    # PISM writes (y, x) arrays, the ice grid's flat order
    ice = ICE.reshape(4, 4)
    write_pism_state(
        elevmask_fname,
        topg=np.full((4, 4), 800.0),
        thk=np.where(ice, 400.0, 0.0),
        mask=np.where(ice, 2.0, 0.0),
    )

    errors = merge_topo.make_merged_topoo(topoo_ng, global_ec, mm_fname, [f"pism:{elevmask_fname}"], out_fname)
    assert errors == []

    topo = merge_topo.read_topo(out_fname)
    j, i = matrix_maker.gridA.ij(ICE_CELL)
    assert topo["FGICE"][j, i] == pytest.approx(0.5)
    assert topo["ZICETOP"][j, i] == pytest.approx(1200.0)
    with netCDF4.Dataset(out_fname) as nc:
        assert nc["underice_hc"][:].tolist() == [2, 2, 1, 1, 1]
        EvA = netcdf.read_sparse_matrix(nc, "EvA.M")
        assert EvA.shape == (nA * 5, nA)
        assert netcdf.read_grid(nc, "gridA") == matrix_maker.gridA


@pytest.fixture
def two_cell_sheet(gridA):
    """A sheet over cells 4 and 5: ice in cell 4, bare land in cell 5"""
    gridI = projections.Grid(
        projections.LatLonProjection(), np.linspace(-48.0, -44.0, 5), np.linspace(62.0, 64.0, 5), name="greenland"
    )
    mm = MatrixMaker(gridA, [0.0, 1000.0, 2000.0])
    mm.add_ice_sheet(IceRegridder("greenland", gridI, np.full(gridI.ndata, 1000.0)))
    mm.realize()
    ice = gridI.lon < -46.0
    return mm, np.where(ice, 1000.0, 800.0), np.where(ice, 1000.0, np.nan)


def test_bare_land_cell_keeps_global_ice(two_cell_sheet):
    mm, emI_land, emI_ice = two_cell_sheet
    topo = make_topo()
    for name, value in (("FOCEAN", 0.0), ("FOCEANF", 0.0), ("FGRND", 0.7)):
        topo[name][:] = value
    before = {name: arr.copy() for name, arr in topo.items()}
    assert merge_topo.merge_topoO(topo, mm, [emI_land], [emI_ice]) == []

    j, i = mm.gridA.ij(ICE_CELL)
    assert topo["FGICE"][j, i] == pytest.approx(1.0)
    j, i = mm.gridA.ij(ICE_CELL + 1)
    for name in before:
        assert topo[name][j, i] == before[name][j, i]

    # the merged EvA agrees: global ice survives in cell 5 only
    areaA = mm.gridA.cell_areas(EQ_RAD)
    EvA = global_EvA(mm.nA, areaA)
    EvA.add(HCIndex(mm.nA, len(GLOBAL_HCDEFS)).tuple_to_index((ICE_CELL + 1, 0)), ICE_CELL + 1, 0.2 * areaA[ICE_CELL + 1])
    dimAOp = SparseSet()
    result = merge_topo.compute_EOpvAOp_merged(dimAOp, EvA, mm, EQ_RAD, [emI_ice], hcdefs=GLOBAL_HCDEFS)
    M, _, ihc = _rows_by_cell(result, dimAOp)
    fice = np.bincount(M.cols, weights=M.values, minlength=mm.nA) / areaA
    assert fice[ICE_CELL + 1] == pytest.approx(before["FGICE"][j, i])
    assert fice[ICE_CELL] == pytest.approx(1.0)
    assert ihc[M.cols == ICE_CELL + 1].tolist() == [0]
