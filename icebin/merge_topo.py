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
"""Merge local ice sheets into a global topography and elevation-class matrix

The GCM's global inputs describe the earth with some ice sheets removed
("no-Greenland").  The functions here put the local ice sheets back:

- :py:func:`merge_topoO` replaces the surface fractions and elevations of
  the TOPOO arrays in the cells the local sheets cover.
- :py:func:`compute_EOpvAOp_merged` splices the sheets' elevation classes
  into the global EvA matrix, dropping global ice wherever local ice exists.

Local areas are fractions of the GCM cell measured in each sheet's projected
plane, multiplied by the spherical cell area.  This does not account for the
spherical earth within a cell.

Consistency problems are appended to an ``errors`` list rather than raised.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import netCDF4
import numpy as np

from icebin import elevation, netcdf
from icebin.elevmask import read_elevmask
from icebin.indexing import HCIndex, Indexing
from icebin.latlon import EQ_RAD
from icebin.matrix_maker import MatrixMaker
from icebin.sparse import SparseMatrix, SparseSet

logger = logging.getLogger(__name__)

# Flags for underice_hc: what lies under each elevation class
UI_UNUSED = 0
UI_ICEBIN = 1  # an ice model runs under this class
UI_NOTHING = 2  # global ice, no ice model


@dataclass(frozen=True)
class TopoVar:
    name: str
    description: str
    units: str


TOPOO = [
    TopoVar("FOCEANF", "Fractional ocean cover", "1"),
    TopoVar("FGICEF", "Glacial Ice Surface Fraction (Ocean NOT rounded)", "0:1"),
    TopoVar("ZATMOF", "Atmospheric Topography", "m"),
    TopoVar("FOCEAN", "0 or 1, Bering Strait 1 cell wide", "1"),
    TopoVar("FLAKE", "Lake Surface Fraction", "0:1"),
    TopoVar("FGRND", "Ground Surface Fraction", "0:1"),
    TopoVar("FGICE", "Glacial Ice Surface Fraction", "0:1"),
    TopoVar("ZATMO", "Atmospheric Topography", "m"),
    TopoVar("ZLAKE", "Lake Surface Topography", "m"),
    TopoVar("ZICETOP", "Atmospheric Topography (Ice-Covered Regions Only)", "m"),
]

FRACTIONS = ("FOCEAN", "FLAKE", "FGRND", "FGICE")


@dataclass
class LocalCoverage:
    """Per GCM cell: fraction covered by local land / ice, and its mean elevation"""

    fland: np.ndarray
    fgice: np.ndarray
    zland: np.ndarray
    zice: np.ndarray


def _check_elevmasks(matrix_maker: MatrixMaker, emIs: Sequence[np.ndarray], what: str) -> List[np.ndarray]:
    if len(emIs) != len(matrix_maker):
        raise ValueError(f"Got {len(emIs)} {what} arrays for {len(matrix_maker)} ice sheets")
    out = []
    for sheet, emI in zip(matrix_maker, emIs):
        emI = np.asarray(emI, dtype=np.float64).ravel()
        if emI.size != sheet.ndata:
            raise ValueError(f"{what} for {sheet.name} has wrong size: {emI.size} (vs {sheet.ndata} expected)")
        out.append(emI)
    return out


def _mean(total: np.ndarray, weight: np.ndarray) -> np.ndarray:
    out = np.full(total.shape, np.nan)
    np.divide(total, weight, out=out, where=weight > 0)
    return out


def local_coverage(matrix_maker: MatrixMaker, emI_lands, emI_ices) -> LocalCoverage:
    nA = matrix_maker.nA
    emI_lands = _check_elevmasks(matrix_maker, emI_lands, "emI_land")
    emI_ices = _check_elevmasks(matrix_maker, emI_ices, "emI_ice")

    frac = {"land": np.zeros(nA), "ice": np.zeros(nA)}
    area = {"land": np.zeros(nA), "ice": np.zeros(nA)}
    zsum = {"land": np.zeros(nA), "ice": np.zeros(nA)}
    for sheet, emI_land, emI_ice in zip(matrix_maker, emI_lands, emI_ices):
        xg = sheet.exgrid
        cellsA, inv = np.unique(xg.iA, return_inverse=True)
        proj_area = sheet.proj_areaA(matrix_maker.gridA, cellsA)[inv]
        for kind, emI in (("land", emI_land), ("ice", emI_ice)):
            elev = emI[xg.iI]
            ok = np.isfinite(elev)
            np.add.at(frac[kind], xg.iA[ok], xg.area[ok] / proj_area[ok])
            np.add.at(area[kind], xg.iA[ok], xg.area[ok])
            np.add.at(zsum[kind], xg.iA[ok], xg.area[ok] * elev[ok])

    return LocalCoverage(
        fland=frac["land"],
        fgice=frac["ice"],
        zland=_mean(zsum["land"], area["land"]),
        zice=_mean(zsum["ice"], area["ice"]),
    )


def _cell_name(gridA, iA: int) -> str:
    j, i = gridA.ij(iA)
    return f"(j={int(j)}, i={int(i)})"


def merge_topoO(
    topo: Dict[str, np.ndarray],
    matrix_maker: MatrixMaker,
    emI_lands: Sequence[np.ndarray],
    emI_ices: Sequence[np.ndarray],
    eq_rad: float = EQ_RAD,
    errors: Optional[List[str]] = None,
):
    """Merge local ice sheets into the TOPOO arrays, in place

    In cells covered by local ice, local ice replaces the global ice
    fraction; lakes shrink to make room, and ground takes the rest of the
    non-ocean area.  Ocean fractions are not changed.  Elevations are
    blended in proportion to the non-ocean area covered by local land.
    Cells with no local ice keep their values, as in
    :func:`compute_EOpvAOp_merged`, even where local bare land covers them.
    """
    errors = [] if errors is None else errors
    gridA = matrix_maker.gridA
    for var in TOPOO:
        if var.name not in topo:
            raise ValueError(f"TOPOO is missing variable {var.name}")
        if np.shape(topo[var.name]) != gridA.shape:
            raise ValueError(f"{var.name} has shape {np.shape(topo[var.name])}, expected {gridA.shape}")

    cov = local_coverage(matrix_maker, emI_lands, emI_ices)
    (foot,) = np.nonzero(cov.fgice > 0)
    t = {var.name: np.array(topo[var.name], dtype=np.float64).ravel() for var in TOPOO}

    fland, fgice_local = cov.fland[foot], cov.fgice[foot]
    for focean_name, fgice_name, zatmo_name in (("FOCEAN", "FGICE", "ZATMO"), ("FOCEANF", "FGICEF", "ZATMOF")):
        nonocean = 1.0 - t[focean_name][foot]
        excess = fgice_local - nonocean
        for k in np.flatnonzero(excess > 1e-6):
            errors.append(
                f"{fgice_name} {_cell_name(gridA, foot[k])}: local ice fraction {fgice_local[k]:g} "
                f"exceeds non-ocean fraction {nonocean[k]:g}"
            )
        fgice = np.clip(np.minimum(fgice_local, nonocean), 0.0, None)
        t[fgice_name][foot] = fgice

        covered = np.zeros(len(foot))
        np.divide(np.minimum(fland, nonocean), nonocean, out=covered, where=nonocean > 0)
        t[zatmo_name][foot] = np.where(
            covered > 0, covered * cov.zland[foot] + (1 - covered) * t[zatmo_name][foot], t[zatmo_name][foot]
        )

        if focean_name == "FOCEAN":
            flake = np.clip(np.minimum(t["FLAKE"][foot], nonocean - fgice), 0.0, None)
            t["FLAKE"][foot] = flake
            t["FGRND"][foot] = nonocean - flake - fgice

    t["ZICETOP"][foot] = np.where(fgice_local > 0, cov.zice[foot], t["ZICETOP"][foot])

    for name, arr in t.items():
        topo[name] = arr.reshape(gridA.shape)

    ice_area = np.sum(cov.fgice * gridA.cell_areas(eq_rad))
    logger.info("merge_topoO: %d cells merged, local ice area %g km2", len(foot), ice_area * 1e-6)
    return errors


def sanity_check_land_fractions(topo: Dict[str, np.ndarray], errors: List[str], tol: float = 1e-9) -> List[str]:
    """Append an error for each cell whose surface fractions do not add to 1 or are negative"""
    total = sum(np.asarray(topo[name], dtype=np.float64) for name in FRACTIONS)
    for j, i in zip(*np.nonzero(np.abs(total - 1.0) > tol)):
        errors.append(f"(j={j}, i={i}): FOCEAN+FLAKE+FGRND+FGICE = {total[j, i]:.17g}")

    for name in FRACTIONS + ("FOCEANF", "FGICEF"):
        if name not in topo:
            continue
        arr = np.asarray(topo[name])
        for j, i in zip(*np.nonzero(arr < -tol)):
            errors.append(f"(j={j}, i={i}): {name} = {arr[j, i]:g} is negative")
    return errors


@dataclass
class EOpvAOpResult:
    """Merged EvA matrix, in dense indices ``(dimEOp, dimAOp)``"""

    EOpvAOp: SparseMatrix
    dimEOp: SparseSet
    hcdefs: np.ndarray
    indexingHC: Indexing
    underice_hc: np.ndarray

    def sparse_matrix(self, dimAOp: SparseSet) -> SparseMatrix:
        return self.EOpvAOp.sparsify(self.dimEOp, dimAOp).sum_duplicates()


def compute_EOpvAOp_merged(
    dimAOp: SparseSet,
    EOpvAOp_ng: SparseMatrix,
    matrix_maker: MatrixMaker,
    eq_rad: float,
    emI_ices: Sequence[np.ndarray],
    use_global_ice: bool = True,
    use_local_ice: bool = True,
    hcdefs=None,
    indexingHC: Optional[Indexing] = None,
    squash_ec: bool = False,
    errors: Optional[List[str]] = None,
) -> EOpvAOpResult:
    """Splice the local ice sheets' elevation classes into a global EvA matrix

    Args:
        dimAOp: filled with the GCM cells that appear in the result
        EOpvAOp_ng: global EvA matrix without the local sheets, in sparse
            indices; entry ``(iE, iA)`` is the area (m^2) of class ``iE``
            within cell ``iA``
        matrix_maker: the local ice sheets; must be realized
        emI_ices: ice surface elevation of each sheet, NaN where no ice
        hcdefs: height points of the global elevation classes
        indexingHC: ``(iA, ihc)`` indexing of ``EOpvAOp_ng``'s rows
        squash_ec: put each cell's local ice in the single global class
            holding its mean elevation, instead of appending the local
            classes after the global ones
        errors: sanity problems are appended here
    """
    errors = [] if errors is None else errors
    mm = matrix_maker
    nA = mm.nA
    hcdefs = elevation.check_hcdefs(mm.hcdefs if hcdefs is None else hcdefs)
    nhc = len(hcdefs)
    indexingHC = HCIndex(nA, nhc) if indexingHC is None else indexingHC
    if indexingHC.extents != (nA, nhc):
        raise ValueError(f"indexingHC extents {indexingHC.extents} do not match (nA, nhc) = {(nA, nhc)}")
    if tuple(EOpvAOp_ng.shape) != (indexingHC.size, nA):
        raise ValueError(f"EOpvAOp_ng has shape {EOpvAOp_ng.shape}, expected {(indexingHC.size, nA)}")
    emI_ices = _check_elevmasks(mm, emI_ices, "emI_ice")
    areaA = mm.gridA.cell_areas(eq_rad)

    # ------------ Local ice, as (iA, elevation, spherical area)
    parts = []
    if use_local_ice:
        for sheet, emI_ice in zip(mm, emI_ices):
            iA, _, area, elev = sheet.ice_parts(emI_ice)
            if len(iA) == 0:
                continue
            cellsA, inv = np.unique(iA, return_inverse=True)
            parts.append((iA, elev, area / sheet.proj_areaA(mm.gridA, cellsA)[inv] * areaA[iA]))
    if parts:
        iA_l, elev_l, area_l = (np.concatenate(x) for x in zip(*parts))
    else:
        iA_l, elev_l, area_l = np.zeros(0, dtype=np.int64), np.zeros(0), np.zeros(0)
    in_local = np.zeros(nA, dtype=bool)
    in_local[iA_l] = True

    if squash_ec or not use_local_ice:
        hcdefs_merged = hcdefs
        underice_hc = np.full(nhc, UI_NOTHING, dtype=np.int16)
        offset = 0
    else:
        hcdefs_merged = np.concatenate([hcdefs, mm.hcdefs])
        underice_hc = np.concatenate(
            [np.full(nhc, UI_NOTHING, dtype=np.int16), np.full(mm.nhc, UI_ICEBIN, dtype=np.int16)]
        )
        offset = nhc
    indexing_merged = Indexing(indexingHC.names, (nA, len(hcdefs_merged)), indexingHC.order)
    M = SparseMatrix((indexing_merged.size, nA))

    # ------------ Global ice, except where local ice replaces it
    if use_global_ice:
        ng = EOpvAOp_ng.compressed()
        iA_e, ihc = indexingHC.index_to_tuple(ng.rows)
        keep = ~in_local[ng.cols]
        M.add_many(indexing_merged.tuple_to_index((iA_e[keep], ihc[keep])), ng.cols[keep], ng.values[keep])

    # ------------ Local ice
    if len(iA_l):
        if squash_ec:
            area_c = np.bincount(iA_l, weights=area_l, minlength=nA)
            cells = np.flatnonzero(area_c > 0)
            zmean = np.bincount(iA_l, weights=area_l * elev_l, minlength=nA)[cells] / area_c[cells]
            ihc_l = elevation.classify(zmean, hcdefs)
            M.add_many(indexing_merged.tuple_to_index((cells, ihc_l)), cells, area_c[cells])
        else:
            ihc_l = offset + elevation.classify(elev_l, mm.hcdefs)
            M.add_many(indexing_merged.tuple_to_index((iA_l, ihc_l)), iA_l, area_l)
    M.sum_duplicates()

    # ------------ Sanity checks
    for k in np.flatnonzero(M.values < 0):
        errors.append(f"EOpvAOp: negative area {M.values[k]:g} at (iE={M.rows[k]}, iA={M.cols[k]})")
    fice = np.bincount(M.cols, weights=M.values, minlength=nA) / areaA
    for iA in np.flatnonzero(fice > 1.0 + 1e-9):
        errors.append(f"EOpvAOp {_cell_name(mm.gridA, iA)}: ice fraction {fice[iA]:.17g} exceeds 1")

    if dimAOp.sparse_extent < 0:
        dimAOp.set_sparse_extent(nA)
    dimEOp = SparseSet(indexing_merged.size)
    EOpvAOp = M.densify(dimEOp, dimAOp)
    logger.info(
        "compute_EOpvAOp_merged: %d entries, %d elevation classes, %d cells with local ice",
        EOpvAOp.nnz,
        len(hcdefs_merged),
        int(in_local.sum()),
    )
    return EOpvAOpResult(EOpvAOp, dimEOp, hcdefs_merged, indexing_merged, underice_hc)


# ---------------------------------------------------------------------------
def read_topo(fname: str) -> Dict[str, np.ndarray]:
    with netCDF4.Dataset(fname) as nc:
        return {var.name: np.ma.filled(nc[var.name][:].astype(np.float64), np.nan) for var in TOPOO}


def write_topo(nc, topo: Dict[str, np.ndarray]):
    shape = np.shape(topo[TOPOO[0].name])
    dims = tuple(netcdf.get_or_add_dim(nc, name, n) for name, n in zip(("jm", "im"), shape))
    for var in TOPOO:
        v = nc.createVariable(var.name, "f8", dims, zlib=True)
        v.description = var.description
        v.units = var.units
        v[:] = topo[var.name]


def make_merged_topoo(
    topoo_ng_fname: str,
    global_ec_fname: str,
    matrix_maker_fname: str,
    elevmask_xfnames: Sequence[str],
    topoo_merged_fname: str,
    eq_rad: float = EQ_RAD,
    squash_ec: bool = False,
) -> List[str]:
    """Merge local ice sheets into global TOPOO and EvA files

    Args:
        topoo_ng_fname: TOPOO file without the local ice sheets
        global_ec_fname: file with the matching global ``EvA.M`` matrix,
            ``hcdefs`` and ``indexingHC``
        matrix_maker_fname: file with the local ice sheets, group ``m``
        elevmask_xfnames: one ``<format>:<path>`` per ice sheet, in order
        topoo_merged_fname: output file

    Returns:
        Sanity check errors; the output is written regardless.
    """
    topo = read_topo(topoo_ng_fname)
    with netCDF4.Dataset(global_ec_fname) as nc:
        EOpvAOp_ng = netcdf.read_sparse_matrix(nc, "EvA.M")
        hcdefs = np.asarray(nc["hcdefs"][:], dtype=np.float64)
        indexingHC = Indexing.from_attrs({k: nc["indexingHC"].getncattr(k) for k in ("names", "extents", "order")})
    with netCDF4.Dataset(matrix_maker_fname) as nc:
        mm = netcdf.read_matrix_maker(nc, "m")
    mm.realize()

    emI_lands, emI_ices = [], []
    for xfname in elevmask_xfnames:
        emI_land, emI_ice = read_elevmask(xfname)
        emI_lands.append(emI_land)
        emI_ices.append(emI_ice)

    errors: List[str] = []
    merge_topoO(topo, mm, emI_lands, emI_ices, eq_rad, errors)
    sanity_check_land_fractions(topo, errors)

    dimAOp = SparseSet(mm.nA)
    eam = compute_EOpvAOp_merged(
        dimAOp, EOpvAOp_ng, mm, eq_rad, emI_ices, True, True, hcdefs, indexingHC, squash_ec, errors
    )
    for err in errors:
        logger.error("%s", err)

    with netCDF4.Dataset(topoo_merged_fname, "w") as nc:
        netcdf.write_grid(nc, "gridA", mm.gridA)
        ix = nc.createVariable("indexingHC", "i4")
        ix.setncatts(eam.indexingHC.to_attrs())
        nhc = netcdf.get_or_add_dim(nc, "nhc", len(eam.hcdefs))
        nc.createVariable("hcdefs", "f8", (nhc,))[:] = eam.hcdefs
        nc.createVariable("underice_hc", "i2", (nhc,))[:] = eam.underice_hc
        netcdf.write_sparse(nc, "EvA.M", eam.sparse_matrix(dimAOp))
        write_topo(nc, topo)
    return errors
