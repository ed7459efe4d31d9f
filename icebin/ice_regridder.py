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
"""Regridding between one ice sheet's grid (I) and the GCM grid (A), via elevation classes (E)

Overlaps are computed on an *exchange grid*: every ice cell is split into
``nsub x nsub`` sub-cells and each sub-cell is assigned to the GCM cell
containing its centre.  Areas are measured in the plane of the ice grid's
projection, which does not account for the spherical earth.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import numpy as np

from icebin import elevation, projections
from icebin.indexing import Indexing
from icebin.latlon import LatLonGrid
from icebin.sparse import SparseMatrix, SparseVector, WeightedSparse

logger = logging.getLogger(__name__)


@dataclass
class ExchangeGrid:
    """Overlap of GCM cell ``iA[k]`` and ice cell ``iI[k]`` is ``area[k]``"""

    iA: np.ndarray
    iI: np.ndarray
    area: np.ndarray

    def __len__(self):
        return len(self.area)

    def select(self, keep: np.ndarray) -> "ExchangeGrid":
        return ExchangeGrid(self.iA[keep], self.iI[keep], self.area[keep])


def exchange_grid(gridA: LatLonGrid, gridI: projections.Grid, nsub: int = 1) -> ExchangeGrid:
    icell, x, y, area = gridI.subcells(nsub)
    lat, lon = gridI.projection.inverse_project(x, y)
    iA = gridA.locate(lat, lon)
    keep = iA >= 0

    overlap = SparseMatrix((gridA.ndata, gridI.ndata))
    overlap.add_many(iA[keep], icell[keep], area[keep])
    overlap.sum_duplicates()
    return ExchangeGrid(overlap.rows, overlap.cols, overlap.values)


class IceRegridder:
    """Regridding matrices for one ice sheet

    The ice sheet's surface elevation ``elevI`` is NaN wherever there is no
    ice.  It is owned by a :py:class:`~icebin.matrix_maker.MatrixMaker`, which
    assigns :py:attr:`index` and passes down the GCM grid and elevation
    classes; the sheet keeps no reference back to it.
    """

    def __init__(
        self,
        name: str,
        gridI: projections.Grid,
        elevI: Optional[np.ndarray] = None,
        maskI: Optional[np.ndarray] = None,
        nsub: int = 1,
    ):
        if not name:
            raise ValueError("IceRegridder must have a name")
        self.name = name
        self.gridI = gridI
        self.nsub = nsub
        self.index = -1

        self._exgrid: Optional[ExchangeGrid] = None
        self._proj_areaA: Dict[int, float] = {}
        self.elevI = np.full(gridI.ndata, np.nan)
        if elevI is not None:
            self.set_elevI(elevI, maskI)

    @property
    def ndata(self) -> int:
        return self.gridI.ndata

    def set_elevI(self, elevI, maskI=None):
        """Set the surface elevation; cells where ``maskI`` is false have no ice"""
        elevI = np.asarray(elevI, dtype=np.float64).ravel()
        if elevI.shape != (self.ndata,):
            raise ValueError(f"elevI for {self.name} has wrong size: {elevI.size} (vs {self.ndata} expected)")
        if maskI is not None:
            maskI = np.asarray(maskI).ravel()
            if maskI.shape != (self.ndata,):
                raise ValueError(f"maskI for {self.name} has wrong size: {maskI.size} (vs {self.ndata} expected)")
            elevI = np.where(maskI.astype(bool), elevI, np.nan)
        self.elevI = elevI

    @property
    def maskI(self) -> np.ndarray:
        return np.isfinite(self.elevI)

    # ------------------------------------------------------------------
    def realize(self, gridA: LatLonGrid):
        self._exgrid = exchange_grid(gridA, self.gridI, self.nsub)
        self._proj_areaA = {}
        logger.info("IceRegridder %s: %d exchange grid cells", self.name, len(self._exgrid))

    @property
    def exgrid(self) -> ExchangeGrid:
        if self._exgrid is None:
            raise RuntimeError(f"IceRegridder {self.name} has not been realized")
        return self._exgrid

    def filter_cellsA(self, include: Callable[[int], bool]):
        """Remove exchange grid cells whose GCM cell is not included"""
        keep = np.array([bool(include(int(i))) for i in self.exgrid.iA], dtype=bool)
        self._exgrid = self.exgrid.select(keep)

    def proj_areaA(self, gridA: LatLonGrid, iA) -> np.ndarray:
        """Area of GCM cells ``iA`` in this sheet's projected plane"""
        out = []
        for i in np.atleast_1d(iA).tolist():
            area = self._proj_areaA.get(i)
            if area is None:
                lat, lon = gridA.cell_polygon(i)
                area = projections.area_of_proj_polygon(lat, lon, self.gridI.projection)
                self._proj_areaA[i] = area
            out.append(area)
        return np.array(out)

    def ice_parts(self, elevI: Optional[np.ndarray] = None):
        """Exchange grid cells covered by ice

        Returns:
            (iA, iI, area, elev)
        """
        elevI = self.elevI if elevI is None else elevI
        xg = self.exgrid
        elev = elevI[xg.iI]
        ice = np.isfinite(elev)
        return xg.iA[ice], xg.iI[ice], xg.area[ice], elev[ice]

    # ------------------------------------------------------------------
    def accum_areas(self, hc_index: Indexing, hcdefs, area1_m: SparseVector, area1_m_hc: SparseVector):
        """Accumulate ice-covered area per GCM cell and per (GCM cell, elevation class)"""
        iA, _, area, elev = self.ice_parts()
        area1_m.add_many(iA, area)
        area1_m_hc.add_many(hc_index.tuple_to_index((iA, elevation.classify(elev, hcdefs))), area)

    def ice_to_hc(self, hc_index: Indexing, hcdefs, area1_m_hc: Optional[SparseVector] = None) -> SparseMatrix:
        """Unnormalized E<-I matrix: overlap area of each ice cell with each elevation class"""
        iA, iI, area, elev = self.ice_parts()
        iE = hc_index.tuple_to_index((iA, elevation.classify(elev, hcdefs)))
        M = SparseMatrix((hc_index.size, self.ndata))
        M.add_many(iE, iI, area)
        if area1_m_hc is not None:
            area1_m_hc.add_many(iE, area)
        return M

    def _IvE_unnormalized(self, hc_index: Indexing, hcdefs):
        iA, iI, area, elev = self.ice_parts()
        ihp0, ihp1, w0, w1 = elevation.height_point_weights(elev, hcdefs)
        M = SparseMatrix((self.ndata, hc_index.size))
        M.add_many(iI, hc_index.tuple_to_index((iA, ihp0)), area * w0)
        M.add_many(iI, hc_index.tuple_to_index((iA, ihp1)), area * w1)
        weight = SparseVector(self.ndata)
        weight.add_many(iI, area)
        return M.sum_duplicates(), weight.sum_duplicates()

    def hp_to_ice(self, hc_index: Indexing, hcdefs) -> SparseMatrix:
        """I<-E matrix interpolating linearly between height points; rows sum to 1"""
        M, weight = self._IvE_unnormalized(hc_index, hcdefs)
        return M.divide_by(weight)

    # ------------------------------------------------------------------
    def IvE(self, hc_index: Indexing, hcdefs) -> WeightedSparse:
        M, weight = self._IvE_unnormalized(hc_index, hcdefs)
        return WeightedSparse(M, weight)

    def EvI(self, hc_index: Indexing, hcdefs) -> WeightedSparse:
        weight = SparseVector(hc_index.size)
        M = self.ice_to_hc(hc_index, hcdefs, weight)
        return WeightedSparse(M.sum_duplicates(), weight.sum_duplicates())

    def AvI(self, nA: int) -> WeightedSparse:
        iA, iI, area, _ = self.ice_parts()
        M = SparseMatrix((nA, self.ndata))
        M.add_many(iA, iI, area)
        return WeightedSparse.from_matrix(M.sum_duplicates())

    def EvA(self, hc_index: Indexing, hcdefs) -> WeightedSparse:
        """Elevation classes <- GCM cells, restricted to this sheet's ice"""
        iA, _, area, elev = self.ice_parts()
        iE = hc_index.tuple_to_index((iA, elevation.classify(elev, hcdefs)))
        M = SparseMatrix((hc_index.size, hc_index.extents[0]))
        M.add_many(iE, iA, area)
        return WeightedSparse.from_matrix(M.sum_duplicates())

    def AvE(self, hc_index: Indexing, hcdefs) -> WeightedSparse:
        return WeightedSparse.from_matrix(self.EvA(hc_index, hcdefs).M.transpose().sum_duplicates())

    def __repr__(self):
        return f"IceRegridder(name={self.name!r}, index={self.index}, grid={self.gridI.name!r})"
