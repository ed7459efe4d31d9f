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
import logging
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from icebin import elevation
from icebin.domain import GridDomain
from icebin.ice_regridder import IceRegridder
from icebin.indexing import HCIndex, Indexing
from icebin.latlon import EQ_RAD, LatLonGrid
from icebin.sparse import SparseMatrix, SparseVector, WeightedSparse, multiply

logger = logging.getLogger(__name__)


class MatrixMaker:
    """Registry of ice sheets on one GCM grid, and the matrices they combine into

    Elevation grid index: ``iE = iA * nhc + ihc``, see :py:attr:`hc_index`.
    """

    def __init__(
        self,
        gridA: LatLonGrid,
        hcdefs,
        maskA: Optional[np.ndarray] = None,
        eq_rad: float = EQ_RAD,
        domain: Optional[GridDomain] = None,
    ):
        """
        Args:
            gridA: the GCM grid
            hcdefs: elevation of each elevation class's height point (m)
            maskA: GCM cells to couple (nonzero) or ignore (zero)
            eq_rad: radius of the earth (m)
            domain: if given, only cells in this MPI rank's halo are kept
        """
        self.gridA = gridA
        self.hcdefs = np.asarray(hcdefs, dtype=np.float64)
        self.maskA = None if maskA is None else np.asarray(maskA)
        self.eq_rad = eq_rad
        self.domain = domain

        self.sheets: Dict[str, IceRegridder] = {}
        self.sheets_by_id: Dict[int, IceRegridder] = {}
        self._next_sheet_index = 0

    def clear(self):
        self.sheets.clear()
        self.sheets_by_id.clear()
        self._next_sheet_index = 0

    @property
    def nA(self) -> int:
        return self.gridA.ndata

    @property
    def nhc(self) -> int:
        return len(self.hcdefs)

    @property
    def nE(self) -> int:
        return self.nA * self.nhc

    @property
    def hc_index(self) -> Indexing:
        return HCIndex(self.nA, self.nhc)

    @property
    def hcmax(self) -> np.ndarray:
        return elevation.hcmax(self.hcdefs)

    def add_ice_sheet(self, sheet: IceRegridder) -> int:
        if not sheet.name:
            raise ValueError("MatrixMaker.add_ice_sheet(): Sheet must have a name")
        if sheet.name in self.sheets:
            raise ValueError(f"MatrixMaker.add_ice_sheet(): duplicate ice sheet name {sheet.name!r}")

        index = self._next_sheet_index
        self._next_sheet_index += 1
        sheet.index = index
        self.sheets[sheet.name] = sheet
        self.sheets_by_id[index] = sheet
        logger.info("MatrixMaker: added ice sheet %s as index %d", sheet.name, index)
        return index

    def sheet(self, name: str) -> IceRegridder:
        try:
            return self.sheets[name]
        except KeyError:
            raise KeyError(f"No ice sheet named {name!r}; have {list(self.sheets)}") from None

    def __iter__(self):
        return iter(self.sheets.values())

    def __len__(self):
        return len(self.sheets)

    def realize(self):
        """Check array extents and compute each sheet's exchange grid"""
        n1 = self.nA
        if self.maskA is not None and self.maskA.size != n1:
            raise ValueError(f"maskA has wrong size: {self.maskA.size} (vs {n1} expected)")
        elevation.check_hcdefs(self.hcdefs)

        for sheet in self.sheets.values():
            sheet.realize(self.gridA)
        if self.maskA is not None:
            maskA = self.maskA.ravel()
            self.filter_cellsA(lambda iA: bool(maskA[iA]))
        if self.domain is not None:
            self.filter_cellsA(self.domain.in_halo)

    def filter_cellsA(self, include: Callable[[int], bool]):
        """Remove GCM cells that are not part of this domain from every sheet"""
        for sheet in self.sheets.values():
            sheet.filter_cellsA(include)

    # ------------------------------------------------------------------
    def compute_fhc(self) -> Tuple[SparseMatrix, SparseVector]:
        """Fraction of each GCM cell covered by ice, and of that ice in each elevation class

        Overlapping ice sheets are not handled: their contributions to
        ``fgice1`` are added independently.

        Returns:
            fhc1h: (nA, nhc), ``area_in_class(iA, ihc) / ice_area(iA)``
            fgice1: (nA,), ``ice_area(iA) / area(iA)``
        """
        hc_index = self.hc_index
        area1_m = SparseVector(self.nA)
        area1_m_hc = SparseVector(self.nE)
        fgice1 = SparseVector(self.nA)

        for sheet in self.sheets.values():
            larea1_m = SparseVector(self.nA)
            sheet.accum_areas(hc_index, self.hcdefs, larea1_m, area1_m_hc)
            larea1_m.sum_duplicates()

            # area1 is measured in the sheet's projection, like the ice areas
            area1 = sheet.proj_areaA(self.gridA, larea1_m.index(0))
            fgice1.add_many(larea1_m.index(0), larea1_m.values / area1)
            area1_m.append(larea1_m)
        fgice1.sum_duplicates()

        # Unlike fgice1, this does not need to be done separately for each ice sheet.
        area1 = area1_m.to_dict()
        area1_m_hc.sum_duplicates()
        iA, ihc = hc_index.index_to_tuple(area1_m_hc.index(0))
        fhc1h = SparseMatrix((self.nA, self.nhc))
        fhc1h.add_many(iA, ihc, area1_m_hc.values / np.array([area1[i] for i in iA.tolist()]))
        fhc1h.sum_duplicates()
        logger.debug("compute_fhc: %d GCM cells with ice", fgice1.nnz)
        return fhc1h, fgice1

    def hp_to_hc(self) -> SparseMatrix:
        """Height points -> elevation classes for all ice sheets

        Each sheet contributes ``ice_to_hc @ hp_to_ice``; the row-wise
        concatenation is normalized by the total area of each class.
        """
        hc_index = self.hc_index
        ret = SparseMatrix((self.nE, self.nE))
        area1_m_hc = SparseVector(self.nE)
        for sheet in self.sheets.values():
            logger.debug("hp_to_hc: sheet %s", sheet.name)
            hp_to_ice = sheet.hp_to_ice(hc_index, self.hcdefs)
            ice_to_hc = sheet.ice_to_hc(hc_index, self.hcdefs, area1_m_hc)
            ret.append(multiply(ice_to_hc, hp_to_ice))

        area1_m_hc.sum_duplicates()
        return ret.divide_by(area1_m_hc).sum_duplicates()

    # ------------------------------------------------------------------
    def IvE(self, sheet_name: str) -> WeightedSparse:
        return self.sheet(sheet_name).IvE(self.hc_index, self.hcdefs)

    def EvI(self, sheet_name: str) -> WeightedSparse:
        return self.sheet(sheet_name).EvI(self.hc_index, self.hcdefs)

    def AvI(self, sheet_name: str) -> WeightedSparse:
        return self.sheet(sheet_name).AvI(self.nA)

    def EvA(self) -> WeightedSparse:
        """Elevation classes <- GCM cells, over all ice sheets"""
        M = SparseMatrix((self.nE, self.nA))
        for sheet in self.sheets.values():
            M.append(sheet.EvA(self.hc_index, self.hcdefs).M)
        return WeightedSparse.from_matrix(M.sum_duplicates())

    def AvE(self) -> WeightedSparse:
        return WeightedSparse.from_matrix(self.EvA().M.transpose().sum_duplicates())
