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
from typing import Dict, Optional, Tuple

import numpy as np

from icebin import modele
from icebin.contract import GRID_BITS, ICE, CouplingContract
from icebin.contracts import INPUT, OUTPUT, GCMKind, IceModelKind
from icebin.ice_coupler import IceCoupler
from icebin.ice_regridder import IceRegridder
from icebin.matrix_maker import MatrixMaker
from icebin.sparse import WeightedSparse

logger = logging.getLogger(__name__)


class GCMCoupleOutput:
    """Ice model outputs of every sheet, accumulated on the GCM's E and A grids

    Each sheet adds ``M @ vals`` and its weights; :py:meth:`finalize` divides
    once all sheets have coupled, so sheets meeting in one GCM cell are
    area-averaged.  Fields flagged ``ICE`` are also kept per sheet on the ice
    grid in :py:attr:`gcm_ivalsI`.
    """

    def __init__(self, gcm_inputs: CouplingContract, nE: int, nA: int):
        self.gcm_inputs = gcm_inputs
        nvar = gcm_inputs.size_nounit()
        self.sumE = np.zeros((nvar, nE))
        self.weightE = np.zeros(nE)
        self.sumA = np.zeros((nvar, nA))
        self.weightA = np.zeros(nA)
        self.gcm_ivalsI: Dict[str, Dict[str, np.ndarray]] = {}

    def accumulate(self, sheet_name: str, EvI: WeightedSparse, AvI: WeightedSparse, gcm_ivalsI: np.ndarray):
        """Add one sheet's GCM-facing values, (nfields, nI)"""
        self.sumE += (EvI.M.to_scipy() @ gcm_ivalsI.T).T
        self.weightE += EvI.weight.to_array()
        self.sumA += (AvI.M.to_scipy() @ gcm_ivalsI.T).T
        self.weightA += AvI.weight.to_array()

        ice_fields = {}
        for k, f in enumerate(self.gcm_inputs.fields):
            if f.flags & GRID_BITS == ICE:
                ice_fields[f.name] = gcm_ivalsI[k].copy()
        self.gcm_ivalsI[sheet_name] = ice_fields

    @staticmethod
    def _divide(total: np.ndarray, weight: np.ndarray) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            out = total / weight
        return np.where(weight == 0, np.nan, out)

    def finalize(self) -> Tuple[Dict[str, np.ndarray], Dict[str, np.ndarray]]:
        """(valsE, valsA): field name -> values, NaN where no ice contributed"""
        valsE = self._divide(self.sumE, self.weightE)
        valsA = self._divide(self.sumA, self.weightA)
        names = self.gcm_inputs.names
        return dict(zip(names, valsE)), dict(zip(names, valsA))


_GCM_CONTRACTS = {
    GCMKind.MODELE: (
        modele.modele_gcm_outputs,
        modele.modele_gcm_inputs,
        modele.modele_ice_input_scalars,
        modele.modele_ice_output_scalars,
        modele.modele_constants,
    ),
}


class GCMCoupler:
    """Owns the GCM-side contracts, the :py:class:`MatrixMaker` and one
    :py:class:`IceCoupler` per ice sheet, keyed by sheet name.
    """

    def __init__(self, matrix_maker: MatrixMaker, gcm_kind=GCMKind.MODELE):
        self.gcm_kind = GCMKind(gcm_kind)
        gcm_outputs, gcm_inputs, input_scalars, output_scalars, constants = _GCM_CONTRACTS[self.gcm_kind]
        self.gcm_outputs = gcm_outputs()
        self.gcm_inputs = gcm_inputs()
        self.ice_input_scalars = input_scalars()
        self.ice_output_scalars = output_scalars()
        self.constants = constants()

        self.matrix_maker = matrix_maker
        self.ice_couplers: Dict[str, IceCoupler] = {}

    def add_ice_sheet(self, sheet: IceRegridder, kind, config=None, gcm_params=None) -> int:
        """Register ``sheet`` and set up its contracts; returns the sheet's index"""
        if sheet.name in self.ice_couplers:
            raise ValueError(f"GCMCoupler.add_ice_sheet(): duplicate ice sheet name {sheet.name!r}")
        ic = IceCoupler(sheet.name, IceModelKind(kind), config, self.gcm_kind, gcm_params)
        ic.setup_contracts()
        vt_in, vt_out = ic.var_transformer[INPUT], ic.var_transformer[OUTPUT]
        if vt_in.names(vt_in.INPUTS) != self.gcm_outputs or vt_out.names(vt_out.OUTPUTS) != self.gcm_inputs:
            raise ValueError(f"Contracts for ice sheet {sheet.name!r} do not match the GCM's fields")

        index = self.matrix_maker.add_ice_sheet(sheet)
        self.ice_couplers[sheet.name] = ic
        return index

    def ice_coupler(self, name: str) -> IceCoupler:
        try:
            return self.ice_couplers[name]
        except KeyError:
            raise KeyError(f"No ice coupler for sheet {name!r}") from None

    def ice_coupler_by_index(self, index: int) -> IceCoupler:
        return self.ice_coupler(self.matrix_maker.sheets_by_id[index].name)

    def realize(self):
        self.matrix_maker.realize()
        for ic in self.ice_couplers.values():
            ic.realize(self.matrix_maker)

    def set_start_time(self, time_start_s: float):
        for ic in self.ice_couplers.values():
            ic.set_start_time(time_start_s)

    def couple(self, time_s: float, gcm_ovalsE, do_run: bool = True, out: Optional[GCMCoupleOutput] = None):
        """Couple every ice sheet and return the accumulated GCM inputs

        Sheets are coupled independently; their contributions are merged
        in the returned :py:class:`GCMCoupleOutput`.
        """
        mm = self.matrix_maker
        if out is None:
            out = GCMCoupleOutput(self.gcm_inputs, mm.nE, mm.nA)
        for name, ic in self.ice_couplers.items():
            logger.debug("GCMCoupler: coupling %s at time_s=%g", name, time_s)
            ic.couple(time_s, gcm_ovalsE, out, do_run)
        return out

