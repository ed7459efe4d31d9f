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
"""Per-ice-sheet coupling

An :py:class:`IceCoupler` owns one ice sheet's contracts, transformers and
regridding matrices, and drives the per-timestep exchange with its ice model
backend.  Backends are selected by :py:class:`IceModelKind`, each with its
own config dataclass:

- ``DISMAL``: demonstration model that holds a fixed surface elevation
- ``WRITER``: like ``DISMAL``, but always records what it receives
- ``PISM``, ``ISSM``: wrap an external engine object
"""
import enum
import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import netCDF4
import numpy as np
import torch

from icebin.contract import CouplingContract
from icebin.contracts import INPUT, OUTPUT, GCMKind, IceModelKind, setup_contracts
from icebin.ice_regridder import IceRegridder
from icebin.matrix_maker import MatrixMaker
from icebin.sparse import SparseVector

__all__ = [
    "IceModelKind",
    "IceCouplerState",
    "DismalConfig",
    "WriterConfig",
    "PISMConfig",
    "ISSMConfig",
    "IceModel",
    "DismalModel",
    "EngineModel",
    "make_ice_model",
    "IceWriter",
    "IceCoupler",
]

logger = logging.getLogger(__name__)


class IceCouplerState(enum.Enum):
    UNINITIALIZED = 0
    CONTRACT_SET_UP = 1
    READY = 2
    COUPLING = 3


@dataclass
class DismalConfig:
    #: If set, inputs and outputs are written here each coupling step
    output_dir: Optional[str] = None


@dataclass
class WriterConfig:
    output_dir: str = "."


@dataclass
class PISMConfig:
    #: Object implementing :py:class:`IceModel`
    engine: Any = None
    output_dir: Optional[str] = None


@dataclass
class ISSMConfig:
    """Settings for an ISSM engine

    The backend is declared, but no ModelE contract exists for ISSM yet:
    :func:`icebin.contracts.setup_contracts` raises ValueError for it.
    """

    engine: Any = None
    output_dir: Optional[str] = None


_CONFIG_TYPES = {
    IceModelKind.DISMAL: DismalConfig,
    IceModelKind.WRITER: WriterConfig,
    IceModelKind.PISM: PISMConfig,
    IceModelKind.ISSM: ISSMConfig,
}


class IceModel(Protocol):
    def get_elevI(self) -> np.ndarray:
        """Current surface elevation on the ice grid, NaN where there is no ice"""
        pass

    def run_timestep(self, time_s: float, ice_ivalsI: np.ndarray, ice_ovalsI: np.ndarray, do_run: bool):
        """Advance to ``time_s`` (if ``do_run``) and fill ``ice_ovalsI`` in place

        Args:
            ice_ivalsI: (ninputs, nI), in the order of the input contract
            ice_ovalsI: (noutputs, nI), in the order of the output contract
        """
        pass


class DismalModel:
    """Holds a fixed elevation and reports it as ``usurf``"""

    def __init__(self, elevI: np.ndarray, contract_out: CouplingContract):
        self.elevI = np.array(elevI, dtype=np.float64)
        self.contract_out = contract_out

    def get_elevI(self) -> np.ndarray:
        return self.elevI

    def run_timestep(self, time_s: float, ice_ivalsI: np.ndarray, ice_ovalsI: np.ndarray, do_run: bool):
        ix = self.contract_out.index("usurf", throw_exception=False)
        if ix > 0:
            ice_ovalsI[ix - 1, :] = self.elevI


class EngineModel:
    """An external ice model engine, e.g. PISM"""

    def __init__(self, kind: IceModelKind, engine):
        if engine is None:
            raise ValueError(f"Ice model {kind.value} needs an engine in its config")
        self.kind = kind
        self.engine = engine

    def get_elevI(self) -> np.ndarray:
        return np.asarray(self.engine.get_elevI(), dtype=np.float64)

    def run_timestep(self, time_s: float, ice_ivalsI: np.ndarray, ice_ovalsI: np.ndarray, do_run: bool):
        self.engine.run_timestep(time_s, ice_ivalsI, ice_ovalsI, do_run)


def make_ice_model(kind: IceModelKind, config, sheet: IceRegridder, contract_out: CouplingContract) -> IceModel:
    if kind in (IceModelKind.DISMAL, IceModelKind.WRITER):
        return DismalModel(sheet.elevI, contract_out)
    return EngineModel(kind, config.engine)


class IceWriter:
    """Records the values of one contract on the ice grid, one time step per record"""

    def __init__(self, contract: CouplingContract, gridI, fname: str):
        self.contract = contract
        self.gridI = gridI
        self.fname = fname
        self._init_output_file()

    def _init_output_file(self):
        with netCDF4.Dataset(self.fname, "w") as ds:
            ds.createDimension("time", None)
            for name, n in zip(self.gridI.indexing.names, self.gridI.shape):
                ds.createDimension(name, n)
            time = ds.createVariable("time", "f8", ("time",))
            time.units = "s"
            for f in self.contract.fields:
                var = ds.createVariable(f.name, "f8", ("time",) + tuple(self.gridI.indexing.names), zlib=True)
                var.units = f.units
                var.description = f.description

    def write(self, time_s: float, valsI: np.ndarray):
        """Append one record; ``valsI`` is (nfields, nI)"""
        with netCDF4.Dataset(self.fname, "a") as ds:
            it = len(ds.dimensions["time"])
            ds["time"][it] = time_s
            for k, name in enumerate(self.contract.names):
                ds[name][it] = self.gridI.unflatten(valsI[k])


def _field_major(contract: CouplingContract, values, n: int) -> torch.Tensor:
    """(nfields, n) tensor from an array or a mapping of name -> values

    Fields missing from a mapping take their contract default.
    """
    if isinstance(values, Mapping):
        rows = []
        for f in contract.fields:
            v = values.get(f.name)
            if v is None:
                rows.append(np.full(n, f.default_value))
            elif isinstance(v, SparseVector):
                rows.append(v.to_array(n=n))
            else:
                rows.append(np.asarray(v, dtype=np.float64))
        values = np.stack(rows) if rows else np.zeros((0, n))
    values = torch.as_tensor(values, dtype=torch.float64)
    if tuple(values.shape) != (contract.size_nounit(), n):
        raise ValueError(f"expected values of shape {(contract.size_nounit(), n)}, got {tuple(values.shape)}")
    return values


class IceCoupler:
    """Couples one ice sheet to the GCM

    The sheet itself is owned by a :py:class:`~icebin.matrix_maker.MatrixMaker`
    and is looked up there by name.

    Lifecycle::

        ic = IceCoupler("greenland", IceModelKind.PISM, PISMConfig(engine=...))
        ic.setup_contracts()     # -> CONTRACT_SET_UP
        ic.realize(matrix_maker) # -> READY
        ic.couple(time_s, gcm_ovalsE, out)  # -> COUPLING, repeatedly
    """

    def __init__(
        self,
        sheet_name: str,
        kind,
        config=None,
        gcm_kind=GCMKind.MODELE,
        gcm_params=None,
    ):
        self.sheet_name = sheet_name
        self.kind = IceModelKind(kind)
        self.config = _CONFIG_TYPES[self.kind]() if config is None else config
        if not isinstance(self.config, _CONFIG_TYPES[self.kind]):
            raise ValueError(f"{self.kind.value} ice model needs a {_CONFIG_TYPES[self.kind].__name__}")
        self.gcm_kind = GCMKind(gcm_kind)
        self.gcm_params = gcm_params

        self.state = IceCouplerState.UNINITIALIZED
        self.contract = None
        self.var_transformer = None
        self.constants = None
        self.writer = [None, None]

        self.model: Optional[IceModel] = None
        self.matrix_maker: Optional[MatrixMaker] = None
        self.IvE = None
        self.EvI = None
        self.AvI = None
        self._IvE_regridder = None

        self.time_start_s = 0.0
        self.last_time_s = 0.0

    def _require(self, *states: IceCouplerState, op: str):
        if self.state not in states:
            raise RuntimeError(f"IceCoupler {self.sheet_name}: {op}() not allowed in state {self.state.name}")

    @property
    def sheet(self) -> IceRegridder:
        return self.matrix_maker.sheet(self.sheet_name)

    def setup_contracts(self):
        self._require(IceCouplerState.UNINITIALIZED, op="setup_contracts")
        setup = setup_contracts(self.kind, self.gcm_kind, self.gcm_params)
        self.contract = setup.contract
        self.var_transformer = setup.var_transformer
        self.constants = setup.constants
        self.state = IceCouplerState.CONTRACT_SET_UP

    def realize(self, matrix_maker: MatrixMaker):
        """Attach to the sheet in ``matrix_maker`` and build the regridding matrices"""
        self._require(IceCouplerState.CONTRACT_SET_UP, op="realize")
        self.matrix_maker = matrix_maker
        sheet = self.sheet
        self.model = make_ice_model(self.kind, self.config, sheet, self.contract[OUTPUT])

        output_dir = self.config.output_dir
        if output_dir is not None:
            for io, label in ((INPUT, "in"), (OUTPUT, "out")):
                fname = os.path.join(output_dir, f"{self.kind.value}_{label}_{self.sheet_name}.nc")
                self.writer[io] = IceWriter(self.contract[io], sheet.gridI, fname)

        sheet.set_elevI(self.model.get_elevI())
        self.update_matrices()
        self.state = IceCouplerState.READY

    def set_start_time(self, time_start_s: float):
        self.time_start_s = time_start_s
        self.last_time_s = time_start_s

    def update_matrices(self):
        mm = self.matrix_maker
        self.IvE = mm.IvE(self.sheet_name)
        self.EvI = mm.EvI(self.sheet_name)
        self.AvI = mm.AvI(self.sheet_name)
        self._IvE_regridder = self.IvE.regridder()
        logger.info("IceCoupler %s: regridding matrices updated, IvE nnz=%d", self.sheet_name, self.IvE.M.nnz)

    def scalars(self, time_s: float) -> dict:
        dt = time_s - self.last_time_s
        return {"by_dt": 1.0 / dt if dt > 0 else 0.0}

    def couple(self, time_s: float, gcm_ovalsE, out, do_run: bool = True):
        """Run one coupling step

        Args:
            time_s: seconds since the time base
            gcm_ovalsE: GCM outputs on the elevation grid, (nfields, nE) or
                a mapping of field name to values
            out: :py:class:`~icebin.gcm_coupler.GCMCoupleOutput` accumulating
                the GCM-facing results of every sheet
            do_run: if False, only report the ice model's current state
        """
        self._require(IceCouplerState.READY, IceCouplerState.COUPLING, op="couple")
        vt_in, vt_out = self.var_transformer[INPUT], self.var_transformer[OUTPUT]
        sheet = self.sheet
        nI = sheet.ndata
        scalars = self.scalars(time_s)

        # E -> I, then GCM names -> ice model names
        gcm_ovals = _field_major(vt_in.names(vt_in.INPUTS), gcm_ovalsE, self.matrix_maker.nE)
        gcm_ovalsI = self._IvE_regridder(gcm_ovals)
        ice_ivalsI = vt_in.apply(gcm_ovalsI.T, scalars).T.numpy().copy()

        ice_ovalsI = np.zeros((self.contract[OUTPUT].size_nounit(), nI))
        ice_ovalsI[:] = np.asarray(self.contract[OUTPUT].default_values())[:, None]
        logger.debug("IceCoupler %s: run_timestep(time_s=%g, do_run=%s)", self.sheet_name, time_s, do_run)
        self.model.run_timestep(time_s, ice_ivalsI, ice_ovalsI, do_run)

        if self.writer[INPUT] is not None:
            self.writer[INPUT].write(time_s, ice_ivalsI)
        if self.writer[OUTPUT] is not None:
            self.writer[OUTPUT].write(time_s, ice_ovalsI)

        # ice model names -> GCM names, then I -> E and I -> A
        gcm_ivalsI = vt_out.apply(torch.from_numpy(ice_ovalsI).T, scalars).T.numpy()
        out.accumulate(self.sheet_name, self.EvI, self.AvI, gcm_ivalsI)

        elevI = np.asarray(self.model.get_elevI(), dtype=np.float64).ravel()
        if not np.array_equal(elevI, sheet.elevI, equal_nan=True):
            sheet.set_elevI(elevI)
            self.update_matrices()

        self.last_time_s = time_s
        self.state = IceCouplerState.COUPLING
