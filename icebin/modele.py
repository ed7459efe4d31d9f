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
"""The ModelE side of the coupling: fields, scalars and constants ModelE exchanges"""
import enum
from dataclasses import dataclass

from icebin.constants import ConstantSet
from icebin.contract import ATMOSPHERE, ELEVATION, ICE, INITIAL, CouplingContract, scalar_contract


class ModelECouplingType(enum.Enum):
    """Boundary condition ModelE imposes on the ice sheet's upper surface"""

    DIRICHLET_BC = 0  # surface temperature
    NEUMANN_BC = 1  # conductive heat flux


@dataclass
class ModelEParams:
    """Per-ice-sheet parameters ModelE provides to inform the coupling"""

    coupling_type: ModelECouplingType = ModelECouplingType.DIRICHLET_BC

    def __post_init__(self):
        if isinstance(self.coupling_type, str):
            self.coupling_type = ModelECouplingType[self.coupling_type.upper()]


def modele_constants() -> ConstantSet:
    constants = ConstantSet()
    constants.set("constant::grav", 9.80665, "m s-2", "gravitational acceleration")
    constants.set("constant::tf", 273.15, "K", "freezing point of water at 1 atm")
    constants.set("constant::lhm", 3.34e5, "J kg-1", "latent heat of melt at 0 C")
    constants.set("constant::shw", 4185.0, "J kg-1 K-1", "heat capacity of water")
    constants.set("constant::shi", 2060.0, "J kg-1 K-1", "heat capacity of pure ice")
    constants.set("constant::rhoi", 916.6, "kg m-3", "density of pure ice")
    constants.set("constant::rhow", 1000.0, "kg m-3", "density of pure water")
    constants.set("constant::rhows", 1030.0, "kg m-3", "density of average sea water")
    constants.set("constant::gasc", 8.314510, "J mol-1 K-1", "ideal gas constant")
    constants.set("seaice::dtdp", -9.8e-8, "K Pa-1", "melting point slope with pressure")
    constants.set("seaice::alami0", 2.11, "W m-1 K-1", "thermal conductivity of pure ice")
    return constants


def modele_gcm_outputs() -> CouplingContract:
    """Fields ModelE sends, on the elevation grid"""
    contract = CouplingContract()
    contract.add_field(
        "lismb", 0.0, "kg m-2 s-1", ELEVATION, "Surface mass balance of land ice. Convention: down is positive"
    )
    contract.add_field("liseb", 0.0, "W m-2", ELEVATION, "Enthalpy flux associated with lismb")
    contract.add_field("litg2", 0.0, "degC", ELEVATION, "Temperature of bottom layer of the snow/firn model")
    return contract


def modele_gcm_inputs() -> CouplingContract:
    """Fields ModelE receives; the flags say which grid each is regridded to"""
    contract = CouplingContract()
    contract.add_field("elev2", 0.0, "m", ICE | INITIAL, "ice upper surface elevation, on the ice grid")
    contract.add_field("elev1", 0.0, "m", ELEVATION | INITIAL, "ice upper surface elevation")
    contract.add_field("ice_surface_enth", 0.0, "J kg-1", ELEVATION, "specific enthalpy at the ice surface")
    contract.add_field("ice_surface_enth_depth", 0.0, "m", ELEVATION, "depth at which ice_surface_enth applies")
    contract.add_field("basal_runoff.mass", 0.0, "kg m-2 s-1", ATMOSPHERE, "melt_grounded + melt_floating")
    contract.add_field("basal_runoff.enth", 0.0, "W m-2", ATMOSPHERE, "enthalpy of basal_runoff.mass")
    contract.add_field("calving.mass", 0.0, "kg m-2 s-1", ATMOSPHERE, "mass lost to calving")
    contract.add_field("calving.enth", 0.0, "W m-2", ATMOSPHERE, "enthalpy of calving.mass")
    contract.add_field("strain_heating", 0.0, "W m-2", ATMOSPHERE, "column-integrated strain heating")
    contract.add_field("epsilon.mass", 0.0, "kg m-2 s-1", ATMOSPHERE, "mass correction to balance the books")
    contract.add_field("epsilon.enth", 0.0, "W m-2", ATMOSPHERE, "enthalpy correction to balance the books")
    return contract


def modele_ice_input_scalars() -> CouplingContract:
    return scalar_contract(["by_dt"], "s-1")


def modele_ice_output_scalars() -> CouplingContract:
    return scalar_contract(["by_dt"], "s-1")
