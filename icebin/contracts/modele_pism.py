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
"""ModelE <-> PISM contract"""
import logging

from icebin import modele
from icebin.constants import C2K, ConstantSet
from icebin.contract import ICE, CouplingContract
from icebin.contracts import INPUT, OUTPUT, ContractSetup, GCMKind, IceModelKind, make_transformer, register_contract

logger = logging.getLogger(__name__)

MASS_FLUX = "surface_downward_mass_flux"
ENTHALPY_FLUX = "surface_downward_enthalpy_flux"
T = "surface_temperature"
HEAT_FLUX = "surface_downward_conductive_heat_flux"

# (PISM name, ModelE name, multiply_by)
TRANSFERRED_CONSTANTS = [
    ("standard_gravity", "constant::grav", 1.0),
    ("beta_CC", "seaice::dtdp", -1.0),
    ("water_melting_point_temperature", "constant::tf", 1.0),
    ("water_latent_heat_fusion", "constant::lhm", 1.0),
    ("water_specific_heat_capacity", "constant::shw", 1.0),
    ("ice_density", "constant::rhoi", 1.0),
    ("ice_thermal_conductivity", "seaice::alami0", 1.0),
    ("ice_specific_heat_capacity", "constant::shi", 1.0),
    ("fresh_water_density", "constant::rhow", 1.0),
    ("sea_water_density", "constant::rhows", 1.0),
    ("ideal_gas_constant", "constant::gasc", 1.0),
]


def pism_constants(gcm_constants: ConstantSet) -> ConstantSet:
    constants = ConstantSet()
    constants.set(
        "enthalpy_converter_reference_temperature", 223.15, "K", "reference temperature for the enthalpy"
    )
    for pism_name, modele_name, multiply_by in TRANSFERRED_CONSTANTS:
        constants.copy(pism_name, gcm_constants, modele_name, multiply_by)

    # Pressure is relative to 1 atm, so 0 puts the ice sheet at 1 atm like ModelE
    constants.set("surface_pressure", 0.0, "Pa")
    return constants


class EnthalpyConverter:
    """Ice enthalpy relative to PISM's reference temperature

    Cold ice has enthalpy ``c_i * (T - T_0)``; at the pressure melting point
    ``T_m(p) = T_melting - beta * p`` ice may hold up to ``L`` more as liquid.
    """

    def __init__(self, constants: ConstantSet):
        self.beta = constants.get_as("beta_CC")
        self.c_i = constants.get_as("ice_specific_heat_capacity")
        self.L = constants.get_as("water_latent_heat_fusion")
        self.T_melting = constants.get_as("water_melting_point_temperature")
        self.T_0 = constants.get_as("enthalpy_converter_reference_temperature")

    def melting_temperature(self, pressure: float) -> float:
        return self.T_melting - self.beta * pressure

    def enthalpy_cts(self, pressure: float) -> float:
        """Enthalpy of ice at the melting point with no liquid"""
        return self.c_i * (self.melting_temperature(pressure) - self.T_0)

    def enthalpy_interval(self, pressure: float):
        """(E_s, E_l): enthalpy of solid and of fully liquid water at the melting point"""
        E_s = self.enthalpy_cts(pressure)
        return E_s, E_s + self.L

    def enthalpy(self, T: float, omega: float, pressure: float) -> float:
        T_m = self.melting_temperature(pressure)
        if T > T_m:
            raise ValueError(f"T = {T} exceeds the melting temperature {T_m}")
        if T < T_m:
            return self.c_i * (T - self.T_0)
        return self.enthalpy_cts(pressure) + omega * self.L


def ice_input_contract(coupling_type: modele.ModelECouplingType) -> CouplingContract:
    contract = CouplingContract()
    contract.add_field(
        MASS_FLUX, 0.0, "kg m-2 s-1", ICE, "'Surface Mass Balance' over the coupling interval. Down is positive"
    )
    contract.add_field(
        ENTHALPY_FLUX, 0.0, "W m-2", ICE, f"Advective enthalpy associated with {MASS_FLUX}. Down is positive"
    )
    if coupling_type == modele.ModelECouplingType.DIRICHLET_BC:
        contract.add_field(T, 0.0, "K", ICE, "Temperature at the interface between ice sheet and atmosphere")
    else:
        contract.add_field(
            HEAT_FLUX, 0.0, "W m-2", ICE, "Conductive heat between ice sheet and the snow/firn above. Down is positive"
        )
    return contract


def ice_output_contract() -> CouplingContract:
    contract = CouplingContract()
    contract.add_field("usurf", 0.0, "m", ICE, "ice upper surface elevation")
    contract.add_field("ice_surface_enth", 0.0, "J kg-1", ICE)
    contract.add_field("ice_surface_enth_depth", 0.0, "m", ICE)
    contract.add_field("basal_runoff.mass", 0.0, "kg m-2 s-1", ICE, "melt_grounded + melt_floating")
    contract.add_field("basal_runoff.enth", 0.0, "W m-2", ICE)
    contract.add_field("calving.mass", 0.0, "kg m-2 s-1", ICE)
    contract.add_field("calving.enth", 0.0, "W m-2", ICE)
    contract.add_field("strain_heating", 0.0, "W m-2", ICE)
    contract.add_field("epsilon.mass", 0.0, "kg m-2 s-1", ICE)
    contract.add_field("epsilon.enth", 0.0, "W m-2", ICE)
    return contract


@register_contract(GCMKind.MODELE, IceModelKind.PISM)
def setup_modele_pism(params=None) -> ContractSetup:
    params = modele.ModelEParams() if params is None else params
    constants = pism_constants(modele.modele_constants())

    # ModelE's enthalpy is 0 for liquid water at 0C and 1 atm, the top of
    # PISM's enthalpy interval at p = 0.
    _, E_l = EnthalpyConverter(constants).enthalpy_interval(0.0)
    enth_modele_to_pism = E_l
    logger.info("enth_modele_to_pism = %g J kg-1", enth_modele_to_pism)

    ice_input = ice_input_contract(params.coupling_type)
    ice_output = ice_output_contract()

    # ---------- GCM -> ice
    vt_in = make_transformer(modele.modele_gcm_outputs(), ice_input, modele.modele_ice_input_scalars())
    ok = True
    ok = vt_in.set(MASS_FLUX, "lismb", "unit", 1.0) and ok
    ok = vt_in.set(ENTHALPY_FLUX, "liseb", "unit", 1.0) and ok
    ok = vt_in.set(ENTHALPY_FLUX, "lismb", "unit", enth_modele_to_pism) and ok
    if params.coupling_type == modele.ModelECouplingType.DIRICHLET_BC:
        ok = vt_in.set(T, "litg2", "unit", 1.0) and ok
        ok = vt_in.set(T, "unit", "unit", C2K) and ok
    else:
        logger.info("NEUMANN_BC: %s is not derived from any ModelE output", HEAT_FLUX)

    # ---------- ice -> GCM
    vt_out = make_transformer(ice_output, modele.modele_gcm_inputs(), modele.modele_ice_output_scalars())
    ok = vt_out.set("elev2", "usurf", "unit", 1.0) and ok
    ok = vt_out.set("elev1", "usurf", "unit", 1.0) and ok

    # Enth_modele = Enth_pism - enth_modele_to_pism
    ok = vt_out.set("ice_surface_enth", "ice_surface_enth", "unit", 1.0) and ok
    ok = vt_out.set("ice_surface_enth", "unit", "unit", -enth_modele_to_pism) and ok
    ok = vt_out.set("ice_surface_enth_depth", "ice_surface_enth_depth", "unit", 1.0) and ok
    ok = vt_out.set("strain_heating", "strain_heating", "unit", 1.0) and ok

    # Enthalpy fluxes shift by the reference offset times the mass flux
    for flux in ("basal_runoff", "calving", "epsilon"):
        ok = vt_out.set(f"{flux}.mass", f"{flux}.mass", "unit", 1.0) and ok
        ok = vt_out.set(f"{flux}.enth", f"{flux}.enth", "unit", 1.0) and ok
        ok = vt_out.set(f"{flux}.enth", f"{flux}.mass", "unit", -enth_modele_to_pism) and ok

    if not ok:
        raise ValueError("setup_modele_pism(): unresolved names in the ModelE-PISM contract")

    contract = [None, None]
    contract[INPUT] = ice_input
    contract[OUTPUT] = ice_output
    var_transformer = [None, None]
    var_transformer[INPUT] = vt_in
    var_transformer[OUTPUT] = vt_out
    return ContractSetup(tuple(contract), tuple(var_transformer), constants)
