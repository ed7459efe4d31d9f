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
import pytest

from icebin import contract, modele
from icebin.contracts import INPUT, OUTPUT, GCMKind, IceModelKind, setup_contracts
from icebin.contracts.modele_pism import ENTHALPY_FLUX, HEAT_FLUX, MASS_FLUX, T, EnthalpyConverter, pism_constants

ENTH_MODELE_TO_PISM = 2060.0 * (273.15 - 223.15) + 3.34e5


def test_enthalpy_converter():
    ec = EnthalpyConverter(pism_constants(modele.modele_constants()))
    E_s, E_l = ec.enthalpy_interval(0.0)
    assert E_s == pytest.approx(2060.0 * 50.0)
    assert E_l == pytest.approx(ENTH_MODELE_TO_PISM)
    assert ec.enthalpy(263.15, 0.0, 0.0) == pytest.approx(2060.0 * 40.0)
    assert ec.enthalpy(273.15, 1.0, 0.0) == pytest.approx(E_l)
    # the melting point drops with pressure
    assert ec.melting_temperature(1e7) < 273.15
    with pytest.raises(ValueError):
        ec.enthalpy(280.0, 0.0, 0.0)


def test_pism_constants():
    constants = pism_constants(modele.modele_constants())
    assert constants.get_as("beta_CC") == pytest.approx(9.8e-8)
    assert constants.get_as("ice_density") == pytest.approx(916.6)
    assert constants.get_as("surface_pressure") == 0.0


def test_modele_pism_dirichlet():
    setup = setup_contracts(IceModelKind.PISM, GCMKind.MODELE)
    ice_input = setup.contract[INPUT]
    assert ice_input.names == [MASS_FLUX, ENTHALPY_FLUX, T]
    assert all(f.flags & contract.GRID_BITS == contract.ICE for f in ice_input.fields)

    vt_in = setup.var_transformer[INPUT]
    out = vt_in.apply({"lismb": 2.0, "liseb": 5.0, "litg2": -10.0}, {"by_dt": 1.0})
    values = dict(zip(ice_input.names, out.tolist()))
    assert values[MASS_FLUX] == pytest.approx(2.0)
    assert values[ENTHALPY_FLUX] == pytest.approx(5.0 + 2.0 * ENTH_MODELE_TO_PISM)
    assert values[T] == pytest.approx(263.15)


def test_modele_pism_outputs():
    setup = setup_contracts("pism", "modele")
    ice_output = setup.contract[OUTPUT]
    vt_out = setup.var_transformer[OUTPUT]

    values = dict.fromkeys(ice_output.names, 0.0)
    values.update(
        {
            "usurf": 1234.0,
            "ice_surface_enth": ENTH_MODELE_TO_PISM + 10.0,
            "calving.mass": 3.0,
            "calving.enth": 7.0,
        }
    )
    out = dict(zip(vt_out.names(vt_out.OUTPUTS).names, vt_out.apply(values).tolist()))

    assert out["elev1"] == pytest.approx(1234.0)
    assert out["elev2"] == pytest.approx(1234.0)
    assert out["ice_surface_enth"] == pytest.approx(10.0)
    assert out["calving.mass"] == pytest.approx(3.0)
    assert out["calving.enth"] == pytest.approx(7.0 - 3.0 * ENTH_MODELE_TO_PISM)
    assert out["basal_runoff.enth"] == pytest.approx(0.0)


def test_modele_pism_neumann():
    setup = setup_contracts(IceModelKind.PISM, GCMKind.MODELE, modele.ModelEParams("neumann_bc"))
    ice_input = setup.contract[INPUT]
    assert HEAT_FLUX in ice_input
    assert T not in ice_input

    out = setup.var_transformer[INPUT].apply({"lismb": 1.0, "liseb": 0.0, "litg2": -5.0})
    assert out[ice_input.index(HEAT_FLUX) - 1].item() == 0.0


@pytest.mark.parametrize("kind", [IceModelKind.DISMAL, IceModelKind.WRITER])
def test_modele_dismal(kind):
    setup = setup_contracts(kind, GCMKind.MODELE)
    gcm_outputs = modele.modele_gcm_outputs()
    assert setup.contract[INPUT].names == gcm_outputs.names
    assert setup.contract[OUTPUT].names == ["usurf"]

    out = setup.var_transformer[INPUT].apply([1.0, 2.0, 3.0])
    assert out.tolist() == pytest.approx([1.0, 2.0, 3.0])


def test_each_setup_is_fresh():
    a = setup_contracts(IceModelKind.DISMAL, GCMKind.MODELE)
    b = setup_contracts(IceModelKind.DISMAL, GCMKind.MODELE)
    assert a.var_transformer[INPUT] is not b.var_transformer[INPUT]
    assert a.contract[INPUT] == b.contract[INPUT]


def test_unsupported_pairing():
    with pytest.raises(ValueError):
        setup_contracts(IceModelKind.ISSM, GCMKind.MODELE)
    with pytest.raises(ValueError):
        setup_contracts("cism", "modele")


def test_modele_gcm_contracts():
    gcm_inputs = modele.modele_gcm_inputs()
    assert gcm_inputs.field("elev2").flags == contract.ICE | contract.INITIAL
    assert gcm_inputs.field("elev1").flags & contract.GRID_BITS == contract.ELEVATION
    assert gcm_inputs.field("calving.mass").flags == contract.ATMOSPHERE
    assert modele.modele_gcm_outputs().names == ["lismb", "liseb", "litg2"]
