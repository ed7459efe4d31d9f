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
"""ModelE <-> demonstration ice models (DISMAL, WRITER)

These models take ModelE's outputs unchanged and report only a surface
elevation back.
"""
from icebin import modele
from icebin.contract import ICE, CouplingContract
from icebin.contracts import INPUT, OUTPUT, ContractSetup, GCMKind, IceModelKind, make_transformer, register_contract


@register_contract(GCMKind.MODELE, IceModelKind.DISMAL, IceModelKind.WRITER)
def setup_modele_dismal(params=None) -> ContractSetup:
    gcm_outputs = modele.modele_gcm_outputs()

    ice_input = CouplingContract()
    for f in gcm_outputs.fields:
        ice_input.add_field(f.name, f.default_value, f.units, ICE, f.description)
    ice_output = CouplingContract()
    ice_output.add_field("usurf", 0.0, "m", ICE, "ice upper surface elevation")

    vt_in = make_transformer(gcm_outputs, ice_input, modele.modele_ice_input_scalars())
    ok = True
    for name in gcm_outputs.names:
        ok = vt_in.set(name, name, "unit", 1.0) and ok

    vt_out = make_transformer(ice_output, modele.modele_gcm_inputs(), modele.modele_ice_output_scalars())
    ok = vt_out.set("elev2", "usurf", "unit", 1.0) and ok
    ok = vt_out.set("elev1", "usurf", "unit", 1.0) and ok
    if not ok:
        raise ValueError("setup_modele_dismal(): unresolved names in the contract")

    contract = [None, None]
    contract[INPUT] = ice_input
    contract[OUTPUT] = ice_output
    var_transformer = [None, None]
    var_transformer[INPUT] = vt_in
    var_transformer[OUTPUT] = vt_out
    return ContractSetup(tuple(contract), tuple(var_transformer), modele.modele_constants())
