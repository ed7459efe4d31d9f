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
import numpy as np
import pytest
import torch

from icebin.contract import CouplingContract, scalar_contract
from icebin.var_transformer import VarTransformer


def _transformer(inputs, outputs, scalars=()):
    vt = VarTransformer()
    vt.set_names(VarTransformer.INPUTS, _contract(inputs))
    vt.set_names(VarTransformer.OUTPUTS, _contract(outputs))
    vt.set_names(VarTransformer.SCALARS, scalar_contract(scalars))
    vt.allocate()
    return vt


def _contract(names):
    c = CouplingContract()
    for name in names:
        c.add_field(name)
    return c


def test_single_coefficient():
    vt = _transformer(["lismb", "liseb"], ["surface_downward_mass_flux"])
    assert vt.set("surface_downward_mass_flux", "lismb", "unit", 1.0)

    out = vt.apply({"lismb": 2.0, "liseb": 5.0})
    assert out.tolist() == pytest.approx([2.0])


def test_scale():
    inputs = CouplingContract()
    inputs.add_field("A", 0.0, "m")
    outputs = CouplingContract()
    outputs.add_field("B", 0.0, "kg")

    vt = VarTransformer()
    vt.set_names(VarTransformer.INPUTS, inputs)
    vt.set_names(VarTransformer.OUTPUTS, outputs)
    vt.set_names(VarTransformer.SCALARS, scalar_contract([]))
    vt.allocate()
    assert vt.set("B", "A", "unit", 3.0)

    assert vt.apply([4.0]).item() == pytest.approx(12.0)


def test_bias_and_scalars():
    vt = _transformer(["x"], ["y"], ["by_dt"])
    assert vt.set("y", "x", "by_dt", 2.0)
    assert vt.set("y", "unit", "unit", 10.0)

    assert vt.apply({"x": 3.0}, {"by_dt": 0.5}).item() == pytest.approx(13.0)
    # missing scalars are zero
    assert vt.apply({"x": 3.0}).item() == pytest.approx(10.0)


def test_apply_batched():
    vt = _transformer(["a", "b"], ["sum", "diff"])
    vt.set("sum", "a", "unit", 1.0)
    vt.set("sum", "b", "unit", 1.0)
    vt.set("diff", "a", "unit", 1.0)
    vt.set("diff", "b", "unit", -1.0)

    x = np.array([[1.0, 2.0], [5.0, 3.0], [0.0, 0.0]])
    out = vt.apply(x)
    assert out.shape == (3, 2)
    assert torch.allclose(out, torch.tensor([[3.0, -1.0], [8.0, 2.0], [0.0, 0.0]], dtype=torch.float64))

    # mapping inputs may hold arrays, one per field
    out = vt.apply({"a": x[:, 0], "b": x[:, 1]})
    assert out.shape == (3, 2)


def test_apply_scalars():
    vt = _transformer(["x"], ["y"], ["by_dt"])
    vt.set("y", "x", "by_dt", 4.0)
    vt.set("y", "unit", "unit", 1.0)
    matrix, bias = vt.apply_scalars([0.25])
    assert matrix.tolist() == [[1.0]]
    assert bias.tolist() == [1.0]


def test_set_reports_unresolved_names():
    vt = _transformer(["x"], ["y"])
    assert not vt.set("y", "nope", "unit", 1.0)
    assert not vt.set("nope", "x", "unit", 1.0)
    assert not vt.set("y", "x", "nope", 1.0)
    assert torch.count_nonzero(vt.coeff) == 0


def test_usage_errors():
    vt = VarTransformer()
    vt.set_names(VarTransformer.INPUTS, _contract(["x"]))
    with pytest.raises(RuntimeError):
        vt.allocate()
    with pytest.raises(RuntimeError):
        vt.set("y", "x", "unit", 1.0)

    vt.set_names(VarTransformer.OUTPUTS, _contract(["y"]))
    vt.set_names(VarTransformer.SCALARS, scalar_contract([]))
    vt.allocate()
    assert vt.allocated
    with pytest.raises(RuntimeError):
        vt.set_names(VarTransformer.INPUTS, _contract(["z"]))


def test_wrong_number_of_inputs():
    vt = _transformer(["x"], ["y"])
    with pytest.raises(ValueError):
        vt.apply([1.0, 2.0])
    with pytest.raises(KeyError):
        vt.apply({"z": 1.0})


def test_dimensions_include_unit():
    vt = _transformer(["a", "b"], ["y"], ["by_dt"])
    assert vt.dimension(VarTransformer.INPUTS) == 3
    assert vt.dimension(VarTransformer.OUTPUTS) == 2
    assert vt.coeff.shape == (2, 3, 2)
    assert "y = 0" in str(vt)
