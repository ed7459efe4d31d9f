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
import enum
import logging
from typing import Mapping, Optional, Tuple, Union

import einops
import numpy as np
import torch

from icebin.contract import CouplingContract

logger = logging.getLogger(__name__)


class Axis(enum.IntEnum):
    INPUTS = 0
    OUTPUTS = 1
    SCALARS = 2


class VarTransformer:
    """Affine map from one contract's fields to another's

    Each output is a linear combination of inputs, with coefficients that are
    themselves linear in a set of scalars::

        out[o] = sum_i sum_s coeff[o, i, s] * in[i] * scalar[s]

    The ``"unit"`` slot of the inputs and scalars is always 1, so
    ``coeff[o, unit, unit]`` is a constant bias and ``coeff[o, i, unit]`` a
    constant scale.

    Usage: bind all three axes with :py:meth:`set_names`, call
    :py:meth:`allocate`, then :py:meth:`set` the coefficients.
    """

    INPUTS = Axis.INPUTS
    OUTPUTS = Axis.OUTPUTS
    SCALARS = Axis.SCALARS

    def __init__(self):
        self._contracts = [None, None, None]
        self.coeff: Optional[torch.Tensor] = None

    def set_names(self, axis: Axis, contract: CouplingContract):
        if self.coeff is not None:
            raise RuntimeError("VarTransformer.set_names() called after allocate()")
        self._contracts[Axis(axis)] = contract

    def names(self, axis: Axis) -> CouplingContract:
        return self._contracts[Axis(axis)]

    def dimension(self, axis: Axis) -> int:
        contract = self._contracts[Axis(axis)]
        if contract is None:
            raise RuntimeError(f"VarTransformer axis {Axis(axis).name} is not bound")
        return contract.size_withunit()

    def allocate(self):
        if any(c is None for c in self._contracts):
            unbound = [Axis(k).name for k, c in enumerate(self._contracts) if c is None]
            raise RuntimeError(f"VarTransformer.allocate() with unbound axes {unbound}")
        shape = tuple(self.dimension(axis) for axis in Axis)
        self.coeff = torch.zeros((shape[Axis.OUTPUTS], shape[Axis.INPUTS], shape[Axis.SCALARS]), dtype=torch.float64)

    @property
    def allocated(self) -> bool:
        return self.coeff is not None

    def set(self, output: str, input: str, scalar: str, value: float) -> bool:
        """Set one coefficient; returns False if any name does not resolve"""
        if self.coeff is None:
            raise RuntimeError("VarTransformer.set() called before allocate()")

        o = self.names(Axis.OUTPUTS).index(output, throw_exception=False)
        i = self.names(Axis.INPUTS).index(input, throw_exception=False)
        s = self.names(Axis.SCALARS).index(scalar, throw_exception=False)
        ok = True
        for name, ix, axis in ((output, o, Axis.OUTPUTS), (input, i, Axis.INPUTS), (scalar, s, Axis.SCALARS)):
            if ix < 0:
                logger.error("VarTransformer.set(): %s %r not found", axis.name, name)
                ok = False
        if not ok:
            return False

        self.coeff[o, i, s] = value
        return True

    def _vector(self, axis: Axis, values) -> torch.Tensor:
        """Field values in contract order, with the leading unit slot prepended"""
        contract = self.names(axis)
        if isinstance(values, Mapping):
            if axis == Axis.SCALARS:
                columns = [np.asarray(values.get(name, 0.0), dtype=np.float64) for name in contract.names]
            else:
                columns = [np.asarray(values[name], dtype=np.float64) for name in contract.names]
            values = np.stack(columns, axis=-1) if columns else np.zeros((0,))
        values = torch.as_tensor(values, dtype=torch.float64)
        if values.shape[-1] != contract.size_nounit():
            raise ValueError(
                f"expected {contract.size_nounit()} values along the last dimension for {axis.name}, "
                f"got {values.shape[-1]}"
            )
        unit = torch.ones(values.shape[:-1] + (1,), dtype=torch.float64)
        return torch.cat([unit, values], dim=-1)

    def apply_scalars(self, scalars=None) -> Tuple[torch.Tensor, torch.Tensor]:
        """Fix the scalars, leaving an ordinary affine map ``out = matrix @ in + bias``

        Returns:
            matrix: (noutputs, ninputs), without the unit slots
            bias: (noutputs,)
        """
        if self.coeff is None:
            raise RuntimeError("VarTransformer.apply_scalars() called before allocate()")
        if scalars is None:
            scalars = torch.zeros(self.dimension(Axis.SCALARS) - 1, dtype=torch.float64)
        s = self._vector(Axis.SCALARS, scalars)
        m = einops.einsum(self.coeff, s, "o i s, s -> o i")
        return m[1:, 1:], m[1:, 0]

    def apply(self, inputs: Union[Mapping, np.ndarray, torch.Tensor], scalars=None) -> torch.Tensor:
        """Transform ``inputs`` of shape (..., ninputs) to (..., noutputs)

        ``inputs`` and ``scalars`` exclude the unit slot; either may also be a
        mapping from field name to value.  Missing scalars are zero.
        """
        matrix, bias = self.apply_scalars(scalars)
        x = self._vector(Axis.INPUTS, inputs)[..., 1:]
        return einops.einsum(matrix, x, "o i, ... i -> ... o") + bias

    def __eq__(self, other):
        if not isinstance(other, VarTransformer) or self._contracts != other._contracts:
            return False
        if self.coeff is None or other.coeff is None:
            return self.coeff is None and other.coeff is None
        return torch.equal(self.coeff, other.coeff)

    def __str__(self):
        if self.coeff is None:
            return "VarTransformer(<unallocated>)"
        outputs, inputs, scalars = (self.names(a) for a in (Axis.OUTPUTS, Axis.INPUTS, Axis.SCALARS))
        lines = []
        for o in range(1, outputs.size_withunit()):
            terms = []
            for i, s in torch.nonzero(self.coeff[o]).tolist():
                terms.append(f"{self.coeff[o, i, s].item():g} {inputs.name(i)} {scalars.name(s)}")
            lines.append(f"    {outputs.name(o)} = " + (" + ".join(terms) if terms else "0"))
        return "VarTransformer(\n" + "\n".join(lines) + "\n)"
