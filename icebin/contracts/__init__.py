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
"""Contract setup rules, one per (GCM, ice model) pairing

:py:func:`setup_contracts` is a pure function of the pairing and its
parameters: it returns fresh contracts and transformers and touches no
coupler state.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Tuple

from icebin.constants import ConstantSet
from icebin.contract import CouplingContract
from icebin.var_transformer import VarTransformer

logger = logging.getLogger(__name__)

INPUT = 0
OUTPUT = 1


class IceModelKind(enum.Enum):
    DISMAL = "dismal"
    PISM = "pism"
    ISSM = "issm"
    WRITER = "writer"


class GCMKind(enum.Enum):
    MODELE = "modele"


@dataclass
class ContractSetup:
    """Ice-model-facing contracts and the transformers to and from the GCM

    ``contract[INPUT]`` is what the ice model receives, ``contract[OUTPUT]``
    what it returns.  ``var_transformer[INPUT]`` maps GCM outputs onto
    ``contract[INPUT]``; ``var_transformer[OUTPUT]`` maps ``contract[OUTPUT]``
    onto the GCM inputs.
    """

    contract: Tuple[CouplingContract, CouplingContract]
    var_transformer: Tuple[VarTransformer, VarTransformer]
    constants: ConstantSet = field(default_factory=ConstantSet)


_RULES: Dict[Tuple[GCMKind, IceModelKind], Callable[..., ContractSetup]] = {}


def register_contract(gcm_kind: GCMKind, *ice_kinds: IceModelKind):
    def decorator(func):
        for ice_kind in ice_kinds:
            _RULES[(gcm_kind, ice_kind)] = func
        return func

    return decorator


def setup_contracts(ice_kind, gcm_kind, params=None) -> ContractSetup:
    """Build the contracts for one ice sheet

    Args:
        ice_kind: :py:class:`IceModelKind` or its string value
        gcm_kind: :py:class:`GCMKind` or its string value
        params: GCM-specific per-ice-sheet parameters,
            e.g. :py:class:`~icebin.modele.ModelEParams`

    Raises:
        ValueError: if no rules exist for the pairing
    """
    ice_kind = IceModelKind(ice_kind)
    gcm_kind = GCMKind(gcm_kind)
    try:
        rule = _RULES[(gcm_kind, ice_kind)]
    except KeyError:
        raise ValueError(f"No contract rules for GCM {gcm_kind.value} with ice model {ice_kind.value}") from None
    logger.info("Setting up contracts for %s + %s", gcm_kind.value, ice_kind.value)
    return rule(params)


def make_transformer(
    inputs: CouplingContract, outputs: CouplingContract, scalars: CouplingContract
) -> VarTransformer:
    vt = VarTransformer()
    vt.set_names(VarTransformer.INPUTS, inputs)
    vt.set_names(VarTransformer.OUTPUTS, outputs)
    vt.set_names(VarTransformer.SCALARS, scalars)
    vt.allocate()
    return vt


# Registers the rules
from icebin.contracts import modele_dismal, modele_pism  # noqa: E402,F401
