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
import torch

from icebin import base, latlon, projections, stereographic
from icebin._regrid import Identity, WeightedSparseRegridder
from icebin.contract import CoupledField, CouplingContract
from icebin.gcm_coupler import GCMCoupleOutput, GCMCoupler
from icebin.ice_coupler import IceCoupler, IceModelKind
from icebin.ice_regridder import IceRegridder
from icebin.matrix_maker import MatrixMaker
from icebin.sparse import SparseMatrix, SparseSet, SparseVector, WeightedSparse, compose
from icebin.var_transformer import VarTransformer

__all__ = [
    "base",
    "latlon",
    "projections",
    "stereographic",
    "get_regridder",
    "CoupledField",
    "CouplingContract",
    "GCMCoupleOutput",
    "GCMCoupler",
    "IceCoupler",
    "IceModelKind",
    "IceRegridder",
    "MatrixMaker",
    "SparseMatrix",
    "SparseSet",
    "SparseVector",
    "VarTransformer",
    "WeightedSparse",
    "WeightedSparseRegridder",
    "compose",
]


def get_regridder(matrix_maker: MatrixMaker, src: str, dest: str, sheet_name: str = "") -> torch.nn.Module:
    """Get a regridder from grid `src` to `dest`

    Grids are named ``"A"`` (GCM), ``"E"`` (elevation classes) and ``"I"``
    (the ice grid of ``sheet_name``).
    """
    if src == dest:
        return Identity()
    elif (dest, src) == ("I", "E"):
        return matrix_maker.IvE(sheet_name).regridder()
    elif (dest, src) == ("E", "I"):
        return matrix_maker.EvI(sheet_name).regridder()
    elif (dest, src) == ("A", "I"):
        return matrix_maker.AvI(sheet_name).regridder()
    elif (dest, src) == ("E", "A"):
        return matrix_maker.EvA().regridder()
    elif (dest, src) == ("A", "E"):
        return matrix_maker.AvE().regridder()

    raise ValueError(src, dest, "not supported.")
