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
import math
from typing import Dict

import einops
import torch

from icebin.sparse import SparseMatrix, SparseVector, WeightedSparse


class WeightedSparseRegridder(torch.nn.Module):
    """Apply a :py:class:`~icebin.sparse.WeightedSparse` to tensors

    Forward:
        (*, ncols) -> (*, nrows)

    Rows whose weight is zero are filled with ``fill_value``.
    """

    def __init__(self, ws: WeightedSparse, fill_value=math.nan):
        super().__init__()
        self.fill_value = fill_value
        M = ws.M.compressed()
        nrows, ncols = ws.shape
        self.register_buffer("index", torch.from_numpy(M.indices.T.copy()))
        self.register_buffer("value", torch.from_numpy(M.values))
        self.register_buffer("weight", torch.from_numpy(ws.weight.to_array()))
        self.register_buffer("shape", torch.tensor([nrows, ncols]))

    def _matrix(self, dtype):
        nrows, ncols = self.shape.tolist()
        return torch.sparse_coo_tensor(self.index, self.value.to(dtype), (nrows, ncols))

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        *shape, x = z.shape
        zrs = einops.rearrange(z, "... x -> x (...)")
        out = torch.sparse.mm(self._matrix(z.dtype), zrs)

        weight = self.weight.to(z.dtype).unsqueeze(-1)
        mask = weight == 0
        out = out / torch.where(mask, torch.ones_like(weight), weight)
        out = out.masked_fill(mask, self.fill_value)
        return out.T.reshape(list(shape) + [-1])

    def to_weighted_sparse(self) -> WeightedSparse:
        nrows, ncols = self.shape.tolist()
        M = SparseMatrix((nrows, ncols))
        index = self.index.cpu().numpy()
        M.add_many(index[0], index[1], self.value.cpu().numpy())
        return WeightedSparse(M, SparseVector.from_array(self.weight.cpu().numpy()))

    @staticmethod
    def from_state_dict(d: Dict[str, torch.Tensor]) -> "WeightedSparseRegridder":
        nrows, ncols = d["shape"].tolist()
        M = SparseMatrix((nrows, ncols))
        index = d["index"].numpy()
        M.add_many(index[0], index[1], d["value"].numpy())
        regridder = WeightedSparseRegridder(WeightedSparse(M, SparseVector.from_array(d["weight"].numpy())))
        regridder.load_state_dict(d)
        return regridder


class Identity(torch.nn.Module):
    def forward(self, x):
        return x
