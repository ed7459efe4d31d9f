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
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Indexing:
    """Row/column-major mapping between index tuples and flat indices

    ``order`` lists the dimensions from slowest to fastest varying, so the
    default ``(0, 1, ...)`` is C order.
    """

    names: Tuple[str, ...]
    extents: Tuple[int, ...]
    order: Optional[Tuple[int, ...]] = None

    def __post_init__(self):
        object.__setattr__(self, "names", tuple(self.names))
        object.__setattr__(self, "extents", tuple(int(n) for n in self.extents))
        if len(self.names) != len(self.extents):
            raise ValueError(f"{len(self.names)} names given for {len(self.extents)} extents")
        order = tuple(range(len(self.extents))) if self.order is None else tuple(int(k) for k in self.order)
        if sorted(order) != list(range(len(self.extents))):
            raise ValueError(f"order {order} is not a permutation of the dimensions")
        object.__setattr__(self, "order", order)

    @property
    def rank(self) -> int:
        return len(self.extents)

    @property
    def size(self) -> int:
        return int(np.prod(self.extents))

    def __len__(self):
        return self.rank

    @property
    def strides(self) -> Tuple[int, ...]:
        strides = [0] * self.rank
        stride = 1
        for k in reversed(self.order):
            strides[k] = stride
            stride *= self.extents[k]
        return tuple(strides)

    def tuple_to_index(self, tup: Sequence) -> np.ndarray:
        """Flat index of ``tup``; each entry may be an int or an array"""
        out = 0
        for ix, stride in zip(tup, self.strides):
            out = out + np.asarray(ix, dtype=np.int64) * stride
        return out

    def index_to_tuple(self, index) -> Tuple[np.ndarray, ...]:
        index = np.asarray(index, dtype=np.int64)
        out = [None] * self.rank
        for k in self.order:
            stride = self.strides[k]
            out[k] = index // stride
            index = index - out[k] * stride
        return tuple(out)

    def to_attrs(self) -> dict:
        return {"names": ",".join(self.names), "extents": list(self.extents), "order": list(self.order)}

    @classmethod
    def from_attrs(cls, attrs: dict) -> "Indexing":
        return cls(
            tuple(str(attrs["names"]).split(",")),
            tuple(int(n) for n in np.atleast_1d(attrs["extents"])),
            tuple(int(k) for k in np.atleast_1d(attrs["order"])),
        )


def HCIndex(nA: int, nhc: int) -> Indexing:
    """Elevation grid index ``iE = iA * nhc + ihc``"""
    return Indexing(("A", "HC"), (nA, nhc), (0, 1))
