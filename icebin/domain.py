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
"""Which GCM cells belong to this MPI rank

IceBin does no domain decomposition itself.  It only asks whether a (sparse,
global) GCM cell index lies in the local domain or in its halo, and uses the
answer to filter cells when reading distributed grid data.
"""
from dataclasses import dataclass
from typing import Protocol, Tuple


class GridDomain(Protocol):
    def in_domain(self, iA: int) -> bool:
        pass

    def in_halo(self, iA: int) -> bool:
        pass


class GlobalDomain:
    """Single-rank domain: every cell is local"""

    def in_domain(self, iA: int) -> bool:
        return True

    def in_halo(self, iA: int) -> bool:
        return True


@dataclass(frozen=True)
class ModelEDomain:
    """Latitude-band decomposition used by ModelE (dd2d_utils.f)

    Bounds are 1-based and inclusive, as in Fortran.  For example, with 4 MPI
    processes on a 72x46 grid one rank has ``j0h=11, j1h=24, j0=12, j1=23``.
    """

    im: int
    jm: int
    i0h: int
    i1h: int
    j0h: int
    j1h: int
    i0: int
    i1: int
    j0: int
    j1: int

    def global_to_local(self, iA: int) -> Tuple[int, int]:
        """1-based (i, j) of the global C-style index ``iA``"""
        j = iA // self.im
        i = iA - self.im * j
        return i + 1, j + 1

    def in_domain(self, iA: int) -> bool:
        i, j = self.global_to_local(iA)
        return self.i0 <= i <= self.i1 and self.j0 <= j <= self.j1

    def in_halo(self, iA: int) -> bool:
        i, j = self.global_to_local(iA)
        return self.i0h <= i <= self.i1h and self.j0h <= j <= self.j1h
