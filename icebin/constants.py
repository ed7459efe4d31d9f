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
"""Named physical constants shared between coupled models"""
from dataclasses import dataclass
from typing import Dict, Iterator

#: degC -> K
C2K = 273.15


@dataclass(frozen=True)
class Constant:
    name: str
    value: float
    units: str
    description: str = ""


class ConstantSet:
    def __init__(self):
        self._constants: Dict[str, Constant] = {}

    def set(self, name: str, value: float, units: str, description: str = "") -> Constant:
        const = Constant(name, float(value), units, description)
        self._constants[name] = const
        return const

    def copy(self, dest_name: str, src: "ConstantSet", src_name: str, multiply_by: float = 1.0) -> Constant:
        """Set ``dest_name`` from constant ``src_name`` of ``src``, optionally scaled"""
        c = src[src_name]
        return self.set(dest_name, c.value * multiply_by, c.units, c.description)

    def __getitem__(self, name: str) -> Constant:
        try:
            return self._constants[name]
        except KeyError:
            raise KeyError(f"Constant {name!r} not found") from None

    def get_as(self, name: str) -> float:
        return self[name].value

    def __contains__(self, name: str) -> bool:
        return name in self._constants

    def __iter__(self) -> Iterator[Constant]:
        return iter(self._constants.values())

    def __len__(self):
        return len(self._constants)

    def __eq__(self, other):
        return isinstance(other, ConstantSet) and self._constants == other._constants
