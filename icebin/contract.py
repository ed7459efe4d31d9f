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
"""Coupling contracts

A :py:class:`CouplingContract` is the ordered list of fields one party sends
or receives.  Insertion order is meaningful: it is the row/column order used by
:py:class:`~icebin.var_transformer.VarTransformer`.  Every contract starts with
the pseudo-field ``"unit"`` (always 1.0), so transformations can add a constant
bias without a named input.
"""
from dataclasses import dataclass
from typing import Dict, Iterator, List, Union

#: Bits indicating the grid a field lives on
GRID_BITS = 3
ATMOSPHERE = 1
ICE = 2
ELEVATION = 3

#: The field is returned at initialization time, before the first coupling
INITIAL = 4

_FLAG_NAMES = {"ATMOSPHERE": ATMOSPHERE, "ICE": ICE, "ELEVATION": ELEVATION, "INITIAL": INITIAL}

UNIT = "unit"


def parse_flags(flags: Union[int, str]) -> int:
    """``"ICE|INITIAL"`` -> ``ICE | INITIAL``"""
    if isinstance(flags, int):
        return flags
    out = 0
    for name in flags.split("|"):
        name = name.strip()
        if not name:
            continue
        try:
            out |= _FLAG_NAMES[name]
        except KeyError:
            raise ValueError(f"Unrecognized field flag {name!r}") from None
    return out


def flags_to_str(flags: int) -> str:
    grid = {0: "", ATMOSPHERE: "ATMOSPHERE", ICE: "ICE", ELEVATION: "ELEVATION"}[flags & GRID_BITS]
    parts = [grid] if grid else []
    if flags & INITIAL:
        parts.append("INITIAL")
    return "|".join(parts)


@dataclass(frozen=True)
class CoupledField:
    name: str
    default_value: float
    units: str  # UDUNITS-compatible
    flags: int = 0
    description: str = "<no description>"

    def __str__(self):
        return f"({self.name}: [{self.units}] flags:{flags_to_str(self.flags)})"


class CouplingContract:
    def __init__(self, fields=()):
        self._fields: List[CoupledField] = []
        self._name_to_ix: Dict[str, int] = {}
        self._add(CoupledField(UNIT, 1.0, "1", 0, "Constant term"))
        for field in fields:
            self.add_field(field)

    def _add(self, field: CoupledField) -> int:
        ix = len(self._fields)
        self._fields.append(field)
        self._name_to_ix[field.name] = ix
        return ix

    def add_field(
        self,
        name: Union[str, CoupledField],
        default_value: float = 0.0,
        units: str = "1",
        flags: Union[int, str] = 0,
        description: str = "<no description>",
    ) -> int:
        """Append a field and return its index"""
        if isinstance(name, CoupledField):
            field = name
        else:
            field = CoupledField(name, float(default_value), units, parse_flags(flags), description)
        if not isinstance(field.name, str) or not field.name or field.name in self._name_to_ix:
            raise ValueError(f"CouplingContract.add_field(): duplicate or invalid name {field.name!r}")
        return self._add(field)

    @property
    def unit_ix(self) -> int:
        return 0

    def size_withunit(self) -> int:
        return len(self._fields)

    def size_nounit(self) -> int:
        return len(self._fields) - 1

    def __len__(self):
        return self.size_withunit()

    def __contains__(self, name) -> bool:
        return name in self._name_to_ix

    def __iter__(self) -> Iterator[CoupledField]:
        return iter(self._fields)

    def index(self, name: str, throw_exception: bool = True) -> int:
        ix = self._name_to_ix.get(name)
        if ix is None:
            if throw_exception:
                raise KeyError(f"CouplingContract.index(): name {name!r} not found")
            return -1
        return ix

    def name(self, ix: int) -> str:
        return self._fields[ix].name

    def field(self, key: Union[int, str]) -> CoupledField:
        if isinstance(key, str):
            key = self.index(key)
        return self._fields[key]

    @property
    def names(self) -> List[str]:
        """Field names, without ``"unit"``"""
        return [f.name for f in self._fields[1:]]

    @property
    def fields(self) -> List[CoupledField]:
        """Fields, without ``"unit"``"""
        return list(self._fields[1:])

    def default_values(self) -> List[float]:
        return [f.default_value for f in self._fields[1:]]

    def __eq__(self, other):
        return isinstance(other, CouplingContract) and self._fields == other._fields

    def __str__(self):
        return "CouplingContract(" + ", ".join(str(f) for f in self._fields) + ")"

    __repr__ = __str__


def scalar_contract(names, units: str = "1") -> CouplingContract:
    """A contract of named scalars, as used for the SCALARS axis of a VarTransformer"""
    contract = CouplingContract()
    for name in names:
        contract.add_field(name, 0.0, units)
    return contract
