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
"""Readers for per-ice-sheet elevation/mask data

A reader is chosen by the ``<format>:<path>`` specifier passed to
:py:func:`read_elevmask`.  Each returns ``(emI_land, emI_ice)``: surface
elevation on the ice grid (flattened in C order) where there is land
(resp. ice), NaN elsewhere.
"""
import logging
from typing import Callable, Dict, Tuple

import netCDF4
import numpy as np

logger = logging.getLogger(__name__)

ElevMask = Tuple[np.ndarray, np.ndarray]

_READERS: Dict[str, Callable[[str], ElevMask]] = {}

# PISM's mask values
MASK_ICE_FREE_BEDROCK = 0
MASK_GROUNDED = 2
MASK_FLOATING = 3
MASK_ICE_FREE_OCEAN = 4


def register_elevmask_reader(format: str):
    def decorator(func):
        _READERS[format] = func
        return func

    return decorator


def parse_spec(xfname: str) -> Tuple[str, str]:
    format, sep, path = xfname.partition(":")
    if not sep:
        raise ValueError(f"elevmask spec {xfname!r} must be in the format <format>:<fname>")
    return format, path


def read_elevmask(xfname: str) -> ElevMask:
    format, path = parse_spec(xfname)
    try:
        reader = _READERS[format]
    except KeyError:
        raise ValueError(f"Unrecognized elevmask spec type {format!r}") from None
    logger.info("Reading elevmask %s from %s", format, path)
    return reader(path)


def _read_2d(ds: netCDF4.Dataset, vname: str, itime: int) -> np.ndarray:
    var = ds[vname]
    data = var[itime] if var.ndim == 3 else var[:]
    return np.ma.filled(np.ma.asarray(data, dtype=np.float64), np.nan)


@register_elevmask_reader("pism")
def read_elevmask_pism(fname: str, itime: int = 0) -> ElevMask:
    """Read a PISM state file (``topg``, ``thk``, ``mask`` and optionally ``usurf``)

    Ice is where ``mask`` is grounded or floating and ``thk > 0``.  Land is
    ice plus ice-free bedrock.
    """
    with netCDF4.Dataset(fname) as ds:
        topg = _read_2d(ds, "topg", itime)
        thk = _read_2d(ds, "thk", itime)
        mask = _read_2d(ds, "mask", itime)
        usurf = _read_2d(ds, "usurf", itime) if "usurf" in ds.variables else topg + thk

    ice = ((mask == MASK_GROUNDED) | (mask == MASK_FLOATING)) & (thk > 0)
    land = ice | (mask == MASK_ICE_FREE_BEDROCK)

    emI_ice = np.where(ice, usurf, np.nan).ravel()
    emI_land = np.where(ice, usurf, np.where(land, topg, np.nan)).ravel()
    return emI_land, emI_ice
