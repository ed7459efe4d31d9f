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
import netCDF4
import numpy as np
import pytest

from icebin import projections
from icebin.ice_regridder import IceRegridder
from icebin.latlon import LatLonGrid
from icebin.matrix_maker import MatrixMaker

# The ice grid exactly covers GCM cell (j=1, i=1)
ICE_CELL = 4
HCDEFS = [0.0, 1000.0, 2000.0]


@pytest.fixture
def gridA():
    return LatLonGrid([60.0, 62.0, 64.0], [-50.0, -48.0, -46.0, -44.0], name="toy")


@pytest.fixture
def make_sheet():
    def make(name="greenland", elevI=1000.0, n=4, nsub=1):
        gridI = projections.Grid(
            projections.LatLonProjection(), np.linspace(-48.0, -46.0, n + 1), np.linspace(62.0, 64.0, n + 1), name=name
        )
        elevI = np.zeros(gridI.ndata) + elevI
        return IceRegridder(name, gridI, elevI, nsub=nsub)

    return make


@pytest.fixture
def matrix_maker(gridA, make_sheet):
    mm = MatrixMaker(gridA, HCDEFS)
    mm.add_ice_sheet(make_sheet())
    mm.realize()
    return mm


@pytest.fixture
def write_pism_state():
    """Writes a PISM-like state file with one time record"""

    def write(fname, topg, thk, mask, usurf=None):
        ny, nx = np.shape(topg)
        with netCDF4.Dataset(fname, "w") as ds:
            ds.createDimension("time", None)
            ds.createDimension("y", ny)
            ds.createDimension("x", nx)
            for name, value in (("topg", topg), ("thk", thk), ("mask", mask), ("usurf", usurf)):
                if value is None:
                    continue
                var = ds.createVariable(name, "f8", ("time", "y", "x"))
                var[0] = value

    return write
