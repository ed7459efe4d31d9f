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
import numpy as np

from icebin import base

#: Radius of the earth used by ModelE (m)
EQ_RAD = 6.371e6


class LatLonGrid(base.Grid):
    """The GCM's atmosphere/ocean grid

    Cell ``iA = j * nlon + i`` spans ``lat_bounds[j:j+2]`` and
    ``lon_bounds[i:i+2]``.
    """

    def __init__(self, lat_bounds, lon_bounds, cylinder: bool = True, name: str = ""):
        """
        Args:
            lat_bounds: cell edges in latitude (degrees N), increasing
            lon_bounds: cell edges in longitude (degrees E), increasing
            cylinder: if true, then lon is considered a periodic coordinate
                and points are wrapped into ``[lon_bounds[0], lon_bounds[0] + 360)``
            name: name of the grid
        """
        self.lat_bounds = np.asarray(lat_bounds, dtype=np.float64)
        self.lon_bounds = np.asarray(lon_bounds, dtype=np.float64)
        self.cylinder = cylinder
        self.name = name

        if np.any(np.diff(self.lat_bounds) <= 0):
            raise ValueError("lat_bounds must be in increasing order.")
        if np.any(np.diff(self.lon_bounds) <= 0):
            raise ValueError("lon_bounds must be in increasing order.")

    @property
    def lat(self):
        return ((self.lat_bounds[1:] + self.lat_bounds[:-1]) / 2)[:, None]

    @property
    def lon(self):
        return (self.lon_bounds[1:] + self.lon_bounds[:-1]) / 2

    @property
    def nlat(self) -> int:
        return len(self.lat_bounds) - 1

    @property
    def nlon(self) -> int:
        return len(self.lon_bounds) - 1

    @property
    def shape(self):
        return (self.nlat, self.nlon)

    @property
    def ndata(self) -> int:
        return self.nlat * self.nlon

    def ij(self, iA):
        """(j, i) of cell ``iA``"""
        iA = np.asarray(iA)
        return iA // self.nlon, iA % self.nlon

    def locate(self, lat, lon) -> np.ndarray:
        """Index of the cell containing each point, -1 where outside the grid"""
        lat, lon = np.broadcast_arrays(np.asarray(lat, dtype=np.float64), np.asarray(lon, dtype=np.float64))
        if self.cylinder:
            lon = (lon - self.lon_bounds[0]) % 360 + self.lon_bounds[0]

        j = np.searchsorted(self.lat_bounds, lat, side="right") - 1
        i = np.searchsorted(self.lon_bounds, lon, side="right") - 1
        # points on the last edge belong to the last cell
        j = np.where(lat == self.lat_bounds[-1], self.nlat - 1, j)
        i = np.where(lon == self.lon_bounds[-1], self.nlon - 1, i)

        inside = (j >= 0) & (j < self.nlat) & (i >= 0) & (i < self.nlon)
        return np.where(inside, j * self.nlon + i, -1)

    def cell_polygon(self, iA: int, npoints: int = 8):
        """Counterclockwise vertices of cell ``iA``, with ``npoints`` per edge

        Edges are densified because a line of constant latitude is curved once
        projected.
        """
        j, i = self.ij(iA)
        lat0, lat1 = self.lat_bounds[j], self.lat_bounds[j + 1]
        lon0, lon1 = self.lon_bounds[i], self.lon_bounds[i + 1]
        t = np.linspace(0, 1, npoints, endpoint=False)
        lon = np.concatenate([lon0 + (lon1 - lon0) * t, np.full(npoints, lon1), lon1 - (lon1 - lon0) * t, np.full(npoints, lon0)])
        lat = np.concatenate([np.full(npoints, lat0), lat0 + (lat1 - lat0) * t, np.full(npoints, lat1), lat1 - (lat1 - lat0) * t])
        return lat, lon

    def cell_areas(self, radius: float = EQ_RAD) -> np.ndarray:
        """Exact area of each cell on a sphere of ``radius``, shape ``(ndata,)``"""
        dlon = np.deg2rad(np.diff(self.lon_bounds))
        dsin = np.diff(np.sin(np.deg2rad(self.lat_bounds)))
        return (radius**2 * dsin[:, None] * dlon[None, :]).ravel()

    def to_attrs(self) -> dict:
        return {"name": self.name, "cylinder": int(self.cylinder)}

    def __eq__(self, other):
        return (
            isinstance(other, LatLonGrid)
            and np.array_equal(self.lat_bounds, other.lat_bounds)
            and np.array_equal(self.lon_bounds, other.lon_bounds)
            and self.cylinder == other.cylinder
        )


def regular_lat_lon_grid(nlat: int, nlon: int, lon0: float = -180.0, name: str = "") -> LatLonGrid:
    """Return a regular lat-lon grid covering the sphere

    Lat cells run from -90 to 90.  Lon cells start at ``lon0`` and cover 360
    degrees.

    Args:
        nlat: number of latitude cells
        nlon: number of longitude cells
        lon0: western edge of the first longitude cell
    """
    lat = np.linspace(-90, 90, nlat + 1)
    lon = np.linspace(lon0, lon0 + 360, nlon + 1)
    return LatLonGrid(lat, lon, name=name)
