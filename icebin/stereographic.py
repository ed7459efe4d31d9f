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

from icebin import projections
from icebin.indexing import Indexing

__all__ = [
    "PolarStereographicProjection",
    "SEARISE_GREENLAND_PROJECTION",
    "SEARISE_ANTARCTICA_PROJECTION",
    "searise_grid",
]

km = 1000.0


@projections.register_projection
class PolarStereographicProjection(projections.Projection):
    def __init__(self, lat0: float, lon0: float, lat_ts: float, radius: float = 6371000.0):
        """
        Spherical polar stereographic projection.

        Args:
            lat0: latitude of origin, 90 or -90 (degrees)
            lon0: longitude pointing "down" from the pole (degrees)
            lat_ts: latitude of true scale (degrees); only its magnitude is used
            radius: radius of sphere (m)

        """
        if abs(abs(lat0) - 90) > 1e-12:
            raise ValueError(f"lat0 must be +90 or -90, got {lat0}")
        self.lat0 = float(lat0)
        self.lon0 = float(lon0)
        self.lat_ts = float(lat_ts)
        self.radius = float(radius)

        self.sign = 1.0 if lat0 > 0 else -1.0
        # rho = 2 R k0 tan(pi/4 - phi/2), with k0 chosen so the scale is exact at lat_ts
        self.k0 = (1 + np.sin(np.deg2rad(abs(lat_ts)))) / 2

    def params(self) -> dict:
        return {"lat0": self.lat0, "lon0": self.lon0, "lat_ts": self.lat_ts, "radius": self.radius}

    def project(self, lat, lon):
        """
        Compute the projected x,y from lat,lon.
        """
        phi = self.sign * np.deg2rad(np.asarray(lat, dtype=np.float64))
        dlon = np.deg2rad(np.asarray(lon, dtype=np.float64) - self.lon0)
        rho = 2 * self.radius * self.k0 * np.tan(np.pi / 4 - phi / 2)
        x = rho * np.sin(dlon)
        y = -self.sign * rho * np.cos(dlon)
        return x, y

    def inverse_project(self, x, y):
        """
        Compute the lat,lon from the projected x,y.
        """
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        rho = np.hypot(x, y)
        phi = np.pi / 2 - 2 * np.arctan(rho / (2 * self.radius * self.k0))
        lat = self.sign * np.rad2deg(phi)
        lon = self.lon0 + np.rad2deg(np.arctan2(x, -self.sign * y))
        lon = (lon + 180) % 360 - 180
        return lat, lon


SEARISE_GREENLAND_PROJECTION = PolarStereographicProjection(lat0=90, lon0=-39, lat_ts=71)
SEARISE_ANTARCTICA_PROJECTION = PolarStereographicProjection(lat0=-90, lon0=0, lat_ts=-71)


def searise_grid(zone: str = "greenland", grid_size: int = 20, icemodel: str = "pism") -> projections.Grid:
    """The SeaRISE ice grid

    Args:
        zone: "greenland" or "antarctica"
        grid_size: cell size (km)
        icemodel: "pism" orders cells with x fastest (as PISM writes them);
            "searise" uses the native SeaRISE order with y fastest
    """
    dsize = float(grid_size)
    if zone == "greenland":
        projection = SEARISE_GREENLAND_PROJECTION
        xb, yb = projections.set_xy_boundaries(
            (-800.0 - 0.5 * dsize) * km,
            (-800.0 + 300.0 * 5 + 0.5 * dsize) * km,
            dsize * km,
            (-3400.0 - 0.5 * dsize) * km,
            (-3400.0 + 560.0 * 5 + 0.5 * dsize) * km,
            dsize * km,
        )
    elif zone == "antarctica":
        projection = SEARISE_ANTARCTICA_PROJECTION
        xb, yb = projections.set_xy_boundaries(
            (-2800.0 - 0.5 * dsize) * km,
            (-2800.0 + 1200 * 5.0 + 0.5 * dsize) * km,
            dsize * km,
            (-2800.0 - 0.5 * dsize) * km,
            (-2800.0 + 1200 * 5.0 + 0.5 * dsize) * km,
            dsize * km,
        )
    else:
        raise ValueError(f"Unrecognized zone {zone!r}")

    shape = (len(yb) - 1, len(xb) - 1)
    if icemodel == "pism":
        order = (0, 1)
    elif icemodel == "searise":
        order = (1, 0)
    else:
        raise ValueError(f"Unrecognized icemodel {icemodel!r}")

    name = f"sr_g{grid_size}_{icemodel}"
    return projections.Grid(projection, xb, yb, name=name, indexing=Indexing(("y", "x"), shape, order))
