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
import abc
from typing import Dict, Optional, Type

import numpy as np

from icebin import base
from icebin.indexing import Indexing

_PROJECTIONS: Dict[str, Type["Projection"]] = {}


def register_projection(cls):
    _PROJECTIONS[cls.__name__] = cls
    return cls


class Projection(abc.ABC):
    @abc.abstractmethod
    def project(self, lat: np.ndarray, lon: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Compute the projected x,y from lat,lon.
        """
        pass

    @abc.abstractmethod
    def inverse_project(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Compute the lat,lon from the projected x,y.
        """
        pass

    def params(self) -> dict:
        """Constructor arguments, used to write the projection to a file"""
        return {}

    def to_attrs(self) -> dict:
        return {"projection": self.__class__.__name__, **self.params()}

    def __eq__(self, other):
        return type(self) is type(other) and self.params() == other.params()


def projection_from_attrs(attrs: dict) -> Projection:
    attrs = dict(attrs)
    kind = attrs.pop("projection")
    try:
        cls = _PROJECTIONS[kind]
    except KeyError:
        raise ValueError(f"Unrecognized projection {kind!r}") from None
    return cls(**{k: float(v) for k, v in attrs.items()})


@register_projection
class LatLonProjection(Projection):
    """Plate carree in degrees: x is longitude, y is latitude"""

    def project(self, lat, lon):
        return np.asarray(lon, dtype=np.float64), np.asarray(lat, dtype=np.float64)

    def inverse_project(self, x, y):
        return np.asarray(y, dtype=np.float64), np.asarray(x, dtype=np.float64)


def area_of_proj_polygon(lat: np.ndarray, lon: np.ndarray, projection: Projection) -> float:
    """Area, in the projected plane, of the polygon with vertices (lat, lon)"""
    x, y = projection.project(np.asarray(lat), np.asarray(lon))
    return 0.5 * abs(float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y)))


def set_xy_boundaries(x0: float, x1: float, dx: float, y0: float, y1: float, dy: float):
    """Cell edges for a regular grid from ``x0`` to ``x1`` (and ``y0`` to ``y1``)"""
    nx = int(round((x1 - x0) / dx))
    ny = int(round((y1 - y0) / dy))
    return x0 + dx * np.arange(nx + 1), y0 + dy * np.arange(ny + 1)


class Grid(base.Grid):
    # nothing here is specific to the projection, so could be shared by any projected rectilinear grid
    def __init__(self, projection: Projection, xb, yb, name: str = "", indexing: Optional[Indexing] = None):
        """
        Args:
            projection: maps the plane of this grid to lat/lon
            xb: cell edges along x, increasing
            yb: cell edges along y, increasing
            name: name of the grid
            indexing: maps (iy, ix) to the flat cell index. Defaults to C
                order, which matches ``(y, x)`` arrays as written by PISM.

        """
        self.projection = projection
        self.name = name

        self.xb = np.array(xb, dtype=np.float64)
        self.yb = np.array(yb, dtype=np.float64)
        if np.any(np.diff(self.xb) <= 0) or np.any(np.diff(self.yb) <= 0):
            raise ValueError("xb and yb must be in increasing order.")

        self.indexing = indexing or Indexing(("y", "x"), (len(self.yb) - 1, len(self.xb) - 1))
        if self.indexing.extents != self.shape:
            raise ValueError(f"indexing extents {self.indexing.extents} do not match grid shape {self.shape}")

    @property
    def x(self):
        return (self.xb[1:] + self.xb[:-1]) / 2

    @property
    def y(self):
        return (self.yb[1:] + self.yb[:-1]) / 2

    @property
    def shape(self):
        return (len(self.y), len(self.x))

    @property
    def ndata(self) -> int:
        return len(self.x) * len(self.y)

    def _flat(self, field_yx: np.ndarray) -> np.ndarray:
        """Reorder a ``(ny, nx)`` array into flat cell order"""
        out = np.empty(self.ndata, dtype=field_yx.dtype)
        iy, ix = np.meshgrid(np.arange(self.shape[0]), np.arange(self.shape[1]), indexing="ij")
        out[self.indexing.tuple_to_index((iy.ravel(), ix.ravel()))] = field_yx.ravel()
        return out

    def unflatten(self, values: np.ndarray) -> np.ndarray:
        """Inverse of the flat cell ordering: returns a ``(ny, nx)`` array"""
        iy, ix = np.meshgrid(np.arange(self.shape[0]), np.arange(self.shape[1]), indexing="ij")
        return np.asarray(values)[self.indexing.tuple_to_index((iy, ix))]

    @property
    def lat_lon(self):
        mesh_x, mesh_y = np.meshgrid(self.x, self.y)
        lat, lon = self.projection.inverse_project(mesh_x, mesh_y)
        return self._flat(lat), self._flat(lon)

    @property
    def lat(self):
        return self.lat_lon[0]

    @property
    def lon(self):
        return self.lat_lon[1]

    def cell_areas(self) -> np.ndarray:
        """Area of each cell in the projected plane"""
        return self._flat(np.diff(self.yb)[:, None] * np.diff(self.xb)[None, :])

    def subcells(self, nsub: int = 1):
        """Split each cell into ``nsub x nsub`` equal sub-cells

        Returns:
            (icell, x, y, area) for every sub-cell, where (x, y) is its centre
        """
        t = (np.arange(nsub) + 0.5) / nsub
        xs = (self.xb[:-1, None] + np.diff(self.xb)[:, None] * t[None, :]).ravel()
        ys = (self.yb[:-1, None] + np.diff(self.yb)[:, None] * t[None, :]).ravel()
        mesh_y, mesh_x = np.meshgrid(ys, xs, indexing="ij")

        iy = np.repeat(np.arange(self.shape[0]), nsub)
        ix = np.repeat(np.arange(self.shape[1]), nsub)
        mesh_iy, mesh_ix = np.meshgrid(iy, ix, indexing="ij")
        icell = self.indexing.tuple_to_index((mesh_iy.ravel(), mesh_ix.ravel()))
        area = self.cell_areas()[icell] / nsub**2
        return icell, mesh_x.ravel(), mesh_y.ravel(), area

    def to_attrs(self) -> dict:
        return {"name": self.name, **self.indexing.to_attrs(), **self.projection.to_attrs()}

    def __eq__(self, other):
        return (
            isinstance(other, Grid)
            and self.projection == other.projection
            and np.array_equal(self.xb, other.xb)
            and np.array_equal(self.yb, other.yb)
            and self.indexing == other.indexing
        )
