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
"""netCDF4 persistence

Layout of the structures written here:

- sparse arrays: ``<name>.indices (nnz, rank)`` and ``<name>.values (nnz)``,
  with a ``shape`` attribute on ``<name>.values``.  Arrays are compressed
  (sorted, duplicate-free) before writing.
- :py:class:`~icebin.sparse.WeightedSparse`: ``<name>.M`` and ``<name>.weight``
- contracts: a group with parallel variables ``name``, ``units``,
  ``default_value``, ``flags`` and ``description``, one entry per field
  (``"unit"`` excluded).
- grids, ice sheets and the :py:class:`~icebin.matrix_maker.MatrixMaker`:
  groups whose metadata lives in attributes.
"""
from typing import Union

import netCDF4
import numpy as np
import torch

from icebin import projections
from icebin.contract import CoupledField, CouplingContract
from icebin.ice_regridder import IceRegridder
from icebin.indexing import Indexing
from icebin.latlon import LatLonGrid
from icebin.matrix_maker import MatrixMaker
from icebin.sparse import SparseMatrix, SparseSet, SparseVector, WeightedSparse, _CooArray
from icebin.var_transformer import Axis, VarTransformer

Group = Union[netCDF4.Dataset, netCDF4.Group]


def get_or_add_dim(nc: Group, name: str, size: int) -> str:
    if name not in nc.dimensions:
        nc.createDimension(name, size)
    return name


def _write_array(nc: Group, vname: str, array, dtype="f8", dim: str = None):
    array = np.asarray(array)
    dim = get_or_add_dim(nc, dim or f"{vname}.n", array.size)
    var = nc.createVariable(vname, dtype, (dim,), zlib=True)
    if array.size:
        var[:] = array
    return var


def _read_array(nc: Group, vname: str, dtype=np.float64) -> np.ndarray:
    return np.asarray(nc[vname][:], dtype=dtype)


# ---------------------------------------------------------------------------
# Sparse arrays
def write_sparse(nc: Group, vname: str, array: _CooArray):
    array = array.compressed()
    nnz = get_or_add_dim(nc, f"{vname}.nnz", array.nnz)
    rank = get_or_add_dim(nc, f"{vname}.rank", array.rank)
    indices = nc.createVariable(f"{vname}.indices", "i8", (nnz, rank), zlib=True)
    values = nc.createVariable(f"{vname}.values", "f8", (nnz,), zlib=True)
    if array.nnz:
        indices[:] = array.indices
        values[:] = array.values
    values.setncattr("shape", np.asarray(array.shape, dtype=np.int64))


def _read_sparse(nc: Group, vname: str, cls):
    values = nc[f"{vname}.values"]
    shape = tuple(int(n) for n in np.atleast_1d(values.getncattr("shape")))
    out = cls(shape)
    if len(nc.dimensions[f"{vname}.nnz"]):
        indices = np.asarray(nc[f"{vname}.indices"][:], dtype=np.int64)
        out.add_many(*[indices[:, k] for k in range(out.rank)], np.asarray(values[:], dtype=np.float64))
    return out


def read_sparse_matrix(nc: Group, vname: str) -> SparseMatrix:
    return _read_sparse(nc, vname, SparseMatrix)


def read_sparse_vector(nc: Group, vname: str) -> SparseVector:
    return _read_sparse(nc, vname, SparseVector)


def write_weighted_sparse(nc: Group, vname: str, ws: WeightedSparse):
    write_sparse(nc, f"{vname}.M", ws.M)
    write_sparse(nc, f"{vname}.weight", ws.weight)


def read_weighted_sparse(nc: Group, vname: str) -> WeightedSparse:
    return WeightedSparse(read_sparse_matrix(nc, f"{vname}.M"), read_sparse_vector(nc, f"{vname}.weight"))


def write_sparse_set(nc: Group, vname: str, dim: SparseSet):
    var = _write_array(nc, vname, dim.sparse_indices(), "i8")
    var.sparse_extent = dim.sparse_extent


def read_sparse_set(nc: Group, vname: str) -> SparseSet:
    dim = SparseSet(int(nc[vname].sparse_extent))
    dim.add(_read_array(nc, vname, np.int64).tolist())
    return dim


# ---------------------------------------------------------------------------
# Contracts and transformers
def write_contract(nc: Group, vname: str, contract: CouplingContract):
    g = nc.createGroup(vname)
    fields = contract.fields
    g.createDimension("nfields", len(fields))
    g.nfields = len(fields)
    for attr in ("name", "units", "description"):
        var = g.createVariable(attr, str, ("nfields",))
        for k, f in enumerate(fields):
            var[k] = getattr(f, attr)
    default_value = g.createVariable("default_value", "f8", ("nfields",))
    flags = g.createVariable("flags", "i4", ("nfields",))
    if fields:
        default_value[:] = np.array([f.default_value for f in fields])
        flags[:] = np.array([f.flags for f in fields], dtype=np.int32)


def read_contract(nc: Group, vname: str) -> CouplingContract:
    g = nc[vname]
    contract = CouplingContract()
    for k in range(int(g.nfields)):
        contract.add_field(
            CoupledField(
                str(g["name"][k]),
                float(g["default_value"][k]),
                str(g["units"][k]),
                int(g["flags"][k]),
                str(g["description"][k]),
            )
        )
    return contract


_AXIS_GROUPS = {Axis.INPUTS: "inputs", Axis.OUTPUTS: "outputs", Axis.SCALARS: "scalars"}


def write_var_transformer(nc: Group, vname: str, vt: VarTransformer):
    if not vt.allocated:
        raise ValueError("Cannot write a VarTransformer before allocate()")
    g = nc.createGroup(vname)
    for axis, name in _AXIS_GROUPS.items():
        write_contract(g, name, vt.names(axis))
    dims = tuple(
        get_or_add_dim(g, f"{name}.withunit", vt.dimension(axis))
        for axis, name in ((Axis.OUTPUTS, "outputs"), (Axis.INPUTS, "inputs"), (Axis.SCALARS, "scalars"))
    )
    coeff = g.createVariable("coeff", "f8", dims, zlib=True)
    coeff[:] = vt.coeff.numpy()


def read_var_transformer(nc: Group, vname: str) -> VarTransformer:
    g = nc[vname]
    vt = VarTransformer()
    for axis, name in _AXIS_GROUPS.items():
        vt.set_names(axis, read_contract(g, name))
    vt.allocate()
    vt.coeff[:] = torch.from_numpy(np.asarray(g["coeff"][:], dtype=np.float64))
    return vt


# ---------------------------------------------------------------------------
# Grids
def write_latlon_grid(nc: Group, vname: str, grid: LatLonGrid):
    g = nc.createGroup(vname)
    g.type = "LatLonGrid"
    g.setncatts(grid.to_attrs())
    _write_array(g, "lat_bounds", grid.lat_bounds)
    _write_array(g, "lon_bounds", grid.lon_bounds)


def write_projected_grid(nc: Group, vname: str, grid: projections.Grid):
    g = nc.createGroup(vname)
    g.type = "Grid"
    g.setncatts({"name": grid.name, **grid.indexing.to_attrs()})
    _write_array(g, "xb", grid.xb)
    _write_array(g, "yb", grid.yb)
    proj = g.createVariable("projection", "i4")
    proj.setncatts(grid.projection.to_attrs())


def write_grid(nc: Group, vname: str, grid):
    if isinstance(grid, LatLonGrid):
        write_latlon_grid(nc, vname, grid)
    elif isinstance(grid, projections.Grid):
        write_projected_grid(nc, vname, grid)
    else:
        raise ValueError(f"Cannot write grid of type {type(grid).__name__}")


def read_grid(nc: Group, vname: str):
    g = nc[vname]
    if g.type == "LatLonGrid":
        name = str(g.getncattr("name"))
        return LatLonGrid(_read_array(g, "lat_bounds"), _read_array(g, "lon_bounds"), bool(g.cylinder), name)
    if g.type == "Grid":
        projection = projections.projection_from_attrs(
            {k: g["projection"].getncattr(k) for k in g["projection"].ncattrs()}
        )
        indexing = Indexing.from_attrs({k: g.getncattr(k) for k in ("names", "extents", "order")})
        name = str(g.getncattr("name"))
        return projections.Grid(projection, _read_array(g, "xb"), _read_array(g, "yb"), name, indexing)
    raise ValueError(f"Unrecognized grid type {g.type!r}")


# ---------------------------------------------------------------------------
# Ice sheets and the MatrixMaker
def write_ice_regridder(nc: Group, vname: str, sheet: IceRegridder):
    g = nc.createGroup(vname)
    g.setncattr("name", sheet.name)
    g.nsub = sheet.nsub
    write_grid(g, "gridI", sheet.gridI)
    _write_array(g, "elevI", sheet.elevI)


def read_ice_regridder(nc: Group, vname: str) -> IceRegridder:
    g = nc[vname]
    return IceRegridder(str(g.getncattr("name")), read_grid(g, "gridI"), _read_array(g, "elevI"), nsub=int(g.nsub))


def write_matrix_maker(nc: Group, vname: str, mm: MatrixMaker):
    g = nc.createGroup(vname)
    g.sheetnames = ",".join(mm.sheets)
    g.eq_rad = mm.eq_rad
    write_grid(g, "gridA", mm.gridA)
    _write_array(g, "hcdefs", mm.hcdefs)
    if mm.maskA is not None:
        _write_array(g, "maskA", mm.maskA.ravel().astype(np.int32), "i4")
    for name, sheet in mm.sheets.items():
        write_ice_regridder(g, name, sheet)


def read_matrix_maker(nc: Group, vname: str) -> MatrixMaker:
    """Read a MatrixMaker; sheets are added in the order they were written"""
    g = nc[vname]
    maskA = _read_array(g, "maskA", np.int32) if "maskA" in g.variables else None
    mm = MatrixMaker(read_grid(g, "gridA"), _read_array(g, "hcdefs"), maskA=maskA, eq_rad=float(g.eq_rad))
    sheetnames = str(g.sheetnames)
    for name in sheetnames.split(",") if sheetnames else []:
        mm.add_ice_sheet(read_ice_regridder(g, name))
    return mm


def save(fname: str, **objects):
    """Write each keyword argument to ``fname`` under its keyword"""
    writers = [
        (WeightedSparse, write_weighted_sparse),
        (_CooArray, write_sparse),
        (SparseSet, write_sparse_set),
        (CouplingContract, write_contract),
        (VarTransformer, write_var_transformer),
        (MatrixMaker, write_matrix_maker),
        (IceRegridder, write_ice_regridder),
        (LatLonGrid, write_grid),
        (projections.Grid, write_grid),
    ]
    with netCDF4.Dataset(fname, "w") as nc:
        for vname, obj in objects.items():
            for cls, writer in writers:
                if isinstance(obj, cls):
                    writer(nc, vname, obj)
                    break
            else:
                raise ValueError(f"Don't know how to write {vname} of type {type(obj).__name__}")
