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
"""Elevation classes

An elevation class is a band of surface elevation within one GCM cell.  The
classes are given by ``hcdefs``, the increasing list of representative
elevations (the *height points*).  A point belongs to the class whose height
point is nearest, i.e. class ``k`` spans ``[hcmax[k-1], hcmax[k])`` with
``hcmax`` halfway between consecutive height points.
"""
import numpy as np


def check_hcdefs(hcdefs) -> np.ndarray:
    hcdefs = np.asarray(hcdefs, dtype=np.float64)
    if hcdefs.ndim != 1 or hcdefs.size == 0:
        raise ValueError(f"hcdefs must be a non-empty 1-d sequence, got shape {hcdefs.shape}")
    if np.any(np.diff(hcdefs) <= 0):
        raise ValueError("hcdefs must be strictly increasing.")
    return hcdefs


def hcmax(hcdefs) -> np.ndarray:
    """Upper elevation bound of each class; the top class is unbounded"""
    hcdefs = check_hcdefs(hcdefs)
    return np.concatenate([(hcdefs[1:] + hcdefs[:-1]) / 2, [np.inf]])


def classify(elev, hcdefs) -> np.ndarray:
    """Elevation class of each point, -1 where ``elev`` is NaN"""
    elev = np.asarray(elev, dtype=np.float64)
    ihc = np.searchsorted(hcmax(hcdefs), elev, side="right")
    ihc = np.minimum(ihc, len(hcdefs) - 1)
    return np.where(np.isnan(elev), -1, ihc)


def height_point_weights(elev, hcdefs):
    """Linear interpolation weights between the two height points bracketing ``elev``

    Elevations outside ``[hcdefs[0], hcdefs[-1]]`` are clamped to the end
    points.

    Returns:
        (ihp0, ihp1, w0, w1) with ``w0 + w1 == 1``
    """
    hcdefs = check_hcdefs(hcdefs)
    elev = np.asarray(elev, dtype=np.float64)
    if hcdefs.size == 1:
        zero = np.zeros(elev.shape, dtype=np.int64)
        return zero, zero, np.ones(elev.shape), np.zeros(elev.shape)

    ihp0 = np.clip(np.searchsorted(hcdefs, elev, side="right") - 1, 0, hcdefs.size - 2)
    ihp1 = ihp0 + 1
    t = (elev - hcdefs[ihp0]) / (hcdefs[ihp1] - hcdefs[ihp0])
    t = np.clip(t, 0.0, 1.0)
    return ihp0, ihp1, 1.0 - t, t
