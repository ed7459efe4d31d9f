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
from typing import Protocol

import numpy as np


class Grid(Protocol):
    """A grid of cells, each with a flat index in ``range(ndata)``"""

    @property
    def shape(self) -> tuple[int, ...]:
        pass

    @property
    def ndata(self) -> int:
        pass

    @property
    def lat(self):
        pass

    @property
    def lon(self):
        pass

    def cell_areas(self) -> np.ndarray:
        """Area of each cell, flattened to ``(ndata,)``"""
        raise NotImplementedError()
