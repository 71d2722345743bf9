# Copyright 2024 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Multibody models and kinematics caching."""

from mbtrajopt.multibody.kinematics_cache import (
    KinematicsCacheHelper,
    KinematicsCacheWithVHelper,
)

from mbtrajopt.multibody.planar import (
    PlanarKinematics,
    PlanarLinkage,
    four_bar_linkage,
    four_bar_configuration,
)

__all__ = [
    'KinematicsCacheHelper',
    'KinematicsCacheWithVHelper',
    'PlanarKinematics',
    'PlanarLinkage',
    'four_bar_linkage',
    'four_bar_configuration',
]
