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

"""Single-slot caches for the kinematic state of a multibody model.

Several quantities of one residual evaluation (mass matrix, bias forces,
constraint Jacobians) depend on the same kinematic state. A cache helper
remembers the last requested key and its state so they are computed once.

Keys are matched as follows:
- the very same array object is a hit. This is the only way a JAX tracer
  can hit, so the cached state always carries the tangents of the requested
  input;
- concrete arrays are compared by exact value;
- a tracer never matches a different object.

The helpers hold one slot and no lock. Each owner (for example a
DirectTranscriptionConstraint) must have its own helper.
"""

from typing import Optional

import jax
import numpy as np
from jax import Array

from mbtrajopt.core.types import KinematicsState, MultibodyModel


def _same_key(cached, requested) -> bool:
    if cached is requested:
        return True
    if isinstance(cached, jax.core.Tracer) or isinstance(requested, jax.core.Tracer):
        return False
    cached = np.asarray(cached)
    requested = np.asarray(requested)
    return cached.shape == requested.shape and bool(np.array_equal(cached, requested))


def _snapshot(key):
    # Concrete keys are copied so in-place edits by the caller miss the cache.
    if isinstance(key, jax.core.Tracer):
        return key
    return np.array(key, copy=True)


class KinematicsCacheHelper:
    """Caches the position-only kinematics of the last requested q."""

    def __init__(self, model: MultibodyModel):
        self._model = model
        self._q: Optional[Array] = None
        self._kinematics: Optional[KinematicsState] = None

    @property
    def model(self) -> MultibodyModel:
        return self._model

    def update_kinematics(self, q: Array) -> KinematicsState:
        """Returns the kinematic state at q, recomputing only on a new q."""
        if self._kinematics is None or not _same_key(self._q, q):
            self._kinematics = self._model.compute_kinematics(q)
            self._q = _snapshot(q)
        return self._kinematics


class KinematicsCacheWithVHelper:
    """Caches the kinematics of the last requested (q, v) pair."""

    def __init__(self, model: MultibodyModel):
        self._model = model
        self._q: Optional[Array] = None
        self._v: Optional[Array] = None
        self._kinematics: Optional[KinematicsState] = None

    @property
    def model(self) -> MultibodyModel:
        return self._model

    def update_kinematics(self, q: Array, v: Array) -> KinematicsState:
        """Returns the kinematic state at (q, v), recomputing only on a new key."""
        if (self._kinematics is None
                or not _same_key(self._q, q)
                or not _same_key(self._v, v)):
            self._kinematics = self._model.compute_kinematics(q, v)
            self._q = _snapshot(q)
            self._v = _snapshot(v)
        return self._kinematics
