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

"""Kinematic path constraints used alongside the transcription residual."""

from typing import Optional

import jax.numpy as jnp
import numpy as np
from jax import Array

from mbtrajopt.core.constraint import Constraint
from mbtrajopt.core.types import MultibodyModel
from mbtrajopt.multibody.kinematics_cache import KinematicsCacheHelper


class PositionConstraint(Constraint):
    """Holonomic constraint φ(q) = 0 of a closed kinematic loop.

    Input is q (nq,), output φ(q) (nc,).
    """

    def __init__(
        self,
        model: MultibodyModel,
        kinematics_helper: Optional[KinematicsCacheHelper] = None,
    ):
        super().__init__(
            num_constraints=model.num_position_constraints,
            num_vars=model.num_positions,
            description='position_constraint',
        )
        self._model = model
        self._kinematics_helper = kinematics_helper or KinematicsCacheHelper(model)

    def _eval(self, x: Array) -> Array:
        kinematics = self._kinematics_helper.update_kinematics(x)
        return self._model.position_constraints(kinematics)


class JointLimitComplementarityConstraint(Constraint):
    """Complementarity between a joint's distance to its limits and λ.

    Input is [q_joint, λ_lower, λ_upper]; outputs are

        (q_joint − lower)·λ_lower <= tolerance
        (upper − q_joint)·λ_upper <= tolerance

    Together with λ >= 0 and lower <= q_joint <= upper, both products are
    non-negative, so with tolerance = 0 they must vanish.
    """

    def __init__(self, lower_limit: float, upper_limit: float, tolerance: float = 0.0):
        if tolerance < 0:
            raise ValueError(f"tolerance must be non-negative, got {tolerance}")
        super().__init__(
            num_constraints=2,
            num_vars=3,
            lower_bound=np.full(2, -np.inf),
            upper_bound=np.full(2, tolerance),
            description='joint_limit_complementarity',
        )
        self.lower_limit = float(lower_limit)
        self.upper_limit = float(upper_limit)

    def _eval(self, x: Array) -> Array:
        q, lambda_lower, lambda_upper = x[0], x[1], x[2]
        return jnp.stack([
            (q - self.lower_limit) * lambda_lower,
            (self.upper_limit - q) * lambda_upper,
        ])
