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

"""Generalized constraint force evaluators.

An evaluator maps force parameters λ (of a size it declares) and the
configuration of a multibody model to a generalized force of size nv that
enters the equations of motion

    M(q) v̇ + c(q, v) = B u + Σ_k F_k(q, λ_k).

Evaluators are evaluated independently and their forces summed by
DirectTranscriptionConstraint. New force types subclass
GeneralizedConstraintForceEvaluator and implement _generalized_force().
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

import jax.numpy as jnp
from jax import Array

from mbtrajopt.core.types import KinematicsState, MultibodyModel
from mbtrajopt.multibody.kinematics_cache import KinematicsCacheHelper
from mbtrajopt.utils.autodiff import as_float_array, value_and_jacfwd


class GeneralizedConstraintForceEvaluator(ABC):
    """Abstract map (q, λ) -> generalized constraint force.

    Attributes:
        lambda_size: Number of force parameters λ.
        num_vars: Size of the standalone input [q; λ].
        num_outputs: Size of the generalized force (nv).
    """

    def __init__(
        self,
        model: MultibodyModel,
        lambda_size: int,
        kinematics_helper: Optional[KinematicsCacheHelper] = None,
    ):
        """Initialize evaluator.

        Args:
            model: Multibody model; borrowed, must outlive the evaluator.
            lambda_size: Number of force parameters.
            kinematics_helper: Position-only cache used by eval(). A new
                helper is created when None.
        """
        if lambda_size < 0:
            raise ValueError(f"lambda_size must be non-negative, got {lambda_size}")
        self._model = model
        self.lambda_size = lambda_size
        self._kinematics_helper = kinematics_helper or KinematicsCacheHelper(model)

    @property
    def model(self) -> MultibodyModel:
        return self._model

    @property
    def num_vars(self) -> int:
        return self._model.num_positions + self.lambda_size

    @property
    def num_outputs(self) -> int:
        return self._model.num_velocities

    def evaluate(self, kinematics: KinematicsState, lambda_: Array) -> Array:
        """Generalized force at an already computed kinematic state.

        Args:
            kinematics: Kinematic state of the configuration.
            lambda_: Force parameters, shape (lambda_size,).

        Returns:
            Generalized force, shape (nv,).
        """
        lambda_ = as_float_array(lambda_)
        if lambda_.shape != (self.lambda_size,):
            raise ValueError(
                f"{type(self).__name__} expects {self.lambda_size} force "
                f"parameters, got shape {lambda_.shape}"
            )
        return self._generalized_force(kinematics, lambda_)

    def eval(self, x: Array) -> Array:
        """Generalized force for the standalone input x = [q; λ]."""
        x = as_float_array(x)
        if x.shape != (self.num_vars,):
            raise ValueError(
                f"{type(self).__name__} expects an input of size "
                f"{self.num_vars}, got shape {x.shape}"
            )
        nq = self._model.num_positions
        kinematics = self._kinematics_helper.update_kinematics(x[:nq])
        return self.evaluate(kinematics, x[nq:])

    def eval_with_jacobian(self, x: Array) -> Tuple[Array, Array]:
        """Returns the force and its exact Jacobian w.r.t. [q; λ]."""
        return value_and_jacfwd(self.eval)(as_float_array(x))

    @abstractmethod
    def _generalized_force(self, kinematics: KinematicsState, lambda_: Array) -> Array:
        ...


class PositionConstraintForceEvaluator(GeneralizedConstraintForceEvaluator):
    """Forces Jᵀλ of the model's holonomic position constraints.

    λ has one entry per position constraint and no sign restriction.
    """

    def __init__(
        self,
        model: MultibodyModel,
        kinematics_helper: Optional[KinematicsCacheHelper] = None,
    ):
        super().__init__(model, model.num_position_constraints, kinematics_helper)

    def _generalized_force(self, kinematics: KinematicsState, lambda_: Array) -> Array:
        jacobian = self._model.position_constraint_jacobian(kinematics)
        return jnp.matmul(jacobian.T, lambda_)


class JointLimitConstraintForceEvaluator(GeneralizedConstraintForceEvaluator):
    """Force applied by the two bounds of one joint limit.

    λ = [λ_lower, λ_upper]. The lower bound pushes the joint towards larger
    values and the upper bound towards smaller ones, so the force on the
    joint's velocity coordinate is λ_lower − λ_upper. Non-negativity and
    complementarity of λ are not enforced here.

    Attributes:
        joint_position_index: Index of the joint in q.
        joint_velocity_index: Index of the joint in v.
        lower_limit: Lower joint limit.
        upper_limit: Upper joint limit.
    """

    def __init__(
        self,
        model: MultibodyModel,
        joint_position_index: int,
        joint_velocity_index: int,
        lower_limit: float,
        upper_limit: float,
        kinematics_helper: Optional[KinematicsCacheHelper] = None,
    ):
        if not 0 <= joint_position_index < model.num_positions:
            raise ValueError(
                f"joint_position_index must lie in [0, {model.num_positions}), "
                f"got {joint_position_index}"
            )
        if not 0 <= joint_velocity_index < model.num_velocities:
            raise ValueError(
                f"joint_velocity_index must lie in [0, {model.num_velocities}), "
                f"got {joint_velocity_index}"
            )
        if lower_limit > upper_limit:
            raise ValueError(
                f"lower_limit ({lower_limit}) must not exceed upper_limit ({upper_limit})"
            )
        super().__init__(model, 2, kinematics_helper)
        self.joint_position_index = joint_position_index
        self.joint_velocity_index = joint_velocity_index
        self.lower_limit = float(lower_limit)
        self.upper_limit = float(upper_limit)

    def _generalized_force(self, kinematics: KinematicsState, lambda_: Array) -> Array:
        force = jnp.zeros(self._model.num_velocities, dtype=lambda_.dtype)
        return force.at[self.joint_velocity_index].set(lambda_[0] - lambda_[1])
