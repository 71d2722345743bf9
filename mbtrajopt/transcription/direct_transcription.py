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

"""Backward Euler transcription of constrained multibody dynamics.

For one interval with step h, left sample (q_l, v_l) and right sample
(q_r, v_r, u_r, λ_r), the residual

    q_r − q_l − h·v_r
    M(q_r)·(v_r − v_l) − h·(B·u_r + Σ_k F_k(q_r, λ_k) − c(q_r, v_r))

vanishes exactly when the right sample is one implicit Euler step of the
dynamics from the left sample, under the generalized constraint forces
F_k of the registered evaluators.
"""

from typing import List, NamedTuple, Optional, Tuple

import jax.numpy as jnp
from jax import Array

from mbtrajopt.core.constraint import Constraint
from mbtrajopt.core.types import MultibodyModel
from mbtrajopt.multibody.kinematics_cache import KinematicsCacheWithVHelper
from mbtrajopt.transcription.force_evaluators import (
    GeneralizedConstraintForceEvaluator,
)
from mbtrajopt.utils.autodiff import as_float_array


class TranscriptionInput(NamedTuple):
    """Named view of the flat input of a DirectTranscriptionConstraint."""
    h: Array
    q_l: Array
    v_l: Array
    q_r: Array
    v_r: Array
    u_r: Array
    lambdas: Tuple[Array, ...]  # one entry per registered evaluator


class DirectTranscriptionConstraint(Constraint):
    """Implicit Euler dynamics residual for one interval.

    The input is [h, q_l, v_l, q_r, v_r, u_r, λ_1, ..., λ_K], where λ_k feeds
    the k-th registered evaluator. The output has nq + nv entries and both
    bounds are zero.

    The constraint owns its kinematics cache and the evaluators registered
    to it; the kinematics at (q_r, v_r) are computed once per evaluation and
    handed to every evaluator.

    Example:
        >>> constraint = DirectTranscriptionConstraint(model)
        >>> constraint.add_generalized_constraint_force_evaluator(
        ...     PositionConstraintForceEvaluator(model))
        >>> x = constraint.composite_eval_input(h, q_l, v_l, q_r, v_r, u_r, lam)
        >>> residual, jacobian = constraint.eval_with_jacobian(x)
    """

    def __init__(
        self,
        model: MultibodyModel,
        kinematics_helper: Optional[KinematicsCacheWithVHelper] = None,
    ):
        """Initialize constraint.

        Args:
            model: Multibody model; borrowed, must outlive the constraint.
            kinematics_helper: Cache owned by this constraint. A new helper
                is created when None; it must not be shared with another
                constraint.

        Raises:
            ValueError: If the model has nq != nv (q̇ = v is assumed).
        """
        if model.num_positions != model.num_velocities:
            raise ValueError(
                f"backward Euler transcription assumes q̇ = v, but the model "
                f"has {model.num_positions} positions and "
                f"{model.num_velocities} velocities"
            )
        self._model = model
        self._nq = model.num_positions
        self._nv = model.num_velocities
        self._nu = model.num_actuators
        self._kinematics_helper = kinematics_helper or KinematicsCacheWithVHelper(model)
        self._evaluators: List[GeneralizedConstraintForceEvaluator] = []
        super().__init__(
            num_constraints=self._nq + self._nv,
            num_vars=1 + 2 * self._nq + 2 * self._nv + self._nu,
            description='direct_transcription',
        )

    @property
    def evaluators(self) -> Tuple[GeneralizedConstraintForceEvaluator, ...]:
        return tuple(self._evaluators)

    @property
    def num_lambda(self) -> int:
        """Total number of force parameters of all registered evaluators."""
        return sum(e.lambda_size for e in self._evaluators)

    def add_generalized_constraint_force_evaluator(
        self,
        evaluator: GeneralizedConstraintForceEvaluator,
    ) -> None:
        """Takes ownership of evaluator and appends its λ to the input."""
        if evaluator.num_outputs != self._nv:
            raise ValueError(
                f"evaluator produces {evaluator.num_outputs} generalized "
                f"forces, expected {self._nv}"
            )
        self._evaluators.append(evaluator)
        self.num_vars += evaluator.lambda_size

    def composite_eval_input(self, h, q_l, v_l, q_r, v_r, u_r, *lambdas) -> Array:
        """Packs the named quantities into the flat input vector.

        Args:
            h: Time step (scalar).
            q_l, v_l: Left sample positions and velocities.
            q_r, v_r, u_r: Right sample positions, velocities and inputs.
            *lambdas: Force parameters of each registered evaluator, in
                registration order.

        Returns:
            Flat input of shape (num_vars,).
        """
        if len(lambdas) != len(self._evaluators):
            raise ValueError(
                f"expected force parameters for {len(self._evaluators)} "
                f"evaluators, got {len(lambdas)}"
            )
        expected = [1, self._nq, self._nv, self._nq, self._nv, self._nu]
        expected += [e.lambda_size for e in self._evaluators]
        parts = [as_float_array(p) for p in (h, q_l, v_l, q_r, v_r, u_r) + lambdas]
        for name, part, size in zip(
                ('h', 'q_l', 'v_l', 'q_r', 'v_r', 'u_r') + ('lambda',) * len(lambdas),
                parts, expected):
            if part.shape != (size,):
                raise ValueError(f"{name} must have shape ({size},), got {part.shape}")
        return jnp.concatenate(parts)

    def decompose_eval_input(self, x: Array) -> TranscriptionInput:
        """Splits the flat input into its named quantities.

        Exact inverse of composite_eval_input().
        """
        x = as_float_array(x)
        if x.shape != (self.num_vars,):
            raise ValueError(
                f"input must have shape ({self.num_vars},), got {x.shape}"
            )
        nq, nv, nu = self._nq, self._nv, self._nu
        offset = 1
        sizes = [nq, nv, nq, nv, nu]
        parts = []
        for size in sizes:
            parts.append(x[offset:offset + size])
            offset += size
        lambdas = []
        for evaluator in self._evaluators:
            lambdas.append(x[offset:offset + evaluator.lambda_size])
            offset += evaluator.lambda_size
        return TranscriptionInput(x[0], *parts, tuple(lambdas))

    def _eval(self, x: Array) -> Array:
        h, q_l, v_l, q_r, v_r, u_r, lambdas = self.decompose_eval_input(x)
        kinematics = self._kinematics_helper.update_kinematics(q_r, v_r)

        mass_matrix = self._model.mass_matrix(kinematics)
        bias = self._model.bias_forces(kinematics)
        generalized_force = jnp.matmul(jnp.asarray(self._model.actuation_matrix), u_r)
        for evaluator, lambda_ in zip(self._evaluators, lambdas):
            generalized_force = generalized_force + evaluator.evaluate(kinematics, lambda_)

        position_residual = q_r - q_l - h * v_r
        velocity_residual = (
            jnp.matmul(mass_matrix, v_r - v_l) - h * (generalized_force - bias)
        )
        return jnp.concatenate([position_residual, velocity_residual])
