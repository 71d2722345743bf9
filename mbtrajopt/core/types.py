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

"""Type definitions for multibody trajectory optimization."""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, Optional, Protocol, Tuple, runtime_checkable

from jax import Array


# Type aliases for common shapes
# Positions: (nq,) array
# Velocities: (nv,) array
# Inputs: (nu,) array
# Position constraint forces: (nc,) array

KinematicsState = Any


class SolutionResult(Enum):
    """Status codes reported by the NLP solver backends."""
    SOLUTION_FOUND = auto()          # Converged to a feasible solution
    ITERATION_LIMIT = auto()         # Reached maximum iterations
    INFEASIBLE_CONSTRAINTS = auto()  # Constraints could not be satisfied
    UNBOUNDED = auto()               # Cost is unbounded below
    UNKNOWN_ERROR = auto()           # Any other failure


class ProgramPhase(Enum):
    """Construction phases of a multiple shooting program.

    BUILDING -> COMPILED -> SOLVED. Structure may only change while
    BUILDING; solutions may only be read once SOLVED.
    """
    BUILDING = auto()
    COMPILED = auto()
    SOLVED = auto()


class ProgramStateError(RuntimeError):
    """Raised when an operation is invalid in the current program phase."""


@runtime_checkable
class MultibodyModel(Protocol):
    """Protocol for the rigid-body dynamics of a multibody system.

    Every method must be traceable by JAX so that the transcription
    residual can be differentiated in forward mode.

    Attributes:
        num_positions: Number of generalized positions (nq).
        num_velocities: Number of generalized velocities (nv).
        num_actuators: Number of actuators (nu).
        num_position_constraints: Number of holonomic constraints (nc).
        actuation_matrix: Map from inputs to generalized forces (nv, nu).
    """

    num_positions: int
    num_velocities: int
    num_actuators: int
    num_position_constraints: int
    actuation_matrix: Array

    def compute_kinematics(
        self,
        q: Array,
        v: Optional[Array] = None,
    ) -> KinematicsState:
        """Computes the kinematic state for positions q (and velocities v)."""
        ...

    def mass_matrix(self, kinematics: KinematicsState) -> Array:
        """Returns the mass matrix M(q) of shape (nv, nv)."""
        ...

    def bias_forces(self, kinematics: KinematicsState) -> Array:
        """Returns the bias term c(q, v) of shape (nv,).

        The equations of motion read M(q) v̇ + c(q, v) = B u + Jᵀλ.
        """
        ...

    def position_constraints(self, kinematics: KinematicsState) -> Array:
        """Returns the holonomic constraint values φ(q) of shape (nc,)."""
        ...

    def position_constraint_jacobian(self, kinematics: KinematicsState) -> Array:
        """Returns ∂φ/∂q mapped to velocities, shape (nc, nv)."""
        ...


# Bounds type
Bounds = Tuple[Array, Array]  # (lower, upper)
