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

"""Numerical integration of constrained multibody dynamics.

This module simulates the same implicit (backward) Euler scheme that
DirectTranscriptionConstraint imposes, which is useful for generating
dynamically consistent initial guesses and for checking solutions:

    q_r = q_l + h * v_r
    M(q_r) (v_r - v_l) = h * (B u_r + J(q_r)ᵀ λ_r - c(q_r, v_r))
    φ(q_r) = 0
"""

import logging
from typing import Tuple

import jax.numpy as jnp
import numpy as np

from mbtrajopt.core.types import MultibodyModel
from mbtrajopt.utils.autodiff import value_and_jacfwd

logger = logging.getLogger(__name__)


def implicit_euler_step(
    model: MultibodyModel,
    q_l,
    v_l,
    u_r,
    h: float,
    tolerance: float = 1e-10,
    max_iterations: int = 50,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Take one implicit Euler step of the constrained dynamics.

    Solves for the right velocity v_r and the position constraint forces
    λ_r with Newton's method, starting from v_r = v_l and λ_r = 0. The
    Jacobian of the step equations is computed with JAX forward mode.

    Args:
        model: Multibody model with nq == nv.
        q_l: Left positions, shape (nq,). They need not satisfy φ = 0.
        v_l: Left velocities, shape (nv,).
        u_r: Inputs held over the step, shape (nu,).
        h: Time step.
        tolerance: Convergence threshold on the infinity norm of the
            step equations.
        max_iterations: Maximum number of Newton iterations.

    Returns:
        Tuple (q_r, v_r, λ_r) with λ_r of shape (nc,).

    Raises:
        ValueError: If the model has nq != nv or h is not positive.
        RuntimeError: If Newton's method does not converge.

    Example:
        >>> q1, v1, lam1 = implicit_euler_step(model, q0, v0, u, h=0.01)
    """
    nq, nv = model.num_positions, model.num_velocities
    nc = model.num_position_constraints
    if nq != nv:
        raise ValueError(
            f"implicit Euler step assumes q̇ = v, got nq={nq} and nv={nv}"
        )
    if h <= 0:
        raise ValueError(f"time step must be positive, got {h}")

    q_l = jnp.asarray(q_l, dtype=float)
    v_l = jnp.asarray(v_l, dtype=float)
    u_r = jnp.asarray(u_r, dtype=float)
    actuation = jnp.asarray(model.actuation_matrix)

    def step_equations(z):
        v_r, lambda_r = z[:nv], z[nv:]
        q_r = q_l + h * v_r
        kinematics = model.compute_kinematics(q_r, v_r)
        jacobian = model.position_constraint_jacobian(kinematics)
        force = actuation @ u_r + jacobian.T @ lambda_r - model.bias_forces(kinematics)
        dynamics = model.mass_matrix(kinematics) @ (v_r - v_l) - h * force
        return jnp.concatenate([dynamics, model.position_constraints(kinematics)])

    residual_and_jacobian = value_and_jacfwd(step_equations)
    z = np.concatenate([np.asarray(v_l), np.zeros(nc)])
    error = np.inf
    for iteration in range(max_iterations):
        residual, jacobian = residual_and_jacobian(jnp.asarray(z))
        residual = np.asarray(residual)
        error = np.max(np.abs(residual), initial=0.0)
        if error <= tolerance:
            logger.debug(
                "implicit Euler step converged in %d iterations (error=%.3g)",
                iteration, error,
            )
            v_r, lambda_r = z[:nv], z[nv:]
            return np.asarray(q_l) + h * v_r, v_r, lambda_r
        z = z - np.linalg.solve(np.asarray(jacobian), residual)

    raise RuntimeError(
        f"implicit Euler step did not converge in {max_iterations} iterations "
        f"(error={error:.3g})"
    )
