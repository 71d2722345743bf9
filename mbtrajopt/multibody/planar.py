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

"""Planar linkages with revolute joints, written in JAX.

The model is a serial chain of uniform slender links in the x-y plane.
Generalized positions are relative joint angles, so q̇ = v. Gravity acts
along -y. Optionally the tip of the chain is pinned to a ground anchor,
which closes the kinematic loop with two holonomic constraints; three links
pinned this way form a four-bar linkage.

All quantities are computed with jax.numpy, so every method can be traced
by forward-mode differentiation.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array


@dataclass(frozen=True)
class PlanarKinematics:
    """Kinematic state of a planar linkage.

    Attributes:
        q: Joint angles, shape (n,).
        v: Joint velocities, shape (n,), or None for position-only state.
        link_angles: Absolute link angles, shape (n,).
        joint_positions: Link start points followed by the chain tip,
            shape (n+1, 2).
        com_positions: Link centers of mass, shape (n, 2).
        com_jacobians: d(com_positions)/dq, shape (n, 2, n).
        tip_jacobian: d(tip)/dq, shape (2, n).
    """

    q: Array
    v: Optional[Array]
    link_angles: Array
    joint_positions: Array
    com_positions: Array
    com_jacobians: Array
    tip_jacobian: Array


class PlanarLinkage:
    """Serial planar chain, optionally closed into a loop.

    Implements the MultibodyModel protocol.

    Attributes:
        link_lengths: Link lengths, shape (n,).
        link_masses: Link masses, shape (n,).
        link_inertias: Rotational inertias about the centers of mass.
        gravity: Gravitational acceleration (acts along -y).
        damping: Viscous damping coefficient applied to every joint.
        base_position: Position of the first joint.
        base_angle: Absolute angle of the first link when q[0] = 0.
        loop_anchor: Ground point the chain tip is pinned to, or None.
        actuation_matrix: Selection of actuated joints, shape (n, nu).

    Example:
        >>> acrobot = PlanarLinkage([1.0, 1.0], actuated_joints=[1])
        >>> kin = acrobot.compute_kinematics(jnp.zeros(2), jnp.zeros(2))
        >>> acrobot.mass_matrix(kin).shape
        (2, 2)
    """

    def __init__(
        self,
        link_lengths: Sequence[float],
        link_masses: Optional[Sequence[float]] = None,
        actuated_joints: Optional[Sequence[int]] = None,
        gravity: float = 9.81,
        damping: float = 0.0,
        base_position: Sequence[float] = (0.0, 0.0),
        base_angle: float = 0.0,
        loop_anchor: Optional[Sequence[float]] = None,
    ):
        self.link_lengths = np.asarray(link_lengths, dtype=float)
        n = self.link_lengths.size
        if n < 1 or np.any(self.link_lengths <= 0):
            raise ValueError(f"link_lengths must be positive, got {link_lengths}")
        if link_masses is None:
            link_masses = np.ones(n)
        self.link_masses = np.asarray(link_masses, dtype=float)
        if self.link_masses.shape != (n,) or np.any(self.link_masses <= 0):
            raise ValueError(f"link_masses must be {n} positive values, got {link_masses}")
        self.link_inertias = self.link_masses * self.link_lengths**2 / 12.0
        self.gravity = float(gravity)
        self.damping = float(damping)
        self.base_position = np.asarray(base_position, dtype=float)
        self.base_angle = float(base_angle)
        self.loop_anchor = None if loop_anchor is None else np.asarray(loop_anchor, dtype=float)

        if actuated_joints is None:
            actuated_joints = range(n)
        actuated_joints = list(actuated_joints)
        if any(j < 0 or j >= n for j in actuated_joints):
            raise ValueError(f"actuated_joints must lie in [0, {n}), got {actuated_joints}")
        self.actuation_matrix = np.zeros((n, len(actuated_joints)))
        self.actuation_matrix[actuated_joints, np.arange(len(actuated_joints))] = 1.0

        self.num_positions = n
        self.num_velocities = n
        self.num_actuators = len(actuated_joints)
        self.num_position_constraints = 0 if self.loop_anchor is None else 2

        # Absolute angle of link i is the sum of joint angles 0..i.
        self._angle_map = np.tril(np.ones((n, n)))
        self._rotational_mass = self._angle_map.T @ np.diag(self.link_inertias) @ self._angle_map

    @property
    def num_links(self) -> int:
        return self.link_lengths.size

    def _geometry(self, q: Array):
        lengths = jnp.asarray(self.link_lengths)[:, None]
        angles = self.base_angle + jnp.matmul(jnp.asarray(self._angle_map), q)
        directions = jnp.stack([jnp.cos(angles), jnp.sin(angles)], axis=-1)
        segments = lengths * directions
        joints = jnp.asarray(self.base_position) + jnp.concatenate(
            [jnp.zeros((1, 2), dtype=segments.dtype), jnp.cumsum(segments, axis=0)]
        )
        coms = joints[:-1] + 0.5 * lengths * directions
        return angles, joints, coms

    def _com_positions(self, q: Array) -> Array:
        return self._geometry(q)[2]

    def _tip_position(self, q: Array) -> Array:
        return self._geometry(q)[1][-1]

    def compute_kinematics(self, q: Array, v: Optional[Array] = None) -> PlanarKinematics:
        """Computes link geometry and Jacobians at q (velocities are carried along)."""
        q = jnp.asarray(q)
        if q.shape != (self.num_positions,):
            raise ValueError(f"q must have shape ({self.num_positions},), got {q.shape}")
        if v is not None:
            v = jnp.asarray(v)
            if v.shape != (self.num_velocities,):
                raise ValueError(f"v must have shape ({self.num_velocities},), got {v.shape}")
        angles, joints, coms = self._geometry(q)
        return PlanarKinematics(
            q=q,
            v=v,
            link_angles=angles,
            joint_positions=joints,
            com_positions=coms,
            com_jacobians=jax.jacfwd(self._com_positions)(q),
            tip_jacobian=jax.jacfwd(self._tip_position)(q),
        )

    def _mass_matrix_from_jacobians(self, com_jacobians: Array) -> Array:
        translational = jnp.einsum(
            'i,iaj,iak->jk', self.link_masses, com_jacobians, com_jacobians
        )
        return translational + self._rotational_mass

    def _mass_matrix_at(self, q: Array) -> Array:
        return self._mass_matrix_from_jacobians(jax.jacfwd(self._com_positions)(q))

    def mass_matrix(self, kinematics: PlanarKinematics) -> Array:
        """Returns M(q) = Σ mᵢ JᵢᵀJᵢ + Σ Iᵢ ωᵢᵀωᵢ."""
        return self._mass_matrix_from_jacobians(kinematics.com_jacobians)

    def bias_forces(self, kinematics: PlanarKinematics) -> Array:
        """Returns c(q, v) = Ṁv − ∂T/∂q + ∂V/∂q + damping·v."""
        if kinematics.v is None:
            raise ValueError("bias forces need velocities; compute kinematics with v")
        q, v = kinematics.q, kinematics.v

        _, mass_matrix_dot = jax.jvp(self._mass_matrix_at, (q,), (v,))
        kinetic_energy = lambda qq: 0.5 * v @ self._mass_matrix_at(qq) @ v
        coriolis = mass_matrix_dot @ v - jax.grad(kinetic_energy)(q)
        gravity = self.gravity * jnp.einsum(
            'i,ij->j', self.link_masses, kinematics.com_jacobians[:, 1, :]
        )
        return coriolis + gravity + self.damping * v

    def position_constraints(self, kinematics: PlanarKinematics) -> Array:
        """Returns the tip-to-anchor offset φ(q), shape (nc,)."""
        if self.loop_anchor is None:
            return jnp.zeros((0,), dtype=kinematics.q.dtype)
        return kinematics.joint_positions[-1] - self.loop_anchor

    def position_constraint_jacobian(self, kinematics: PlanarKinematics) -> Array:
        """Returns ∂φ/∂q, shape (nc, nv)."""
        if self.loop_anchor is None:
            return jnp.zeros((0, self.num_velocities), dtype=kinematics.q.dtype)
        return kinematics.tip_jacobian


def four_bar_linkage(
    crank_length: float = 1.0,
    coupler_length: float = 2.0,
    rocker_length: float = 2.0,
    ground_length: float = 2.0,
    link_masses: Sequence[float] = (1.0, 1.0, 1.0),
    gravity: float = 9.81,
    damping: float = 0.0,
) -> PlanarLinkage:
    """Creates a four-bar linkage with an actuated crank.

    The crank pivots at the origin, the rocker at (ground_length, 0). The
    default proportions form a Grashof crank-rocker, so the crank can turn
    a full revolution.

    Returns:
        PlanarLinkage with nq = nv = 3, nu = 1 and nc = 2.
    """
    return PlanarLinkage(
        [crank_length, coupler_length, rocker_length],
        link_masses=link_masses,
        actuated_joints=[0],
        gravity=gravity,
        damping=damping,
        loop_anchor=(ground_length, 0.0),
    )


def four_bar_configuration(
    model: PlanarLinkage,
    crank_angle: float,
    elbow_up: bool = True,
) -> np.ndarray:
    """Assembles the loop of a four-bar linkage for a given crank angle.

    Args:
        model: Three-link PlanarLinkage with a loop anchor.
        crank_angle: Joint angle q[0].
        elbow_up: Picks the assembly with the coupler-rocker joint to the
            left of the line from the crank tip to the anchor.

    Returns:
        Joint angles q of shape (3,) with φ(q) = 0.

    Raises:
        ValueError: If the model is not a four-bar or cannot be assembled.
    """
    if model.num_links != 3 or model.loop_anchor is None:
        raise ValueError("four_bar_configuration needs a closed three-link linkage")
    crank, coupler, rocker = model.link_lengths

    theta0 = model.base_angle + crank_angle
    crank_tip = model.base_position + crank * np.array([np.cos(theta0), np.sin(theta0)])
    offset = model.loop_anchor - crank_tip
    distance = np.linalg.norm(offset)
    if distance > coupler + rocker or distance < abs(coupler - rocker) or distance == 0.0:
        raise ValueError(f"four-bar cannot be assembled at crank angle {crank_angle}")

    along = (coupler**2 - rocker**2 + distance**2) / (2.0 * distance)
    height = np.sqrt(max(coupler**2 - along**2, 0.0))
    unit = offset / distance
    normal = np.array([-unit[1], unit[0]])
    sign = 1.0 if elbow_up else -1.0
    elbow = crank_tip + along * unit + sign * height * normal

    theta1 = np.arctan2(*(elbow - crank_tip)[::-1])
    theta2 = np.arctan2(*(model.loop_anchor - elbow)[::-1])
    wrap = lambda angle: np.arctan2(np.sin(angle), np.cos(angle))
    return np.array([crank_angle, wrap(theta1 - theta0), wrap(theta2 - theta1)])
