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

"""Tests for multiple shooting trajectory optimization."""

from absl.testing import absltest
from absl.testing import parameterized

import jax.numpy as jnp
from jax import config
import numpy as np

from mbtrajopt.config import SolverConfig, TranscriptionConfig
from mbtrajopt.core import ProgramPhase, ProgramStateError, SolutionResult
from mbtrajopt.multibody import (
    PlanarLinkage,
    four_bar_configuration,
    four_bar_linkage,
)
from mbtrajopt.transcription import (
    JointLimitComplementarityConstraint,
    JointLimitConstraintForceEvaluator,
    MultibodyMultipleShooting,
    PositionConstraint,
)

config.update('jax_enable_x64', True)

NUM_TIME_SAMPLES = 5
MINIMUM_TIMESTEP = 0.01
MAXIMUM_TIMESTEP = 0.1
TOL = 1e-5


def _control_effort(q, v, u):
    return u @ u


def _four_bar_crank_problem(transcription_config=None):
    """Turns the crank from 0 to π/2 and stops it, minimizing ∫ u² dt."""
    model = four_bar_linkage()
    N = NUM_TIME_SAMPLES
    traj_opt = MultibodyMultipleShooting(
        model, N, MINIMUM_TIMESTEP, MAXIMUM_TIMESTEP, transcription_config)
    q = traj_opt.generalized_positions()
    v = traj_opt.generalized_velocities()
    traj_opt.add_bounding_box_constraint(0.0, 0.0, q[0, 0])
    traj_opt.add_bounding_box_constraint(np.pi / 2, np.pi / 2, q[0, N - 1])
    traj_opt.add_bounding_box_constraint(0.0, 0.0, v.col(N - 1))
    traj_opt.add_running_cost(_control_effort)

    # Seed with an assembled motion of the crank.
    crank_angles = np.linspace(0.0, np.pi / 2, N)
    q_guess = np.stack(
        [four_bar_configuration(model, angle) for angle in crank_angles], axis=1)
    traj_opt.set_initial_trajectory(MAXIMUM_TIMESTEP * np.arange(N), q_guess)
    return model, traj_opt


class FourBarTest(parameterized.TestCase):
    """End-to-end solves of a four-bar linkage."""

    def _check_backward_euler(self, model, traj_opt, extra_forces=None):
        N = NUM_TIME_SAMPLES
        q_sol = traj_opt.get_solution(traj_opt.generalized_positions())
        v_sol = traj_opt.get_solution(traj_opt.generalized_velocities())
        lambda_sol = traj_opt.get_solution(traj_opt.position_constraint_forces())
        u_sol = np.stack([traj_opt.get_solution(traj_opt.input(i)) for i in range(N)], axis=1)
        dt_sol = np.diff(traj_opt.get_sample_times())
        extra_forces = extra_forces or {}

        for i in range(1, N):
            kinematics = model.compute_kinematics(
                jnp.asarray(q_sol[:, i]), jnp.asarray(v_sol[:, i]))
            np.testing.assert_allclose(
                q_sol[:, i] - q_sol[:, i - 1], v_sol[:, i] * dt_sol[i - 1], atol=TOL)
            mass_matrix = np.asarray(model.mass_matrix(kinematics))
            jacobian = np.asarray(model.position_constraint_jacobian(kinematics))
            bias = np.asarray(model.bias_forces(kinematics))
            force = model.actuation_matrix @ u_sol[:, i] + jacobian.T @ lambda_sol[:, i]
            force = force + extra_forces.get(i, 0.0)
            np.testing.assert_allclose(
                mass_matrix @ (v_sol[:, i] - v_sol[:, i - 1]),
                (force - bias) * dt_sol[i - 1],
                rtol=TOL, atol=TOL)

        np.testing.assert_allclose(q_sol[0, 0], 0.0, atol=TOL)
        np.testing.assert_allclose(q_sol[0, N - 1], np.pi / 2, atol=TOL)
        np.testing.assert_allclose(v_sol[:, N - 1], np.zeros(3), atol=TOL)
        return q_sol

    def test_simple_four_bar(self):
        model, traj_opt = _four_bar_crank_problem()
        traj_opt.compile()
        self.assertEqual(traj_opt.phase, ProgramPhase.COMPILED)
        self.assertLen(traj_opt.transcription_constraints, NUM_TIME_SAMPLES - 1)

        result = traj_opt.solve()

        self.assertEqual(result, SolutionResult.SOLUTION_FOUND)
        self.assertEqual(traj_opt.phase, ProgramPhase.SOLVED)
        dt_sol = np.diff(traj_opt.get_sample_times())
        self.assertTrue(np.all(dt_sol <= MAXIMUM_TIMESTEP + TOL))
        self.assertTrue(np.all(dt_sol >= MINIMUM_TIMESTEP - TOL))
        self._check_backward_euler(model, traj_opt)

        # λ_0 acts on no interval.
        np.testing.assert_array_equal(
            traj_opt.get_solution(traj_opt.position_constraint_forces().col(0)), np.zeros(2))

    def test_four_bar_with_joint_limits(self):
        """Joint 1 is limited to [-π/2, π/2] on intervals 0 and 2."""
        tolerance = 1e-8
        model, traj_opt = _four_bar_crank_problem(
            TranscriptionConfig(complementarity_tolerance=tolerance))
        lower, upper = -np.pi / 2, np.pi / 2
        intervals = (0, 2)
        multipliers = [
            traj_opt.add_joint_limit_implicit_constraint(i, 1, 1, lower, upper)
            for i in intervals
        ]
        self.assertEqual(multipliers[0].shape, (2,))
        traj_opt.compile()

        result = traj_opt.solve()

        self.assertEqual(result, SolutionResult.SOLUTION_FOUND)
        q_sol = traj_opt.get_solution(traj_opt.generalized_positions())
        extra_forces = {}
        for interval, lambda_vars in zip(intervals, multipliers):
            lambda_sol = traj_opt.get_solution(lambda_vars)
            joint = q_sol[1, interval + 1]
            self.assertTrue(np.all(lambda_sol >= -TOL))
            self.assertBetween(joint, lower - TOL, upper + TOL)
            self.assertLessEqual((joint - lower) * lambda_sol[0], tolerance + TOL)
            self.assertLessEqual((upper - joint) * lambda_sol[1], tolerance + TOL)
            force = np.zeros(3)
            force[1] = lambda_sol[0] - lambda_sol[1]
            extra_forces[interval + 1] = force
        self._check_backward_euler(model, traj_opt, extra_forces)

    def test_resolve_after_new_initial_guess(self):
        _, traj_opt = _four_bar_crank_problem()
        traj_opt.compile()
        traj_opt.solve()
        first = traj_opt.result
        traj_opt.set_initial_guess(traj_opt.timesteps(), MINIMUM_TIMESTEP)
        traj_opt.solve()
        self.assertIsNot(traj_opt.result, first)
        self.assertEqual(traj_opt.phase, ProgramPhase.SOLVED)


class LoopClosureTest(parameterized.TestCase):
    """Placement of the loop-closure constraints on a four-bar."""

    def _closure_samples(self, traj_opt):
        first_joint = list(traj_opt.generalized_positions().indices[0])
        return [
            first_joint.index(binding.variables.indices[0])
            for binding in traj_opt.program.constraints
            if isinstance(binding.evaluator, PositionConstraint)
        ]

    def test_off_by_default(self):
        _, traj_opt = _four_bar_crank_problem()
        traj_opt.compile()
        self.assertEmpty(self._closure_samples(traj_opt))

    def test_every_sample_with_free_velocities(self):
        traj_opt = MultibodyMultipleShooting(
            four_bar_linkage(), NUM_TIME_SAMPLES, MINIMUM_TIMESTEP, MAXIMUM_TIMESTEP,
            {'enforce_position_constraints': True})
        traj_opt.compile()
        self.assertEqual(self._closure_samples(traj_opt), list(range(NUM_TIME_SAMPLES)))

    def test_sample_at_rest_is_skipped(self):
        # v_{N-1} = 0 gives q_{N-1} = q_{N-2}, so closure at N-2 covers N-1.
        _, traj_opt = _four_bar_crank_problem(
            TranscriptionConfig(enforce_position_constraints=True))
        traj_opt.compile()
        self.assertEqual(
            self._closure_samples(traj_opt), list(range(NUM_TIME_SAMPLES - 1)))


class ActiveJointLimitTest(parameterized.TestCase):
    """An unactuated pendulum held on a joint limit by gravity."""

    @parameterized.named_parameters(
        # Link points along +x, gravity drives q down onto the lower limit.
        ('lower', 0.0, (0.0, 1.0), 0),
        # Link points along -x, gravity drives q up onto the upper limit.
        ('upper', np.pi, (-1.0, 0.0), 1),
    )
    def test_limit_force_holds_pendulum(self, base_angle, limits, active):
        model = PlanarLinkage([1.0], base_angle=base_angle)
        N, h = 3, 0.1
        traj_opt = MultibodyMultipleShooting(
            model, N, h, h, TranscriptionConfig(complementarity_tolerance=1e-8))
        q = traj_opt.generalized_positions()
        v = traj_opt.generalized_velocities()
        traj_opt.add_bounding_box_constraint(0.0, 0.0, q.col(0))
        traj_opt.add_bounding_box_constraint(0.0, 0.0, v.col(0))
        traj_opt.add_bounding_box_constraint(0.0, 0.0, traj_opt.input())
        lower, upper = limits
        multipliers = [
            traj_opt.add_joint_limit_implicit_constraint(i, 0, 0, lower, upper)
            for i in range(N - 1)
        ]
        traj_opt.compile()

        self.assertEqual(traj_opt.solve(), SolutionResult.SOLUTION_FOUND)

        q_sol = traj_opt.get_solution(q)
        v_sol = traj_opt.get_solution(v)
        np.testing.assert_allclose(q_sol, np.zeros((1, N)), atol=TOL)
        np.testing.assert_allclose(v_sol, np.zeros((1, N)), atol=TOL)
        # Gravity torque m·g·l/2 about the pivot.
        holding_force = model.gravity * 0.5
        for i, lambda_vars in enumerate(multipliers):
            lambda_sol = traj_opt.get_solution(lambda_vars)
            self.assertAlmostEqual(lambda_sol[active], holding_force, places=4)
            self.assertAlmostEqual(lambda_sol[1 - active], 0.0, places=4)

            kinematics = model.compute_kinematics(
                jnp.asarray(q_sol[:, i + 1]), jnp.asarray(v_sol[:, i + 1]))
            mass_matrix = np.asarray(model.mass_matrix(kinematics))
            bias = np.asarray(model.bias_forces(kinematics))
            force = np.array([lambda_sol[0] - lambda_sol[1]])
            np.testing.assert_allclose(
                mass_matrix @ (v_sol[:, i + 1] - v_sol[:, i]),
                (force - bias) * h, atol=TOL)


class PendulumTest(parameterized.TestCase):
    """Open chain problems, which need no constraint forces."""

    def setUp(self):
        super().setUp()
        self.model = PlanarLinkage([1.0], damping=0.1)

    def test_equal_timesteps_with_fixed_duration(self):
        N = 6
        traj_opt = MultibodyMultipleShooting(self.model, N, 0.01, 0.2)
        q = traj_opt.generalized_positions()
        v = traj_opt.generalized_velocities()
        traj_opt.add_bounding_box_constraint(0.0, 0.0, q.col(0))
        traj_opt.add_constraint(lambda z: z, v.col(0))
        traj_opt.add_bounding_box_constraint(0.5, 0.5, q.col(N - 1))
        traj_opt.add_bounding_box_constraint(0.0, 0.0, v.col(N - 1))
        traj_opt.add_duration_bounds(0.5, 0.5)
        traj_opt.add_equal_timestep_intervals()
        traj_opt.add_running_cost(_control_effort)
        traj_opt.compile()

        self.assertEqual(traj_opt.solve(), SolutionResult.SOLUTION_FOUND)

        times = traj_opt.get_sample_times()
        np.testing.assert_allclose(times, np.linspace(0.0, 0.5, N), atol=TOL)
        self.assertEqual(
            traj_opt.get_solution(traj_opt.position_constraint_forces()).shape, (0, N))

        q_sol = traj_opt.get_solution(q)
        v_sol = traj_opt.get_solution(v)
        np.testing.assert_allclose(v_sol[:, 0], [0.0], atol=TOL)
        state = traj_opt.reconstruct_state_trajectory()
        np.testing.assert_allclose(state(times[2]), [q_sol[0, 2], v_sol[0, 2]], atol=1e-9)
        inputs = traj_opt.reconstruct_input_trajectory()
        u_sol = traj_opt.get_solution(traj_opt.input())
        midpoint = 0.5 * (times[1] + times[2])
        np.testing.assert_allclose(
            inputs(midpoint), 0.5 * (u_sol[:, 1] + u_sol[:, 2]), atol=1e-9)

    @parameterized.named_parameters(
        ('left', 'left', 0.1 * 1.0 + 0.2 * 4.0),
        ('trapezoidal', 'trapezoidal', 0.1 * (1.0 + 4.0) / 2 + 0.2 * (4.0 + 9.0) / 2),
    )
    def test_running_cost_quadrature(self, quadrature, expected):
        traj_opt = MultibodyMultipleShooting(
            self.model, 3, 0.01, 1.0, {'running_cost_quadrature': quadrature})
        traj_opt.add_running_cost(_control_effort)
        traj_opt.set_initial_guess(traj_opt.timesteps(), [0.1, 0.2])
        traj_opt.set_initial_guess(traj_opt.input(), [[1.0, 2.0, 3.0]])
        program = traj_opt.program
        self.assertAlmostEqual(program.evaluate_cost(program.initial_guess), expected)

    def test_final_cost(self):
        traj_opt = MultibodyMultipleShooting(self.model, 3, 0.01, 1.0)
        traj_opt.add_final_cost(lambda q, v: 2.0 * q @ q + v @ v)
        traj_opt.set_initial_guess(traj_opt.generalized_positions(), [[0.0, 0.0, 3.0]])
        traj_opt.set_initial_guess(traj_opt.generalized_velocities(), [[5.0, 5.0, 1.0]])
        program = traj_opt.program
        self.assertAlmostEqual(program.evaluate_cost(program.initial_guess), 19.0)

    def test_timestep_guess_is_midpoint(self):
        traj_opt = MultibodyMultipleShooting(self.model, 4, 0.02, 0.1)
        program = traj_opt.program
        np.testing.assert_allclose(
            program.get_solution(traj_opt.timesteps(), program.initial_guess),
            np.full(3, 0.06))

    def test_set_initial_trajectory(self):
        traj_opt = MultibodyMultipleShooting(self.model, 3, 0.01, 1.0)
        traj_opt.set_initial_trajectory(
            [0.0, 1.0], [[0.0, 1.0]], u_samples=[[2.0, 4.0]])
        program = traj_opt.program
        guess = program.initial_guess
        np.testing.assert_allclose(program.get_solution(traj_opt.timesteps(), guess), [0.5, 0.5])
        np.testing.assert_allclose(
            program.get_solution(traj_opt.generalized_positions(), guess), [[0.0, 0.5, 1.0]])
        np.testing.assert_allclose(
            program.get_solution(traj_opt.generalized_velocities(), guess), [[1.0, 1.0, 1.0]])
        np.testing.assert_allclose(
            program.get_solution(traj_opt.input(), guess), [[2.0, 3.0, 4.0]])

    def test_set_initial_trajectory_validation(self):
        traj_opt = MultibodyMultipleShooting(self.model, 3, 0.01, 1.0)
        with self.assertRaises(ValueError):
            traj_opt.set_initial_trajectory([0.0], [[0.0]])
        with self.assertRaises(ValueError):
            traj_opt.set_initial_trajectory([0.0, 1.0], [[0.0, 1.0, 2.0]])

    def test_equal_timesteps_binding(self):
        traj_opt = MultibodyMultipleShooting(self.model, 3, 0.01, 1.0)
        binding = traj_opt.add_equal_timestep_intervals()
        np.testing.assert_allclose(binding.evaluator.eval(np.array([0.1, 0.3])), [0.2])
        two_samples = MultibodyMultipleShooting(self.model, 2, 0.01, 1.0)
        self.assertIsNone(two_samples.add_equal_timestep_intervals())


class PreconditionTest(parameterized.TestCase):
    """Tests for argument validation and phase errors."""

    def setUp(self):
        super().setUp()
        self.model = four_bar_linkage()

    @parameterized.named_parameters(
        ('one_sample', 1, 0.01, 0.1),
        ('zero_minimum', 5, 0.0, 0.1),
        ('crossed_bounds', 5, 0.2, 0.1),
    )
    def test_invalid_construction(self, num_time_samples, minimum, maximum):
        with self.assertRaises(ValueError):
            MultibodyMultipleShooting(self.model, num_time_samples, minimum, maximum)

    def test_unknown_quadrature(self):
        with self.assertRaises(ValueError):
            MultibodyMultipleShooting(
                self.model, 5, 0.01, 0.1, {'running_cost_quadrature': 'simpson'})

    @parameterized.parameters((-1,), (4,))
    def test_interval_index_out_of_range(self, interval):
        traj_opt = MultibodyMultipleShooting(self.model, 5, 0.01, 0.1)
        with self.assertRaises(ValueError):
            traj_opt.add_joint_limit_implicit_constraint(interval, 1, 1, -1.0, 1.0)

    def test_joint_index_out_of_range(self):
        traj_opt = MultibodyMultipleShooting(self.model, 5, 0.01, 0.1)
        with self.assertRaises(ValueError):
            traj_opt.add_joint_limit_implicit_constraint(0, 3, 1, -1.0, 1.0)

    def test_sample_index_out_of_range(self):
        traj_opt = MultibodyMultipleShooting(self.model, 5, 0.01, 0.1)
        with self.assertRaises(ValueError):
            traj_opt.input(5)

    def test_lambda_variables_size_mismatch(self):
        traj_opt = MultibodyMultipleShooting(self.model, 5, 0.01, 0.1)
        evaluator = JointLimitConstraintForceEvaluator(self.model, 1, 1, -1.0, 1.0)
        wrong = traj_opt.program.new_continuous_variables(3)
        with self.assertRaises(ValueError):
            traj_opt.add_generalized_constraint_force_evaluator(0, evaluator, wrong)

    def test_constraint_instance_with_bounds_rejected(self):
        traj_opt = MultibodyMultipleShooting(self.model, 5, 0.01, 0.1)
        q = traj_opt.generalized_positions()
        constraint = JointLimitComplementarityConstraint(-1.0, 1.0)
        with self.assertRaises(ValueError):
            traj_opt.add_constraint(constraint, q[:, 0], lower=0.0)

    def test_structure_frozen_after_compile(self):
        traj_opt = MultibodyMultipleShooting(self.model, 5, 0.01, 0.1)
        traj_opt.compile()
        q = traj_opt.generalized_positions()
        with self.assertRaises(ProgramStateError):
            traj_opt.add_bounding_box_constraint(0.0, 0.0, q[0, 0])
        with self.assertRaises(ProgramStateError):
            traj_opt.add_running_cost(_control_effort)
        with self.assertRaises(ProgramStateError):
            traj_opt.add_joint_limit_implicit_constraint(0, 1, 1, -1.0, 1.0)
        with self.assertRaises(ProgramStateError):
            traj_opt.compile()
        # The initial guess is not structural.
        traj_opt.set_initial_guess(q[0, 0], 0.1)

    def test_program_frozen_after_compile(self):
        traj_opt = MultibodyMultipleShooting(self.model, 5, 0.01, 0.1)
        traj_opt.compile()
        num_vars = traj_opt.program.num_vars
        with self.assertRaises(ProgramStateError):
            traj_opt.program.new_continuous_variables(2)
        with self.assertRaises(ProgramStateError):
            traj_opt.program.add_cost(jnp.sum, traj_opt.timesteps())
        self.assertEqual(traj_opt.program.num_vars, num_vars)

    def test_solve_before_compile(self):
        traj_opt = MultibodyMultipleShooting(self.model, 5, 0.01, 0.1)
        with self.assertRaises(ProgramStateError):
            traj_opt.solve()

    def test_solution_before_solve(self):
        traj_opt = MultibodyMultipleShooting(self.model, 5, 0.01, 0.1)
        traj_opt.compile()
        self.assertIsNone(traj_opt.result)
        with self.assertRaises(ProgramStateError):
            traj_opt.get_solution(traj_opt.generalized_positions())
        with self.assertRaises(ProgramStateError):
            traj_opt.get_sample_times()
        with self.assertRaises(ProgramStateError):
            traj_opt.reconstruct_state_trajectory()

    def test_config_from_dict(self):
        traj_opt = MultibodyMultipleShooting(
            self.model, 5, 0.01, 0.1, {'solver': {'method': 'trust-constr', 'maxiter': 10}})
        self.assertIsInstance(traj_opt.config.solver, SolverConfig)
        self.assertEqual(traj_opt.config.solver.maxiter, 10)
        self.assertEqual(traj_opt.config.solver.to_dict()['maxiter'], 10)


if __name__ == '__main__':
    absltest.main()
