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

"""Multiple shooting trajectory optimization for constrained multibody systems.

MultibodyMultipleShooting lays out the decision variables of a trajectory
with N samples (time steps, positions, velocities, inputs and position
constraint forces), collects the user's costs and constraints, and on
compile() ties consecutive samples together with one
DirectTranscriptionConstraint per interval.

Example:
    >>> model = four_bar_linkage()
    >>> traj_opt = MultibodyMultipleShooting(model, 5, 0.01, 0.1)
    >>> q = traj_opt.generalized_positions()
    >>> traj_opt.add_bounding_box_constraint(0.0, 0.0, q[0, 0])
    >>> traj_opt.add_bounding_box_constraint(np.pi / 2, np.pi / 2, q[0, 4])
    >>> traj_opt.add_running_cost(lambda q, v, u: u @ u)
    >>> traj_opt.compile()
    >>> status = traj_opt.solve()
    >>> q_sol = traj_opt.get_solution(q)
"""

import dataclasses
import logging
from typing import Callable, List, Optional, Sequence, Tuple, Union

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array
from scipy import interpolate

from mbtrajopt.config import TranscriptionConfig
from mbtrajopt.core.constraint import Constraint, FunctionConstraint
from mbtrajopt.core.program import MathematicalProgram
from mbtrajopt.core.result import ProgramResult
from mbtrajopt.core.types import (
    MultibodyModel,
    ProgramPhase,
    ProgramStateError,
    SolutionResult,
)
from mbtrajopt.core.variables import (
    DecisionVariables,
    Expression,
    concatenate_variables,
)
from mbtrajopt.solvers import get_solver
from mbtrajopt.solvers.base import NLPFormulation
from mbtrajopt.transcription.constraints import (
    JointLimitComplementarityConstraint,
    PositionConstraint,
)
from mbtrajopt.transcription.direct_transcription import DirectTranscriptionConstraint
from mbtrajopt.transcription.force_evaluators import (
    GeneralizedConstraintForceEvaluator,
    JointLimitConstraintForceEvaluator,
    PositionConstraintForceEvaluator,
)

logger = logging.getLogger(__name__)

VariableList = Union[DecisionVariables, Sequence[DecisionVariables]]


def _running_cost_term(
    running_cost: Callable,
    sizes: Tuple[int, int, int],
    trapezoidal: bool,
) -> Callable[[Array], Array]:
    """Quadrature of running_cost over one interval.

    The local input is [h, q_i, v_i, u_i] for the left rule and
    [h, q_i, v_i, u_i, q_{i+1}, v_{i+1}, u_{i+1}] for the trapezoidal rule.
    """
    splits = np.cumsum(sizes)[:-1]

    def sample_cost(z):
        q, v, u = jnp.split(z, splits)
        return jnp.reshape(running_cost(q, v, u), ())

    def term(x):
        h, samples = x[0], x[1:]
        if trapezoidal:
            left, right = jnp.split(samples, 2)
            return 0.5 * h * (sample_cost(left) + sample_cost(right))
        return h * sample_cost(samples)

    return term


class MultibodyMultipleShooting:
    """Direct transcription of a multibody trajectory optimization problem.

    Decision variables:
        h: Time steps, shape (N-1,), bounded by [minimum, maximum].
        q: Generalized positions, shape (nq, N).
        v: Generalized velocities, shape (nv, N).
        u: Inputs, shape (nu, N).
        λ: Position constraint forces, shape (nc, N). λ_i acts over the
            interval ending at sample i, so λ_0 acts on no interval and is
            fixed to zero.
        plus the force parameters of evaluators registered on intervals.

    The object moves through the phases BUILDING -> COMPILED -> SOLVED.
    Structure (variables, costs, constraints, evaluators) can only change
    while BUILDING; compile() freezes it, including the underlying
    MathematicalProgram. solve() may be called repeatedly, for example after
    changing the initial guess.

    The default SolverConfig.feasibility_tolerance of 1e-6 assumes double
    precision. Enable jax_enable_x64 before building the program, or raise
    the tolerance to about 1e-3 for float32, otherwise converged solves may
    be reported as INFEASIBLE_CONSTRAINTS.

    Attributes:
        model: The multibody model (borrowed).
        num_time_samples: Number of samples N.
        minimum_timestep: Lower bound on every time step.
        maximum_timestep: Upper bound on every time step.
        config: Transcription configuration.
    """

    def __init__(
        self,
        model: MultibodyModel,
        num_time_samples: int,
        minimum_timestep: float,
        maximum_timestep: float,
        config: Optional[Union[TranscriptionConfig, dict]] = None,
    ):
        """Initialize the program and allocate all samples.

        Args:
            model: Multibody model with nq == nv.
            num_time_samples: Number of samples N >= 2.
            minimum_timestep: Positive lower bound on the time steps.
            maximum_timestep: Upper bound on the time steps.
            config: TranscriptionConfig, or a dict of its fields.

        Raises:
            ValueError: On invalid sample count or time step bounds.
        """
        if num_time_samples < 2:
            raise ValueError(f"num_time_samples must be at least 2, got {num_time_samples}")
        if minimum_timestep <= 0:
            raise ValueError(f"minimum_timestep must be positive, got {minimum_timestep}")
        if minimum_timestep > maximum_timestep:
            raise ValueError(
                f"minimum_timestep ({minimum_timestep}) must not exceed "
                f"maximum_timestep ({maximum_timestep})"
            )
        if model.num_positions != model.num_velocities:
            raise ValueError(
                f"multiple shooting assumes q̇ = v, but the model has "
                f"{model.num_positions} positions and {model.num_velocities} velocities"
            )
        if isinstance(config, dict):
            config = TranscriptionConfig(**config)

        self.model = model
        self.num_time_samples = num_time_samples
        self.minimum_timestep = float(minimum_timestep)
        self.maximum_timestep = float(maximum_timestep)
        self.config = config or TranscriptionConfig()

        self._nq = model.num_positions
        self._nv = model.num_velocities
        self._nu = model.num_actuators
        self._nc = model.num_position_constraints

        N = num_time_samples
        self._program = MathematicalProgram()
        self._h = self._program.new_continuous_variables(N - 1, name='h')
        self._program.add_bounding_box_constraint(
            self.minimum_timestep, self.maximum_timestep, self._h)
        self._program.set_initial_guess(
            self._h, 0.5 * (self.minimum_timestep + self.maximum_timestep))
        self._q = self._program.new_continuous_variables(self._nq, N, name='q')
        self._v = self._program.new_continuous_variables(self._nv, N, name='v')
        self._u = self._program.new_continuous_variables(self._nu, N, name='u')
        self._lambda = self._program.new_continuous_variables(self._nc, N, name='lambda')
        if self._nc > 0:
            self._program.add_bounding_box_constraint(0.0, 0.0, self._lambda.col(0))

        # Evaluators registered per interval, with the variables feeding them.
        self._interval_evaluators: List[
            List[Tuple[GeneralizedConstraintForceEvaluator, DecisionVariables]]
        ] = [[] for _ in range(N - 1)]
        self._transcription_constraints: List[DirectTranscriptionConstraint] = []
        self._formulation: Optional[NLPFormulation] = None
        self._result: Optional[ProgramResult] = None
        self._phase = ProgramPhase.BUILDING

    # Accessors

    @property
    def phase(self) -> ProgramPhase:
        return self._phase

    @property
    def program(self) -> MathematicalProgram:
        """The underlying MathematicalProgram."""
        return self._program

    @property
    def result(self) -> Optional[ProgramResult]:
        """Result of the most recent solve(), or None."""
        return self._result

    @property
    def transcription_constraints(self) -> List[DirectTranscriptionConstraint]:
        """One constraint per interval, available after compile()."""
        return list(self._transcription_constraints)

    def generalized_positions(self) -> DecisionVariables:
        return self._q

    def generalized_velocities(self) -> DecisionVariables:
        return self._v

    def input(self, index: Optional[int] = None) -> DecisionVariables:
        """Inputs of sample index, shape (nu,), or of all samples (nu, N)."""
        if index is None:
            return self._u
        self._check_sample_index(index)
        return self._u.col(index)

    def position_constraint_forces(self) -> DecisionVariables:
        return self._lambda

    def timesteps(self) -> DecisionVariables:
        return self._h

    # Building

    def add_bounding_box_constraint(self, lower, upper, variables: DecisionVariables):
        """Bounds variables elementwise; lower and upper broadcast."""
        self._require_building('add_bounding_box_constraint')
        self._program.add_bounding_box_constraint(lower, upper, variables)

    def add_constraint(
        self,
        constraint: Union[Constraint, Callable[[Array], Array]],
        variables: VariableList,
        lower=None,
        upper=None,
    ):
        """Adds a path or boundary constraint on the given variables.

        Args:
            constraint: A Constraint, or a jax.numpy function of the flat
                (column-major) concatenation of variables.
            variables: Variables feeding the constraint.
            lower: Lower bound for a function constraint (default 0).
            upper: Upper bound for a function constraint (default 0).

        Returns:
            The program Binding.
        """
        self._require_building('add_constraint')
        if isinstance(variables, DecisionVariables):
            variables = [variables]
        if not isinstance(constraint, Constraint):
            num_vars = concatenate_variables(variables).size
            shape = jax.eval_shape(constraint, jnp.zeros(num_vars)).shape
            constraint = FunctionConstraint(
                constraint,
                num_constraints=int(np.prod(shape, dtype=np.int64)),
                num_vars=num_vars,
                lower_bound=lower,
                upper_bound=upper,
            )
        elif lower is not None or upper is not None:
            raise ValueError("bounds of a Constraint instance are set on the constraint")
        return self._program.add_constraint(constraint, variables)

    def add_running_cost(self, running_cost: Callable[[Array, Array, Array], Array]):
        """Adds ∫ g(q, v, u) dt, discretized by the configured quadrature.

        Args:
            running_cost: jax.numpy function (q, v, u) -> scalar.
        """
        self._require_building('add_running_cost')
        trapezoidal = self.config.running_cost_quadrature == 'trapezoidal'
        term = _running_cost_term(
            running_cost, (self._nq, self._nv, self._nu), trapezoidal)
        name = getattr(running_cost, '__name__', 'running_cost')
        for i in range(self.num_time_samples - 1):
            variables = [self._h[i], self._q.col(i), self._v.col(i), self._u.col(i)]
            if trapezoidal:
                variables += [self._q.col(i + 1), self._v.col(i + 1), self._u.col(i + 1)]
            self._program.add_cost(term, variables, f'{name}[{i}]')

    def add_final_cost(self, final_cost: Callable[[Array, Array], Array]):
        """Adds final_cost(q_{N-1}, v_{N-1})."""
        self._require_building('add_final_cost')
        nq = self._nq

        def term(x):
            return jnp.reshape(final_cost(x[:nq], x[nq:]), ())

        last = self.num_time_samples - 1
        self._program.add_cost(
            term, [self._q.col(last), self._v.col(last)],
            getattr(final_cost, '__name__', 'final_cost'),
        )

    def add_duration_bounds(self, lower: float, upper: float):
        """Bounds the total duration Σ h_i to [lower, upper]."""
        self._require_building('add_duration_bounds')
        constraint = FunctionConstraint(
            jnp.sum, num_constraints=1, num_vars=self.num_time_samples - 1,
            lower_bound=lower, upper_bound=upper, description='duration',
        )
        return self._program.add_constraint(constraint, self._h)

    def add_equal_timestep_intervals(self):
        """Constrains all time steps to be equal."""
        self._require_building('add_equal_timestep_intervals')
        num_steps = self.num_time_samples - 1
        if num_steps < 2:
            return None
        constraint = FunctionConstraint(
            lambda h: h[1:] - h[:-1], num_constraints=num_steps - 1,
            num_vars=num_steps, description='equal_timesteps',
        )
        return self._program.add_constraint(constraint, self._h)

    def add_generalized_constraint_force_evaluator(
        self,
        interval_index: int,
        evaluator: GeneralizedConstraintForceEvaluator,
        lambda_variables: Optional[DecisionVariables] = None,
    ) -> DecisionVariables:
        """Adds an extra generalized force to the dynamics of one interval.

        The force is evaluated at the interval's right sample and enters
        the velocity residual next to B·u and Jᵀλ.

        Args:
            interval_index: Interval in [0, N-1).
            evaluator: Evaluator built for this model; the program takes
                ownership.
            lambda_variables: Force parameters feeding the evaluator. New
                variables are created when None.

        Returns:
            The force parameter variables, shape (lambda_size,).
        """
        self._require_building('add_generalized_constraint_force_evaluator')
        self._check_interval_index(interval_index)
        if evaluator.num_outputs != self._nv:
            raise ValueError(
                f"evaluator produces {evaluator.num_outputs} generalized forces, "
                f"expected {self._nv}"
            )
        if evaluator.num_vars != self._nq + evaluator.lambda_size:
            raise ValueError(
                f"evaluator expects {evaluator.num_vars - evaluator.lambda_size} "
                f"positions, the model has {self._nq}"
            )
        if lambda_variables is None:
            lambda_variables = self._program.new_continuous_variables(
                evaluator.lambda_size,
                name=f'{type(evaluator).__name__}[{interval_index}]',
            )
        elif lambda_variables.size != evaluator.lambda_size:
            raise ValueError(
                f"evaluator expects {evaluator.lambda_size} force parameters, "
                f"got {lambda_variables.size} variables"
            )
        self._interval_evaluators[interval_index].append((evaluator, lambda_variables))
        return lambda_variables

    def add_joint_limit_implicit_constraint(
        self,
        interval_index: int,
        joint_position_index: int,
        joint_velocity_index: int,
        lower_limit: float,
        upper_limit: float,
    ) -> DecisionVariables:
        """Adds a joint limit with its implicit constraint force.

        On the interval's right sample the joint position is bounded to
        [lower_limit, upper_limit] and a force λ_lower − λ_upper acts on the
        joint, with λ >= 0 and each multiplier vanishing unless the joint
        sits at its limit (up to config.complementarity_tolerance).

        Returns:
            The multipliers [λ_lower, λ_upper], shape (2,).
        """
        self._require_building('add_joint_limit_implicit_constraint')
        self._check_interval_index(interval_index)
        evaluator = JointLimitConstraintForceEvaluator(
            self.model, joint_position_index, joint_velocity_index,
            lower_limit, upper_limit,
        )
        multipliers = self._program.new_continuous_variables(
            2, name=f'joint_limit_lambda[{interval_index}]')
        self.add_generalized_constraint_force_evaluator(
            interval_index, evaluator, multipliers)

        joint_position = self._q[joint_position_index, interval_index + 1]
        self._program.add_bounding_box_constraint(0.0, np.inf, multipliers)
        self._program.add_bounding_box_constraint(lower_limit, upper_limit, joint_position)
        self._program.add_constraint(
            JointLimitComplementarityConstraint(
                lower_limit, upper_limit, self.config.complementarity_tolerance),
            [joint_position, multipliers],
        )
        return multipliers

    def set_initial_guess(self, variables: DecisionVariables, values):
        """Sets the initial guess of variables (allowed in every phase)."""
        self._program.set_initial_guess(variables, values)

    def set_initial_trajectory(self, times, q_samples, v_samples=None, u_samples=None):
        """Seeds the initial guess from a sampled trajectory.

        The time steps are set equal, spanning times[0] to times[-1] and
        clipped to the time step bounds. q (and v, u when given) are
        interpolated linearly at the resulting sample times. Without
        v_samples, velocities are seeded by backward differences of q.

        Args:
            times: Increasing sample times, shape (K,), K >= 2.
            q_samples: Positions, shape (nq, K).
            v_samples: Optional velocities, shape (nv, K).
            u_samples: Optional inputs, shape (nu, K).
        """
        times = np.asarray(times, dtype=float)
        if times.ndim != 1 or times.size < 2 or np.any(np.diff(times) <= 0):
            raise ValueError("times must be strictly increasing with at least 2 entries")

        N = self.num_time_samples
        h = np.clip(
            (times[-1] - times[0]) / (N - 1),
            self.minimum_timestep, self.maximum_timestep,
        )
        sample_times = times[0] + h * np.arange(N)
        self._program.set_initial_guess(self._h, h)

        def resample(samples, rows, name):
            samples = np.asarray(samples, dtype=float)
            if samples.shape != (rows, times.size):
                raise ValueError(
                    f"{name} must have shape ({rows}, {times.size}), got {samples.shape}"
                )
            spline = interpolate.make_interp_spline(times, samples.T, k=1)
            return spline(sample_times).T

        q_guess = resample(q_samples, self._nq, 'q_samples')
        self._program.set_initial_guess(self._q, q_guess)
        if v_samples is not None:
            v_guess = resample(v_samples, self._nv, 'v_samples')
        else:
            v_guess = np.diff(q_guess, axis=1) / h
            v_guess = np.concatenate([v_guess[:, :1], v_guess], axis=1)
        self._program.set_initial_guess(self._v, v_guess)
        if u_samples is not None:
            self._program.set_initial_guess(
                self._u, resample(u_samples, self._nu, 'u_samples'))

    # Compile and solve

    def compile(self):
        """Adds the dynamics constraints and freezes the program."""
        self._require_building('compile')
        N = self.num_time_samples
        for i in range(N - 1):
            constraint = DirectTranscriptionConstraint(self.model)
            variables = [
                self._h[i],
                self._q.col(i), self._v.col(i),
                self._q.col(i + 1), self._v.col(i + 1), self._u.col(i + 1),
            ]
            if self._nc > 0:
                constraint.add_generalized_constraint_force_evaluator(
                    PositionConstraintForceEvaluator(self.model))
                variables.append(self._lambda.col(i + 1))
            for evaluator, lambda_variables in self._interval_evaluators[i]:
                constraint.add_generalized_constraint_force_evaluator(evaluator)
                variables.append(lambda_variables)
            self._program.add_constraint(constraint, variables)
            self._transcription_constraints.append(constraint)

        if self._nc > 0 and self.config.enforce_position_constraints:
            for i in self._closure_samples():
                self._program.add_constraint(PositionConstraint(self.model), self._q.col(i))

        self._program.freeze()
        self._phase = ProgramPhase.COMPILED
        logger.debug(
            "Compiled multiple shooting program: %d samples, %d variables, "
            "%d constraint bindings, %d costs",
            N, self._program.num_vars, len(self._program.constraints),
            len(self._program.costs),
        )

    def solve(self) -> SolutionResult:
        """Solves the compiled program from the current initial guess.

        Returns:
            The solver status; failures are reported here, not raised.
        """
        if self._phase == ProgramPhase.BUILDING:
            raise ProgramStateError("solve() requires compile() to be called first")
        if self._formulation is None:
            self._formulation = self._program.formulate()
        formulation = dataclasses.replace(
            self._formulation, x0=self._program.initial_guess)

        solver_config = self.config.solver
        solver = get_solver(solver_config.method, **solver_config.to_dict())
        self._result = solver.solve(formulation)
        self._phase = ProgramPhase.SOLVED
        logger.debug(
            "Multiple shooting solve finished with %s (cost=%.6g)",
            self._result.status.name, self._result.cost,
        )
        return self._result.status

    def get_solution(self, expression: Expression) -> np.ndarray:
        """Projects variables or an affine expression onto the last solution."""
        self._require_solved('get_solution')
        return self._program.get_solution(expression, self._result.x)

    def get_sample_times(self) -> np.ndarray:
        """Sample times t_0 = 0, t_i = t_{i-1} + h_{i-1} of the last solution."""
        self._require_solved('get_sample_times')
        h = self.get_solution(self._h)
        return np.concatenate([[0.0], np.cumsum(h)])

    def reconstruct_state_trajectory(self) -> interpolate.BSpline:
        """First-order hold through the solved [q; v] samples.

        Returns:
            BSpline mapping time t to the state of shape (nq + nv,).
        """
        self._require_solved('reconstruct_state_trajectory')
        states = np.vstack([self.get_solution(self._q), self.get_solution(self._v)])
        return interpolate.make_interp_spline(self.get_sample_times(), states.T, k=1)

    def reconstruct_input_trajectory(self) -> interpolate.BSpline:
        """First-order hold through the solved input samples."""
        self._require_solved('reconstruct_input_trajectory')
        inputs = self.get_solution(self._u)
        return interpolate.make_interp_spline(self.get_sample_times(), inputs.T, k=1)

    def _closure_samples(self) -> List[int]:
        """Samples that receive a loop-closure constraint.

        Where the bounds pin v_i = 0 (i >= 1), q_i = q_{i-1} follows from the
        transcription, so closure at sample i-1 already covers sample i.
        """
        lower, upper = self._program.variable_bounds
        samples = [0]
        for i in range(1, self.num_time_samples):
            idx = self._v.col(i).indices
            if np.all(lower[idx] == 0.0) and np.all(upper[idx] == 0.0):
                continue
            samples.append(i)
        return samples

    # Checks

    def _require_building(self, operation: str):
        if self._phase != ProgramPhase.BUILDING:
            raise ProgramStateError(
                f"{operation}() changes the program structure and is not "
                f"allowed after compile() (phase is {self._phase.name})"
            )

    def _require_solved(self, operation: str):
        if self._result is None:
            raise ProgramStateError(f"{operation}() requires solve() to be called first")

    def _check_interval_index(self, index: int):
        if not 0 <= index < self.num_time_samples - 1:
            raise ValueError(
                f"interval index must lie in [0, {self.num_time_samples - 1}), got {index}"
            )

    def _check_sample_index(self, index: int):
        if not 0 <= index < self.num_time_samples:
            raise ValueError(
                f"sample index must lie in [0, {self.num_time_samples}), got {index}"
            )
