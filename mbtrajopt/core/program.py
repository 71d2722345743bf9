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

"""Mathematical program specification.

A MathematicalProgram owns a flat vector of continuous decision variables,
their bounds and initial guess, and the constraint and cost bindings that
act on slices of it. It lowers itself to an NLPFormulation with jitted,
exactly differentiated callbacks for the solver backends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array

from mbtrajopt.core.constraint import Constraint
from mbtrajopt.core.result import ProgramResult
from mbtrajopt.core.types import ProgramStateError
from mbtrajopt.core.variables import (
    AffineExpression,
    DecisionVariables,
    Expression,
    concatenate_variables,
)
from mbtrajopt.solvers.base import NLPFormulation, NLPSolver
from mbtrajopt.utils.autodiff import jacfwd

logger = logging.getLogger(__name__)


@dataclass
class Binding:
    """A constraint or cost bound to a flat slice of the decision vector.

    Attributes:
        evaluator: Constraint instance, or cost callable x_local -> scalar.
        variables: Flat DecisionVariables feeding the evaluator.
        description: Name used in logs.
    """

    evaluator: Union[Constraint, Callable[[Array], Array]]
    variables: DecisionVariables
    description: str = ''

    def local(self, x):
        return x[self.variables.indices]


class MathematicalProgram:
    """Nonlinear program over continuous decision variables.

        min  sum_k cost_k(x[idx_k])
        s.t. lower_j <= constraint_j(x[idx_j]) <= upper_j
             variable_lower <= x <= variable_upper

    Example:
        >>> prog = MathematicalProgram()
        >>> x = prog.new_continuous_variables(2, name='x')
        >>> prog.add_bounding_box_constraint(-1.0, 1.0, x)
        >>> prog.add_cost(lambda z: jnp.sum((z - 0.5) ** 2), x)
        >>> result = prog.solve(get_solver('slsqp'))
        >>> prog.get_solution(x, result.x)
    """

    def __init__(self):
        self._variable_lower = np.zeros(0)
        self._variable_upper = np.zeros(0)
        self._initial_guess = np.zeros(0)
        self._variable_names: List[str] = []
        self._constraints: List[Binding] = []
        self._costs: List[Binding] = []
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self):
        """Fixes the program structure.

        Structural methods raise ProgramStateError afterwards. The initial
        guess stays writable.
        """
        self._frozen = True

    def _require_mutable(self, operation: str):
        if self._frozen:
            raise ProgramStateError(
                f"{operation}() changes a frozen program with {self.num_vars} variables"
            )

    @property
    def num_vars(self) -> int:
        return self._initial_guess.size

    @property
    def constraints(self) -> List[Binding]:
        return list(self._constraints)

    @property
    def costs(self) -> List[Binding]:
        return list(self._costs)

    @property
    def initial_guess(self) -> np.ndarray:
        return self._initial_guess.copy()

    @property
    def variable_bounds(self):
        """Returns copies of (variable_lower, variable_upper)."""
        return self._variable_lower.copy(), self._variable_upper.copy()

    def variable_name(self, index: int) -> str:
        return self._variable_names[index]

    def new_continuous_variables(
        self,
        rows: int,
        cols: Optional[int] = None,
        name: str = 'x',
    ) -> DecisionVariables:
        """Appends a block of unbounded variables to the decision vector.

        Variables are numbered column by column, so each column of a
        (rows, cols) block is contiguous in the decision vector.

        Args:
            rows: Number of rows.
            cols: Number of columns; a 1-D block is created when None.
            name: Name of the block.

        Returns:
            DecisionVariables of shape (rows,) or (rows, cols).
        """
        self._require_mutable("new_continuous_variables")
        shape = (rows,) if cols is None else (rows, cols)
        if any(s < 0 for s in shape):
            raise ValueError(f"variable block shape must be non-negative, got {shape}")
        size = int(np.prod(shape, dtype=np.int64))
        start = self.num_vars
        indices = np.arange(start, start + size).reshape(shape, order='F')

        self._variable_lower = np.concatenate([self._variable_lower, np.full(size, -np.inf)])
        self._variable_upper = np.concatenate([self._variable_upper, np.full(size, np.inf)])
        self._initial_guess = np.concatenate([self._initial_guess, np.zeros(size)])
        for k in range(size):
            if cols is None:
                self._variable_names.append(f'{name}({k})')
            else:
                self._variable_names.append(f'{name}({k % rows},{k // rows})')
        return DecisionVariables(indices, name)

    def add_bounding_box_constraint(self, lower, upper, variables: DecisionVariables):
        """Intersects the bounds of variables with [lower, upper].

        lower and upper broadcast against variables.shape.
        """
        self._require_mutable("add_bounding_box_constraint")
        idx = variables.indices
        lower = np.broadcast_to(np.asarray(lower, dtype=float), idx.shape)
        upper = np.broadcast_to(np.asarray(upper, dtype=float), idx.shape)
        if np.any(lower > upper):
            raise ValueError(f"bounding box lower bound exceeds upper bound for {variables}")
        self._variable_lower[idx] = np.maximum(self._variable_lower[idx], lower)
        self._variable_upper[idx] = np.minimum(self._variable_upper[idx], upper)
        if np.any(self._variable_lower[idx] > self._variable_upper[idx]):
            raise ValueError(f"bounding box constraint on {variables} leaves an empty interval")

    def add_constraint(
        self,
        constraint: Constraint,
        variables: Union[DecisionVariables, List[DecisionVariables]],
    ) -> Binding:
        """Binds constraint to variables (flattened column by column)."""
        self._require_mutable("add_constraint")
        if isinstance(variables, DecisionVariables):
            variables = [variables]
        flat = concatenate_variables(variables)
        if flat.size != constraint.num_vars:
            raise ValueError(
                f"constraint '{constraint.description}' expects "
                f"{constraint.num_vars} variables, got {flat.size}"
            )
        binding = Binding(constraint, flat, constraint.description)
        self._constraints.append(binding)
        return binding

    def add_cost(
        self,
        cost: Callable[[Array], Array],
        variables: Union[DecisionVariables, List[DecisionVariables]],
        description: Optional[str] = None,
    ) -> Binding:
        """Adds cost(x[variables]) to the objective.

        Args:
            cost: jax.numpy function of the flat local vector, returning a
                scalar.
            variables: Variables (flattened column by column) fed to cost.
            description: Name used in logs.
        """
        self._require_mutable("add_cost")
        if isinstance(variables, DecisionVariables):
            variables = [variables]
        flat = concatenate_variables(variables)
        binding = Binding(cost, flat, description or getattr(cost, '__name__', 'cost'))
        self._costs.append(binding)
        return binding

    def set_initial_guess(self, variables: DecisionVariables, values):
        """Sets the initial guess of variables; values broadcast to their shape."""
        idx = variables.indices
        self._initial_guess[idx] = np.broadcast_to(np.asarray(values, dtype=float), idx.shape)

    def evaluate_cost(self, x) -> float:
        x = jnp.asarray(x)
        return float(sum(jnp.reshape(b.evaluator(b.local(x)), ()) for b in self._costs))

    def max_constraint_violation(self, x) -> float:
        """Largest violation of any constraint or variable bound at x."""
        x = np.asarray(x, dtype=float)
        violations = [b.evaluator.violation(b.local(x)) for b in self._constraints]
        violations.append(np.max(self._variable_lower - x, initial=0.0))
        violations.append(np.max(x - self._variable_upper, initial=0.0))
        return float(max(violations))

    def formulate(self) -> NLPFormulation:
        """Lowers the program to an NLPFormulation with jitted callbacks."""
        constraints = list(self._constraints)
        costs = list(self._costs)
        n = self.num_vars

        def cost(x):
            total = jnp.zeros((), dtype=x.dtype)
            for b in costs:
                total = total + jnp.reshape(b.evaluator(b.local(x)), ())
            return total

        def stacked_constraints(x):
            return jnp.concatenate([b.evaluator.eval(b.local(x)) for b in constraints])

        if constraints:
            constraint_lower = np.concatenate([b.evaluator.lower_bound for b in constraints])
            constraint_upper = np.concatenate([b.evaluator.upper_bound for b in constraints])
            constraints_fn = jax.jit(stacked_constraints)
            constraints_jac = jax.jit(jacfwd(stacked_constraints))
        else:
            constraint_lower = constraint_upper = np.zeros(0)
            constraints_fn = lambda x: np.zeros(0)
            constraints_jac = lambda x: np.zeros((0, n))

        logger.debug(
            "Formulated NLP with %d variables, %d constraint rows in %d "
            "bindings and %d costs", n, constraint_lower.size,
            len(constraints), len(costs),
        )
        return NLPFormulation(
            num_vars=n,
            num_constraints=constraint_lower.size,
            x0=self.initial_guess,
            variable_lower=self._variable_lower.copy(),
            variable_upper=self._variable_upper.copy(),
            cost=jax.jit(cost),
            cost_gradient=jax.jit(jax.grad(cost)),
            constraints=constraints_fn,
            constraints_jacobian=constraints_jac,
            constraint_lower=constraint_lower,
            constraint_upper=constraint_upper,
        )

    def solve(self, solver: NLPSolver) -> ProgramResult:
        """Solves the program with the given backend from the initial guess."""
        return solver.solve(self.formulate())

    def get_solution(self, expression: Expression, x) -> np.ndarray:
        """Projects a variable block or affine expression onto x."""
        x = np.asarray(x, dtype=float)
        if x.shape != (self.num_vars,):
            raise ValueError(f"solution vector must have shape ({self.num_vars},), got {x.shape}")
        if isinstance(expression, DecisionVariables):
            return x[expression.indices]
        if isinstance(expression, AffineExpression):
            return expression.evaluate(x)
        raise TypeError(
            f"expected DecisionVariables or AffineExpression, got {type(expression).__name__}"
        )
