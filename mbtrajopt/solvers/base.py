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

"""Base classes and protocols for NLP solver backends.

A MathematicalProgram is lowered to an NLPFormulation before it is handed to
a backend:

    min   cost(x)
    s.t.  constraint_lower <= constraints(x) <= constraint_upper
          variable_lower <= x <= variable_upper

with exact first derivatives supplied by JAX.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Protocol, runtime_checkable

import numpy as np

from mbtrajopt.core.result import ProgramResult


@dataclass
class NLPFormulation:
    """Flat nonlinear program consumed by the solver backends.

    Attributes:
        num_vars: Size of the decision vector (n).
        num_constraints: Number of stacked constraint rows (m).
        x0: Initial guess, shape (n,).
        variable_lower: Lower bounds on x, shape (n,); -inf when unbounded.
        variable_upper: Upper bounds on x, shape (n,); +inf when unbounded.
        cost: x -> scalar cost.
        cost_gradient: x -> gradient of cost, shape (n,).
        constraints: x -> stacked constraint values, shape (m,).
        constraints_jacobian: x -> stacked Jacobian, shape (m, n).
        constraint_lower: Lower bounds on constraints, shape (m,).
        constraint_upper: Upper bounds on constraints, shape (m,).
    """

    num_vars: int
    num_constraints: int
    x0: np.ndarray
    variable_lower: np.ndarray
    variable_upper: np.ndarray
    cost: Callable[[np.ndarray], float]
    cost_gradient: Callable[[np.ndarray], np.ndarray]
    constraints: Callable[[np.ndarray], np.ndarray]
    constraints_jacobian: Callable[[np.ndarray], np.ndarray]
    constraint_lower: np.ndarray
    constraint_upper: np.ndarray

    def __post_init__(self):
        """Validate formulation."""
        n, m = self.num_vars, self.num_constraints
        for name, size in (
            ('x0', n), ('variable_lower', n), ('variable_upper', n),
            ('constraint_lower', m), ('constraint_upper', m),
        ):
            value = np.asarray(getattr(self, name), dtype=float)
            if value.shape != (size,):
                raise ValueError(
                    f"{name} must have shape ({size},), got {value.shape}"
                )
            setattr(self, name, value)

    @property
    def equality_rows(self) -> np.ndarray:
        """Indices of constraint rows with identical bounds."""
        return np.flatnonzero(self.constraint_lower == self.constraint_upper)

    @property
    def fixed_variables(self) -> np.ndarray:
        """Indices of variables whose bounds coincide."""
        return np.flatnonzero(self.variable_lower == self.variable_upper)

    def max_violation(self, x: np.ndarray) -> float:
        """Largest violation of the constraint and variable bounds at x."""
        violation = 0.0
        if self.num_constraints:
            g = np.asarray(self.constraints(x))
            violation = max(
                violation,
                np.max(self.constraint_lower - g, initial=0.0),
                np.max(g - self.constraint_upper, initial=0.0),
            )
        violation = max(
            violation,
            np.max(self.variable_lower - x, initial=0.0),
            np.max(x - self.variable_upper, initial=0.0),
        )
        return float(violation)


@runtime_checkable
class NLPSolver(Protocol):
    """Protocol for NLP solver backends.

    Attributes:
        name: Human-readable name of the solver.
        supports_bounds: Whether variable bounds are handled natively.
    """

    name: str
    supports_bounds: bool

    def solve(self, formulation: NLPFormulation) -> ProgramResult:
        """Solve the NLP from formulation.x0.

        Args:
            formulation: NLPFormulation with jitted callbacks.

        Returns:
            ProgramResult with the status and final iterate. Non-convergence
            is reported through the status, never raised.
        """
        ...


class NLPSolverBase(ABC):
    """Abstract base class for NLP solver backends.

    Provides option handling and enforces the interface.
    """

    name: str = "base"
    supports_bounds: bool = True

    def __init__(self, **options):
        """Initialize solver with options.

        Args:
            **options: Solver-specific options.
        """
        self.options: Dict[str, Any] = options

    @abstractmethod
    def solve(self, formulation: NLPFormulation) -> ProgramResult:
        """Solve the NLP."""
        ...
