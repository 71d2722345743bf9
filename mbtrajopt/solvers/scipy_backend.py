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

"""SciPy backends for the trajectory NLP.

Both backends wrap scipy.optimize.minimize and feed it the exact JAX
gradients and constraint Jacobians of the NLPFormulation.
"""

import logging
from typing import Any, Dict, List

import numpy as np
from scipy import optimize

from mbtrajopt.core.result import ProgramResult
from mbtrajopt.core.types import SolutionResult
from mbtrajopt.solvers.base import NLPFormulation, NLPSolverBase

logger = logging.getLogger(__name__)


# scipy SLSQP exit modes
_SLSQP_STATUS = {
    0: SolutionResult.SOLUTION_FOUND,
    2: SolutionResult.INFEASIBLE_CONSTRAINTS,   # more equalities than variables
    4: SolutionResult.INFEASIBLE_CONSTRAINTS,   # incompatible inequalities
    9: SolutionResult.ITERATION_LIMIT,
}

# scipy trust-constr exit statuses
_TRUST_CONSTR_STATUS = {
    0: SolutionResult.ITERATION_LIMIT,
    1: SolutionResult.SOLUTION_FOUND,   # gtol satisfied
    2: SolutionResult.SOLUTION_FOUND,   # xtol satisfied
}


class _ScipyBackend(NLPSolverBase):
    """Shared option handling and result parsing for scipy methods."""

    method: str = ""

    def __init__(
        self,
        maxiter: int = 500,
        ftol: float = 1e-10,
        feasibility_tolerance: float = 1e-6,
        verbose: bool = False,
        **kwargs,
    ):
        """Initialize scipy backend.

        Args:
            maxiter: Maximum iterations.
            ftol: Convergence tolerance on the cost (SLSQP) or on the
                gradient/step (trust-constr).
            feasibility_tolerance: Largest constraint violation accepted for
                a SOLUTION_FOUND status.
            verbose: Whether scipy prints progress.
            **kwargs: Additional scipy options.
        """
        super().__init__(**kwargs)
        self.maxiter = maxiter
        self.ftol = ftol
        self.feasibility_tolerance = feasibility_tolerance
        self.verbose = verbose

    def _parse_result(
        self,
        formulation: NLPFormulation,
        result: optimize.OptimizeResult,
        status: SolutionResult,
    ) -> ProgramResult:
        x = np.asarray(result.x, dtype=float)
        violation = formulation.max_violation(x)
        if (status == SolutionResult.SOLUTION_FOUND
                and violation > self.feasibility_tolerance):
            status = SolutionResult.INFEASIBLE_CONSTRAINTS

        log = logger.info if status == SolutionResult.SOLUTION_FOUND else logger.warning
        log(
            "%s finished with %s after %d iterations "
            "(cost=%.6g, constraint violation=%.3g): %s",
            self.name, status.name, int(getattr(result, 'nit', 0)),
            float(result.fun), violation, result.message,
        )
        return ProgramResult(
            status=status,
            x=x,
            cost=float(result.fun),
            iterations=int(getattr(result, 'nit', 0)),
            constraint_violation=violation,
            info={
                'solver': self.name,
                'backend_status': int(result.status),
                'message': str(result.message),
            },
        )


class ScipySLSQPBackend(_ScipyBackend):
    """Sequential least-squares QP backend (scipy 'SLSQP').

    Equality rows are passed as 'eq' constraints; every finite side of an
    inequality row becomes one 'ineq' constraint (fun(x) >= 0).

    Attributes:
        name: "slsqp"
        supports_bounds: True
    """

    name = "slsqp"
    method = "SLSQP"
    supports_bounds = True

    def _constraints(self, formulation: NLPFormulation) -> List[Dict[str, Any]]:
        lower, upper = formulation.constraint_lower, formulation.constraint_upper
        g, jac = formulation.constraints, formulation.constraints_jacobian

        eq = lower == upper
        has_lower = ~eq & np.isfinite(lower)
        has_upper = ~eq & np.isfinite(upper)

        constraints = []
        if np.any(eq):
            constraints.append({
                'type': 'eq',
                'fun': lambda x: np.asarray(g(x))[eq] - lower[eq],
                'jac': lambda x: np.asarray(jac(x))[eq],
            })
        if np.any(has_lower):
            constraints.append({
                'type': 'ineq',
                'fun': lambda x: np.asarray(g(x))[has_lower] - lower[has_lower],
                'jac': lambda x: np.asarray(jac(x))[has_lower],
            })
        if np.any(has_upper):
            constraints.append({
                'type': 'ineq',
                'fun': lambda x: upper[has_upper] - np.asarray(g(x))[has_upper],
                'jac': lambda x: -np.asarray(jac(x))[has_upper],
            })
        return constraints

    def solve(self, formulation: NLPFormulation) -> ProgramResult:
        """Solve the NLP with SLSQP."""
        options = {
            'maxiter': self.maxiter,
            'ftol': self.ftol,
            'disp': self.verbose,
            **self.options,
        }
        logger.debug(
            "SLSQP: %d variables, %d constraint rows, options=%s",
            formulation.num_vars, formulation.num_constraints, options,
        )
        result = optimize.minimize(
            lambda x: float(formulation.cost(x)),
            formulation.x0,
            method=self.method,
            jac=lambda x: np.asarray(formulation.cost_gradient(x), dtype=float),
            bounds=optimize.Bounds(
                formulation.variable_lower, formulation.variable_upper
            ),
            constraints=self._constraints(formulation),
            options=options,
        )
        status = _SLSQP_STATUS.get(int(result.status), SolutionResult.UNKNOWN_ERROR)
        return self._parse_result(formulation, result, status)


class ScipyTrustConstrBackend(_ScipyBackend):
    """Interior-point / trust-region backend (scipy 'trust-constr').

    Variables fixed by their bounds are moved into a linear equality
    constraint, since trust-constr requires strictly ordered bounds.

    Attributes:
        name: "trust-constr"
        supports_bounds: True
    """

    name = "trust-constr"
    method = "trust-constr"
    supports_bounds = True

    def solve(self, formulation: NLPFormulation) -> ProgramResult:
        """Solve the NLP with trust-constr."""
        lower = formulation.variable_lower.copy()
        upper = formulation.variable_upper.copy()
        fixed = formulation.fixed_variables

        constraints = []
        if formulation.num_constraints:
            constraints.append(optimize.NonlinearConstraint(
                lambda x: np.asarray(formulation.constraints(x), dtype=float),
                formulation.constraint_lower,
                formulation.constraint_upper,
                jac=lambda x: np.asarray(
                    formulation.constraints_jacobian(x), dtype=float),
            ))
        if fixed.size:
            selection = np.zeros((fixed.size, formulation.num_vars))
            selection[np.arange(fixed.size), fixed] = 1.0
            constraints.append(
                optimize.LinearConstraint(selection, lower[fixed], upper[fixed])
            )
            lower[fixed] = -np.inf
            upper[fixed] = np.inf

        options = {
            'maxiter': self.maxiter,
            'gtol': self.ftol,
            'xtol': self.ftol,
            'verbose': 1 if self.verbose else 0,
            **self.options,
        }
        logger.debug(
            "trust-constr: %d variables (%d fixed), %d constraint rows",
            formulation.num_vars, fixed.size, formulation.num_constraints,
        )
        result = optimize.minimize(
            lambda x: float(formulation.cost(x)),
            formulation.x0,
            method=self.method,
            jac=lambda x: np.asarray(formulation.cost_gradient(x), dtype=float),
            hess=optimize.BFGS(),
            bounds=optimize.Bounds(lower, upper),
            constraints=constraints,
            options=options,
        )
        status = _TRUST_CONSTR_STATUS.get(
            int(result.status), SolutionResult.UNKNOWN_ERROR)
        return self._parse_result(formulation, result, status)
