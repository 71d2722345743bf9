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

"""Base class for differentiable vector constraints.

A constraint maps a local input vector x (a slice of the program's decision
vector) to values y and requires lower_bound <= y <= upper_bound. Equality
constraints use identical bounds.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

import numpy as np
from jax import Array

from mbtrajopt.utils.autodiff import as_float_array, value_and_jacfwd


class Constraint(ABC):
    """Abstract differentiable constraint lower <= f(x) <= upper.

    Subclasses implement _eval() with jax.numpy so that eval_with_jacobian()
    returns the exact Jacobian.

    Attributes:
        num_constraints: Number of outputs of f.
        num_vars: Size of the input vector x.
        lower_bound: Lower bounds on f(x), shape (num_constraints,).
        upper_bound: Upper bounds on f(x), shape (num_constraints,).
        description: Human-readable name used in logs.
    """

    def __init__(
        self,
        num_constraints: int,
        num_vars: int,
        lower_bound=None,
        upper_bound=None,
        description: str = '',
    ):
        if lower_bound is None:
            lower_bound = np.zeros(num_constraints)
        if upper_bound is None:
            upper_bound = np.zeros(num_constraints)
        self.num_constraints = num_constraints
        self.num_vars = num_vars
        self.lower_bound = np.broadcast_to(
            np.asarray(lower_bound, dtype=float), (num_constraints,)).copy()
        self.upper_bound = np.broadcast_to(
            np.asarray(upper_bound, dtype=float), (num_constraints,)).copy()
        if np.any(self.lower_bound > self.upper_bound):
            raise ValueError(
                f"lower_bound must not exceed upper_bound in '{description}'"
            )
        self.description = description

    @property
    def is_equality(self) -> bool:
        return bool(np.all(self.lower_bound == self.upper_bound))

    def eval(self, x) -> Array:
        """Evaluates the constraint function at x."""
        x = as_float_array(x)
        if x.shape != (self.num_vars,):
            raise ValueError(
                f"{type(self).__name__} expects an input of size "
                f"{self.num_vars}, got shape {x.shape}"
            )
        return self._eval(x)

    def eval_with_jacobian(self, x) -> Tuple[Array, Array]:
        """Returns f(x) and the exact Jacobian df/dx of shape (m, n)."""
        return value_and_jacfwd(self.eval)(as_float_array(x))

    def violation(self, x) -> float:
        """Returns the largest bound violation at x (0 when satisfied)."""
        y = np.asarray(self.eval(x))
        below = np.max(self.lower_bound - y, initial=0.0)
        above = np.max(y - self.upper_bound, initial=0.0)
        return float(max(below, above))

    @abstractmethod
    def _eval(self, x: Array) -> Array:
        """Constraint values for a validated input of shape (num_vars,)."""
        ...


class FunctionConstraint(Constraint):
    """Constraint defined by a jax.numpy callable.

    Example:
        >>> unit_norm = FunctionConstraint(
        ...     lambda x: jnp.array([x @ x]), num_constraints=1, num_vars=3,
        ...     lower_bound=1.0, upper_bound=1.0)
    """

    def __init__(
        self,
        fun: Callable[[Array], Array],
        num_constraints: int,
        num_vars: int,
        lower_bound=None,
        upper_bound=None,
        description: Optional[str] = None,
    ):
        super().__init__(
            num_constraints, num_vars, lower_bound, upper_bound,
            description or getattr(fun, '__name__', 'function_constraint'),
        )
        self._fun = fun

    def _eval(self, x: Array) -> Array:
        return as_float_array(self._fun(x)).reshape(self.num_constraints)
