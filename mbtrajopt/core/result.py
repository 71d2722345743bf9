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

"""Result container for mathematical program solves."""

from dataclasses import dataclass, field
from typing import Any, Dict

import numpy as np

from mbtrajopt.core.types import SolutionResult


@dataclass
class ProgramResult:
    """Container for NLP solve results.

    This dataclass is the standard return type of every solver backend.

    Attributes:
        status: Solver status; only SOLUTION_FOUND means x is trustworthy.
        x: Final iterate of the flat decision vector, shape (num_vars,).
        cost: Cost value at x.
        iterations: Number of solver iterations performed.
        constraint_violation: Largest constraint or bound violation at x.
        info: Backend-specific information, for example:
            - 'message': Solver message
            - 'backend_status': Raw backend status code
            - 'solver': Backend name

    Example:
        >>> result = program.solve(get_solver('slsqp'))
        >>> if result.success:
        ...     q = program.get_solution(q_vars, result.x)
    """

    status: SolutionResult
    x: np.ndarray
    cost: float = float('inf')
    iterations: int = 0
    constraint_violation: float = float('inf')
    info: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Return True if the solver found a feasible solution."""
        return self.status == SolutionResult.SOLUTION_FOUND

    @property
    def num_vars(self) -> int:
        return int(self.x.shape[0])
