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

"""Configuration classes for multibody trajectory optimization.

Provides nested dataclass configuration for the transcription and the NLP
solver backend.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Literal


@dataclass
class SolverConfig:
    """Configuration for the NLP solver backend.

    Attributes:
        method: Backend name ('slsqp' or 'trust-constr').
        maxiter: Maximum solver iterations.
        ftol: Convergence tolerance passed to the backend.
        feasibility_tolerance: Largest constraint violation accepted for a
            solution reported as found. The default assumes float64
            (jax_enable_x64); use about 1e-3 with float32.
        verbose: Whether the backend prints its progress.
        extra_options: Additional backend options.
    """
    method: Literal['slsqp', 'trust-constr'] = 'slsqp'
    maxiter: int = 500
    ftol: float = 1e-10
    feasibility_tolerance: float = 1e-6
    verbose: bool = False

    # Additional backend kwargs
    extra_options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for backend initialization."""
        base = {
            'maxiter': self.maxiter,
            'ftol': self.ftol,
            'feasibility_tolerance': self.feasibility_tolerance,
            'verbose': self.verbose,
        }
        base.update(self.extra_options)
        return base


@dataclass
class TranscriptionConfig:
    """Configuration for MultibodyMultipleShooting.

    Attributes:
        running_cost_quadrature: 'left' sums h_i·g(t_i) over the intervals,
            'trapezoidal' sums h_i·(g(t_i) + g(t_{i+1}))/2.
        complementarity_tolerance: Upper bound ε on the products of joint
            limit distances and their multipliers.
        enforce_position_constraints: Whether φ(q_i) = 0 is imposed on the
            samples of a closed-loop model. Off by default, matching a pure
            backward Euler transcription. When on, a sample whose velocity is
            pinned to zero by its bounds gets no closure row, since
            q_i = q_{i-1} there.
        solver: Solver configuration.
    """
    running_cost_quadrature: Literal['left', 'trapezoidal'] = 'left'
    complementarity_tolerance: float = 0.0
    enforce_position_constraints: bool = False
    solver: SolverConfig = field(default_factory=SolverConfig)

    def __post_init__(self):
        """Convert solver dict to SolverConfig if needed."""
        if isinstance(self.solver, dict):
            self.solver = SolverConfig(**self.solver)
        if self.running_cost_quadrature not in ('left', 'trapezoidal'):
            raise ValueError(
                f"Unknown running_cost_quadrature "
                f"'{self.running_cost_quadrature}'. Available: left, trapezoidal"
            )
        if self.complementarity_tolerance < 0:
            raise ValueError(
                f"complementarity_tolerance must be non-negative, "
                f"got {self.complementarity_tolerance}"
            )
