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

"""NLP solver backends for trajectory optimization.

This module provides the backends that implement the NLPSolver protocol.

Available backends:
- slsqp: scipy sequential least-squares QP (default)
- trust-constr: scipy trust-region interior point
"""

from mbtrajopt.solvers.base import (
    NLPFormulation,
    NLPSolver,
    NLPSolverBase,
)
from mbtrajopt.solvers.scipy_backend import (
    ScipySLSQPBackend,
    ScipyTrustConstrBackend,
)

# Registry of available backends
_AVAILABLE_BACKENDS = {
    'slsqp': ScipySLSQPBackend,
    'trust-constr': ScipyTrustConstrBackend,
    'trust_constr': ScipyTrustConstrBackend,
}


def get_available_backends():
    """Return list of available NLP solver backend names."""
    return list(_AVAILABLE_BACKENDS.keys())


def get_solver(name: str, **kwargs) -> NLPSolverBase:
    """Factory function to create an NLP solver by name.

    Args:
        name: Backend name ('slsqp', 'trust-constr').
        **kwargs: Backend-specific options.

    Returns:
        NLPSolver instance.

    Raises:
        ValueError: If backend is not available.
    """
    name_lower = name.lower()
    if name_lower not in _AVAILABLE_BACKENDS:
        available = get_available_backends()
        raise ValueError(
            f"NLP solver '{name}' not available. "
            f"Available backends: {available}."
        )
    return _AVAILABLE_BACKENDS[name_lower](**kwargs)


__all__ = [
    # Base classes
    'NLPFormulation',
    'NLPSolver',
    'NLPSolverBase',
    # Backends
    'ScipySLSQPBackend',
    'ScipyTrustConstrBackend',
    # Factory
    'get_solver',
    'get_available_backends',
]
