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

"""Core abstractions for multibody trajectory optimization.

This module provides the fundamental data structures and type definitions:

- MathematicalProgram: decision variables, constraints and costs
- DecisionVariables / AffineExpression: handles into the decision vector
- Constraint: differentiable vector constraint with bounds
- ProgramResult: solution container
- Type definitions, status enums and the multibody model protocol
"""

from mbtrajopt.core.types import (
    SolutionResult,
    ProgramPhase,
    ProgramStateError,
    MultibodyModel,
    KinematicsState,
    Bounds,
)

from mbtrajopt.core.variables import (
    DecisionVariables,
    AffineExpression,
    Expression,
    concatenate_variables,
)

from mbtrajopt.core.constraint import (
    Constraint,
    FunctionConstraint,
)

from mbtrajopt.core.result import ProgramResult

from mbtrajopt.core.program import (
    Binding,
    MathematicalProgram,
)

__all__ = [
    # Types
    'SolutionResult',
    'ProgramPhase',
    'ProgramStateError',
    'MultibodyModel',
    'KinematicsState',
    'Bounds',
    # Variables
    'DecisionVariables',
    'AffineExpression',
    'Expression',
    'concatenate_variables',
    # Constraints
    'Constraint',
    'FunctionConstraint',
    # Program
    'ProgramResult',
    'Binding',
    'MathematicalProgram',
]
