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

"""mbtrajopt: Direct transcription trajectory optimization for multibody systems.

Main modules:
- mbtrajopt.core: Mathematical program, decision variables, types
- mbtrajopt.multibody: Model protocol implementations and kinematics caches
- mbtrajopt.transcription: Constraint force evaluators, the backward Euler
  transcription constraint and the multiple shooting program
- mbtrajopt.solvers: NLP solver backends (scipy SLSQP, trust-constr)
- mbtrajopt.utils: Autodiff helpers and the implicit Euler integrator
"""

from . import core
from . import solvers
from . import multibody
from . import transcription
from . import utils

from mbtrajopt.config import SolverConfig, TranscriptionConfig
from mbtrajopt.transcription import MultibodyMultipleShooting

__version__ = '0.1.0'
