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

"""Direct transcription of constrained multibody dynamics.

- Generalized constraint force evaluators (loop closure, joint limits)
- DirectTranscriptionConstraint: backward Euler residual of one interval
- Kinematic path constraints
- MultibodyMultipleShooting: the trajectory optimization program
"""

from mbtrajopt.transcription.force_evaluators import (
    GeneralizedConstraintForceEvaluator,
    PositionConstraintForceEvaluator,
    JointLimitConstraintForceEvaluator,
)

from mbtrajopt.transcription.direct_transcription import (
    DirectTranscriptionConstraint,
    TranscriptionInput,
)

from mbtrajopt.transcription.constraints import (
    PositionConstraint,
    JointLimitComplementarityConstraint,
)

from mbtrajopt.transcription.multiple_shooting import MultibodyMultipleShooting

__all__ = [
    # Force evaluators
    'GeneralizedConstraintForceEvaluator',
    'PositionConstraintForceEvaluator',
    'JointLimitConstraintForceEvaluator',
    # Constraints
    'DirectTranscriptionConstraint',
    'TranscriptionInput',
    'PositionConstraint',
    'JointLimitComplementarityConstraint',
    # Program
    'MultibodyMultipleShooting',
]
