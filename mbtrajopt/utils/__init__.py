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

"""Utility functions for multibody trajectory optimization.

- Forward-mode value-and-Jacobian helpers
- Implicit Euler simulation of constrained dynamics
"""

from mbtrajopt.utils.autodiff import (
    value_and_jacfwd,
    jacfwd,
    as_float_array,
)

from mbtrajopt.utils.integrators import implicit_euler_step

__all__ = [
    'value_and_jacfwd',
    'jacfwd',
    'as_float_array',
    'implicit_euler_step',
]
