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

"""Tests for the kinematic path constraints."""

from absl.testing import absltest
from absl.testing import parameterized

from jax import config
import numpy as np

from mbtrajopt.multibody import four_bar_configuration, four_bar_linkage
from mbtrajopt.transcription import (
    JointLimitComplementarityConstraint,
    PositionConstraint,
)

config.update('jax_enable_x64', True)


class PositionConstraintTest(parameterized.TestCase):

    def setUp(self):
        super().setUp()
        self.model = four_bar_linkage()
        self.constraint = PositionConstraint(self.model)

    def test_sizes(self):
        self.assertEqual(self.constraint.num_constraints, 2)
        self.assertEqual(self.constraint.num_vars, 3)
        self.assertTrue(self.constraint.is_equality)

    def test_assembled_configuration_is_feasible(self):
        q = four_bar_configuration(self.model, 1.0)
        self.assertLess(self.constraint.violation(q), 1e-12)

    def test_straight_configuration_is_infeasible(self):
        # Straight chain reaches (5, 0), the anchor sits at (2, 0).
        np.testing.assert_allclose(self.constraint.eval(np.zeros(3)), [3.0, 0.0])
        self.assertAlmostEqual(self.constraint.violation(np.zeros(3)), 3.0)


class JointLimitComplementarityConstraintTest(parameterized.TestCase):

    def setUp(self):
        super().setUp()
        self.constraint = JointLimitComplementarityConstraint(-1.0, 1.0)

    @parameterized.named_parameters(
        ('inactive', [0.0, 0.0, 0.0]),
        ('at_lower', [-1.0, 2.0, 0.0]),
        ('at_upper', [1.0, 0.0, 3.0]),
    )
    def test_complementary_points_are_feasible(self, x):
        self.assertAlmostEqual(self.constraint.violation(np.array(x)), 0.0)

    def test_force_away_from_limit_is_infeasible(self):
        np.testing.assert_allclose(
            self.constraint.eval(np.array([0.5, 2.0, 1.0])), [3.0, 0.5])
        self.assertAlmostEqual(self.constraint.violation(np.array([0.5, 2.0, 1.0])), 3.0)

    def test_tolerance_relaxes_products(self):
        relaxed = JointLimitComplementarityConstraint(-1.0, 1.0, tolerance=0.1)
        np.testing.assert_array_equal(relaxed.upper_bound, [0.1, 0.1])
        self.assertAlmostEqual(relaxed.violation(np.array([-0.9, 0.5, 0.0])), 0.0)

    def test_jacobian(self):
        _, jacobian = self.constraint.eval_with_jacobian(np.array([0.5, 2.0, 1.0]))
        np.testing.assert_allclose(jacobian, [[2.0, 1.5, 0.0], [-1.0, 0.0, 0.5]])

    def test_negative_tolerance_rejected(self):
        with self.assertRaises(ValueError):
            JointLimitComplementarityConstraint(-1.0, 1.0, tolerance=-1e-3)


if __name__ == '__main__':
    absltest.main()
