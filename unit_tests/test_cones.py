#!/usr/bin/env python3
"""
Unit tests for the cone projections
"""

import unittest
import numpy as np
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from cocoa.cones import (in_cone, project, project_negative_orthant, project_second_order,
                         project_zero)
from cocoa.types import ConeType


class TestSecondOrderCone(unittest.TestCase):

    def test_projection_to_origin(self):
        np.testing.assert_allclose(project_second_order(np.array([-10.0, 3.0, 4.0])), np.zeros(3))

    def test_feasible_point_unchanged(self):
        x = np.array([10.0, 3.0, 4.0])
        np.testing.assert_allclose(project_second_order(x), x)

    def test_projection_to_boundary(self):
        np.testing.assert_allclose(project_second_order(np.array([0.0, 3.0, 4.0])), [2.5, 1.5, 2.0])

    def test_boundary_is_fixed_point(self):
        x = np.array([5.0, 3.0, 4.0])
        np.testing.assert_allclose(project_second_order(x), x)

    def test_projection_does_not_alias_input(self):
        x = np.array([10.0, 3.0, 4.0])
        out = project_second_order(x)
        out[0] = 0.0
        self.assertEqual(x[0], 10.0)

    def test_scalar_cone(self):
        np.testing.assert_allclose(project_second_order(np.array([-2.0])), [0.0])
        np.testing.assert_allclose(project_second_order(np.array([2.0])), [2.0])


class TestOrthantAndZeroCone(unittest.TestCase):

    def test_negative_orthant(self):
        x = np.array([-1.0, 0.0, 2.5, -3.0])
        np.testing.assert_array_equal(project_negative_orthant(x), [-1.0, 0.0, 0.0, -3.0])

    def test_zero_cone(self):
        np.testing.assert_array_equal(project_zero(np.array([1.0, -2.0])), [0.0, 0.0])

    def test_dtype_preserved(self):
        x = np.array([1.0, -2.0, 3.0], dtype=np.float32)
        for cone in ConeType:
            with self.subTest(cone=cone):
                self.assertEqual(project(cone, x).dtype, np.float32)


class TestProjectionProperties(unittest.TestCase):

    def setUp(self):
        self.rng = np.random.default_rng(42)

    def test_idempotence(self):
        for cone in ConeType:
            for _ in range(20):
                x = self.rng.standard_normal(4) * 3
                with self.subTest(cone=cone, x=x):
                    once = project(cone, x)
                    np.testing.assert_allclose(project(cone, once), once, atol=1e-12)
                    self.assertTrue(in_cone(cone, once, tol=1e-12))

    def test_projection_is_closest_point(self):
        # x - P(x) is orthogonal to P(x) for projections onto cones
        for cone in ConeType:
            for _ in range(20):
                x = self.rng.standard_normal(5)
                with self.subTest(cone=cone):
                    p = project(cone, x)
                    self.assertAlmostEqual(float((x - p) @ p), 0.0, places=10)

    def test_membership(self):
        self.assertTrue(in_cone(ConeType.ZERO, np.zeros(3)))
        self.assertFalse(in_cone(ConeType.ZERO, np.array([0.0, 1e-3])))
        self.assertTrue(in_cone(ConeType.NEGATIVE_ORTHANT, np.array([-1.0, 0.0])))
        self.assertFalse(in_cone(ConeType.NEGATIVE_ORTHANT, np.array([-1.0, 0.1])))
        self.assertTrue(in_cone(ConeType.SECOND_ORDER, np.array([5.0, 3.0, 4.0])))
        self.assertFalse(in_cone(ConeType.SECOND_ORDER, np.array([4.9, 3.0, 4.0])))


if __name__ == '__main__':
    unittest.main()
