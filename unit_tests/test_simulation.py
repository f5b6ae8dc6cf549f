#!/usr/bin/env python3
"""
Unit tests for the benchmark models and the closed-loop simulator
"""

import unittest
import numpy as np
import sys
import os
import tempfile
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from cocoa.models import (DoubleIntegrator, HoverQuadrotor, NoiseModel, QuadcopterParams,
                          create_model)
from cocoa.options import SolverOptions
from cocoa.simulation import ClosedLoopSimulator, box_constraint
from cocoa.types import SolveStatus


class TestModels(unittest.TestCase):

    def test_double_integrator_matrices(self):
        model = DoubleIntegrator(num_axes=2)
        A, B, f = model.system_matrices(0.1)
        self.assertEqual(A.shape, (4, 4))
        self.assertEqual(B.shape, (4, 2))
        np.testing.assert_array_equal(f, np.zeros(4))
        x = np.array([0.0, 0.0, 1.0, -1.0])
        np.testing.assert_allclose(model.step(x, np.zeros(2), 0.1), [0.1, -0.1, 1.0, -1.0])

    def test_quadrotor_matrices(self):
        model = HoverQuadrotor()
        A, B, f = model.system_matrices(0.02)
        self.assertEqual(A.shape, (12, 12))
        self.assertEqual(B.shape, (12, 4))
        np.testing.assert_array_equal(f, np.zeros(12))
        # equal thrust on all motors only changes vertical velocity
        dx = B @ np.ones(4)
        self.assertGreater(dx[8], 0.0)
        np.testing.assert_allclose(np.delete(dx, 8), np.zeros(11), atol=1e-12)

    def test_quadrotor_gravity_term(self):
        model = HoverQuadrotor(QuadcopterParams(), include_gravity=True)
        _, _, f = model.system_matrices(0.02)
        self.assertAlmostEqual(f[8], -9.81 * 0.02)

    def test_cost_weights_and_bounds(self):
        for model in (DoubleIntegrator(), HoverQuadrotor()):
            with self.subTest(model=type(model).__name__):
                q, r = model.cost_weights()
                self.assertEqual(q.shape, (model.nstates,))
                self.assertEqual(r.shape, (model.ninputs,))
                bounds = model.bounds()
                self.assertTrue(np.all(bounds['u_min'] < bounds['u_max']))
                self.assertEqual(model.get_info()['nstates'], model.nstates)

    def test_factory(self):
        self.assertIsInstance(create_model("double_integrator"), DoubleIntegrator)
        self.assertIsInstance(create_model("quadrotor"), HoverQuadrotor)
        with self.assertRaises(ValueError):
            create_model("submarine")


class TestBoxConstraint(unittest.TestCase):

    def test_infinite_bounds_are_dropped(self):
        S, h = box_constraint(np.array([-np.inf, -1.0]), np.array([np.inf, 2.0]))
        np.testing.assert_array_equal(S, [[0.0, 1.0], [0.0, -1.0]])
        np.testing.assert_array_equal(h, [-2.0, -1.0])
        v = np.array([100.0, 1.5])
        self.assertTrue(np.all(S @ v + h <= 0))
        self.assertFalse(np.all(S @ np.array([0.0, 2.5]) + h <= 0))


class TestClosedLoopSimulator(unittest.TestCase):

    def setUp(self):
        self.options = SolverOptions(tol_primal=1e-4, tol_dual=1e-4, max_iterations=2000)
        self.model = DoubleIntegrator(num_axes=1, u_limit=1.0, v_limit=2.0)
        self.sim = ClosedLoopSimulator(self.model, np.array([1.0, 0.0]), horizon=15, dt=0.1,
                                       options=self.options)

    def test_set_point_tracking(self):
        results = self.sim.simulate(steps=40)
        self.assertEqual(results['x_history'].shape, (41, 2))
        self.assertEqual(results['u_history'].shape, (40, 1))
        self.assertEqual(len(results['status_history']), 40)
        self.assertLess(results['final_tracking_error'], 0.2)
        self.assertLessEqual(results['max_control_input'], 1.05)
        self.assertTrue(all(isinstance(s, SolveStatus) for s in results['status_history']))

    def test_violation_count(self):
        u_history = np.array([[0.5], [1.5], [-1.0], [-1.2]])
        self.assertEqual(self.sim._count_violations(self.sim.input_box, u_history), 2)
        # positions are unbounded, only the velocity limit counts
        x_history = np.array([[100.0, 0.0], [0.0, 2.5]])
        self.assertEqual(self.sim._count_violations(self.sim.state_box, x_history), 1)

    def test_plot_results(self):
        self.sim.simulate(steps=5)
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'results.png')
            self.sim.plot_results(path)
            self.assertTrue(os.path.exists(path))

    def test_reset(self):
        self.sim.simulate(steps=3)
        self.sim.reset()
        self.assertEqual(self.sim.x_history, [])
        self.assertEqual(self.sim.get_results()['u_history'].shape, (0,))

    def test_process_noise(self):
        model = DoubleIntegrator(noise_model=NoiseModel(process_std=0.01, seed=1))
        sim = ClosedLoopSimulator(model, np.array([0.5, 0.0]), horizon=10, dt=0.1,
                                  options=self.options)
        results = sim.simulate(steps=10)
        self.assertEqual(results['x_history'].shape, (11, 2))
        self.assertTrue(np.all(np.isfinite(results['x_history'])))

    def test_quadrotor_hold(self):
        model = HoverQuadrotor()
        X_ref = np.zeros(12)
        X_ref[2] = 1.0
        sim = ClosedLoopSimulator(model, X_ref, horizon=8, dt=0.02,
                                  options=SolverOptions(max_iterations=300))
        x0 = X_ref.copy()
        x0[0] = 0.1
        results = sim.simulate(steps=3, initial_state=x0)
        self.assertEqual(results['x_history'].shape, (4, 12))
        self.assertEqual(results['u_history'].shape, (3, 4))


if __name__ == '__main__':
    unittest.main()
