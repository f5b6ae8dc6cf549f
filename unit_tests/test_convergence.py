#!/usr/bin/env python3
"""
Unit tests for residual evaluation and status classification
"""

import unittest
import numpy as np
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from cocoa.convergence import ConvergenceMonitor, Residuals
from cocoa.kkt import KKTSolver
from cocoa.options import SolverOptions
from cocoa.problem_data import BROADCAST, ProblemData
from cocoa.storage import StorageMapper
from cocoa.types import ConeType, SolveStatus
from cocoa.workspace import Workspace


class TestResiduals(unittest.TestCase):

    def setUp(self):
        N = 3
        self.data = ProblemData([2] * N, [1] * (N - 1), [[2]] * N, StorageMapper.identity(N),
                                use_explicit_integration=True)
        self.A = np.array([[1.0, 0.1], [0.0, 1.0]])
        self.B = np.array([[0.0], [0.1]])
        self.data.set_state_cost(np.eye(2), np.zeros(2), BROADCAST)
        self.data.set_input_cost(np.eye(1), np.zeros(1), BROADCAST)
        self.data.set_dynamics(self.A, self.B, None, None, np.zeros(2), 0.1, BROADCAST)
        self.ws = Workspace(self.data.num_states, self.data.num_inputs, self.data.constraint_dims)
        self.kkt = KKTSolver(self.data, self.ws)
        self.monitor = ConvergenceMonitor(self.data, self.ws, self.kkt)

    def test_initial_residuals_are_infinite(self):
        self.assertTrue(np.isinf(self.monitor.residuals.primal))
        self.assertTrue(np.isinf(self.monitor.residuals.complementarity))

    def test_dynamics_residual(self):
        self.data.set_initial_state([1.0, 0.0])
        self.ws.x[0][:] = [1.0, 0.0]
        self.ws.x[1][:] = self.A @ self.ws.x[0]
        self.ws.x[2][:] = [5.0, 5.0]
        expected = np.max(np.abs(self.A @ self.ws.x[1] - self.ws.x[2]))
        self.assertAlmostEqual(self.monitor.dynamics_residual(), expected)

    def test_initial_state_residual(self):
        self.data.set_initial_state([1.0, -2.0])
        self.assertAlmostEqual(self.monitor.dynamics_residual(), 2.0)

    def test_constraint_residuals(self):
        G = np.eye(2)
        self.data.set_constraint(G, None, np.array([-1.0, -1.0]), 0, 1, ConeType.NEGATIVE_ORTHANT)
        self.ws.x[1][:] = [3.0, 0.0]        # c = (2, -1)
        self.ws.z[1][0][:] = [0.0, -1.0]
        self.ws.z_prev[1][0][:] = [0.5, -1.0]
        self.ws.lam[1][0][:] = [2.0, 0.0]
        # x_1 does not follow the dynamics from x_0 = 0
        res = self.monitor.evaluate(penalty_scaling=4.0)
        self.assertAlmostEqual(res.constraint_gap, 2.0)
        self.assertAlmostEqual(res.primal, 3.0)
        self.assertAlmostEqual(res.dual, 4.0 * 0.5)
        self.assertAlmostEqual(res.complementarity, 4.0)
        self.assertAlmostEqual(res.dual_step, 8.0)

    def test_stationarity_after_exact_solve(self):
        self.data.set_initial_state([1.0, -1.0])
        self.kkt.solve(1.0)
        res = self.monitor.evaluate(1.0)
        self.assertLess(res.stationarity, 1e-10)
        self.assertLess(res.primal, 1e-12)

    def test_undeclared_constraints_are_ignored(self):
        self.ws.z[0][0][:] = 5.0
        res = self.monitor.evaluate(1.0)
        self.assertEqual(res.constraint_gap, 0.0)
        self.assertEqual(res.dual, 0.0)


class TestClassification(unittest.TestCase):

    def setUp(self):
        data = ProblemData([2], [1], None, StorageMapper.identity(1))
        ws = Workspace(data.num_states, data.num_inputs, data.constraint_dims)
        self.monitor = ConvergenceMonitor(data, ws, KKTSolver(data, ws))
        self.options = SolverOptions(max_iterations=10)

    def classify(self, iteration=3, **values):
        base = dict(primal=1.0, dual=1.0, stationarity=0.0, complementarity=0.0,
                    constraint_gap=1.0, dual_step=1.0, dual_step_change=1.0)
        base.update(values)
        self.monitor.residuals = Residuals(**base)
        return self.monitor.classify(self.options, iteration)

    def test_solved(self):
        self.assertEqual(self.classify(primal=1e-7, dual=1e-7, constraint_gap=0.0), SolveStatus.SOLVED)

    def test_keeps_iterating(self):
        self.assertIsNone(self.classify())
        self.assertIsNone(self.classify(primal=1e-7))

    def test_maxiters(self):
        self.assertEqual(self.classify(iteration=10), SolveStatus.MAXITERS)

    def test_solved_takes_precedence_at_last_iteration(self):
        self.assertEqual(self.classify(iteration=10, primal=0.0, dual=0.0), SolveStatus.SOLVED)

    def test_stalled_dual_step(self):
        self.assertEqual(self.classify(dual_step_change=0.0), SolveStatus.INFEASIBLE)
        # not on the first iteration
        self.assertIsNone(self.classify(iteration=1, dual_step_change=0.0))
        # a vanishing gap is convergence, not infeasibility
        self.assertIsNone(self.classify(constraint_gap=0.0, dual_step=0.0, dual_step_change=0.0))

    def test_non_finite(self):
        self.assertEqual(self.classify(primal=np.nan), SolveStatus.INFEASIBLE)
        self.assertEqual(self.classify(stationarity=np.inf), SolveStatus.INFEASIBLE)

    def test_residual_dict(self):
        keys = Residuals().as_dict().keys()
        self.assertEqual(set(keys), {'primal_feasibility', 'dual_feasibility',
                                     'stationarity', 'complementarity'})


if __name__ == '__main__':
    unittest.main()
