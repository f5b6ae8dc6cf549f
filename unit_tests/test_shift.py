#!/usr/bin/env python3
"""
Unit tests for receding-horizon shifts of problem data and iterates
"""

import unittest
import numpy as np
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from cocoa import ConeType, ErrorCode, SolveStatus, new_solver, new_solver_custom_storage


class TestShiftProblem(unittest.TestCase):

    def setUp(self):
        self.N = 5
        self.solver = new_solver([2] * self.N, [1] * (self.N - 1), [[1]] * self.N,
                                 use_explicit_integration=True).unwrap()
        # broadcast defaults reach the final slot as well
        self.solver.set_input_cost(np.eye(1), np.zeros(1)).unwrap()
        self.solver.set_dynamics(np.eye(2), np.ones((2, 1))).unwrap()
        for k in range(self.N):
            self.solver.set_state_cost(np.eye(2) * (k + 1), np.full(2, float(k)), k).unwrap()
            self.solver.set_constraint(np.array([[1.0, 0.0]]), None, np.array([-10.0 - k]), 0, k,
                                       ConeType.NEGATIVE_ORTHANT).unwrap()
            self.solver.set_state(np.full(2, 10.0 + k), k).unwrap()
            self.solver.set_dual(np.array([float(k)]), k, 0).unwrap()
        for k in range(self.N - 1):
            self.solver.set_dynamics(np.eye(2), np.ones((2, 1)), np.full(2, float(k)), k).unwrap()
            self.solver.set_input_cost(np.eye(1), np.array([float(k)]), k).unwrap()
            self.solver.set_input(np.array([20.0 + k]), k).unwrap()

    def test_data_moves_down(self):
        self.solver.shift_problem().unwrap()
        for k in range(self.N - 1):
            with self.subTest(k=k):
                Q, q = self.solver.get_state_cost(k).value
                np.testing.assert_array_equal(Q.to_dense(), np.eye(2) * (k + 2))
                np.testing.assert_array_equal(q, np.full(2, k + 1.0))
                self.assertEqual(self.solver.get_constraint(0, k).value[2][0], -11.0 - k)
        for k in range(self.N - 2):
            f = self.solver.get_dynamics(k).value[4]
            np.testing.assert_array_equal(f, np.full(2, k + 1.0))

    def test_iterates_move_down(self):
        self.solver.shift_problem().unwrap()
        for k in range(self.N - 1):
            np.testing.assert_array_equal(self.solver.get_state(k).value, np.full(2, 11.0 + k))
            np.testing.assert_array_equal(self.solver.get_dual(k, 0).value, [k + 1.0])
        for k in range(self.N - 2):
            np.testing.assert_array_equal(self.solver.get_input(k).value, [21.0 + k])

    def test_new_last_step_is_zero(self):
        self.solver.shift_problem().unwrap()
        last = self.N - 1
        np.testing.assert_array_equal(self.solver.get_state(last).value, np.zeros(2))
        np.testing.assert_array_equal(self.solver.get_dual(last, 0).value, np.zeros(1))
        Q, q = self.solver.get_state_cost(last).value
        np.testing.assert_array_equal(Q.to_dense(), np.zeros((2, 2)))
        np.testing.assert_array_equal(q, np.zeros(2))
        # the cone declaration survives
        self.assertEqual(self.solver.get_constraint(0, last).value[3], ConeType.NEGATIVE_ORTHANT)

    def test_shift_with_copy(self):
        last = self.N - 1
        before_cost = self.solver.get_state_cost(last).value
        before_state = self.solver.get_state(last).value
        self.solver.shift_problem_with_copy().unwrap()
        Q, q = self.solver.get_state_cost(last).value
        self.assertEqual(Q, before_cost[0])
        np.testing.assert_array_equal(q, before_cost[1])
        np.testing.assert_array_equal(self.solver.get_state(last).value, before_state)
        np.testing.assert_array_equal(self.solver.get_state(last - 1).value, before_state)
        # the two steps are backed by different slots
        self.solver.set_state_cost(np.eye(2), np.zeros(2), last).unwrap()
        np.testing.assert_array_equal(self.solver.get_state_cost(last - 1).value[1], before_cost[1])

    def test_repeated_shifts(self):
        for _ in range(self.N + 2):
            self.solver.shift_problem_with_copy().unwrap()
        for k in range(self.N):
            np.testing.assert_array_equal(self.solver.get_state_cost(k).value[1], np.full(2, 4.0))

    def test_shift_keeps_problem_solvable(self):
        self.solver.set_initial_state([1.0, 0.0]).unwrap()
        self.assertEqual(self.solver.solve().value, SolveStatus.SOLVED)
        self.solver.shift_problem_with_copy().unwrap()
        self.assertEqual(self.solver.get_solve_status(), SolveStatus.UNSOLVED)
        self.assertEqual(self.solver.solve().value, SolveStatus.SOLVED)


class TestShiftSharedStorage(unittest.TestCase):

    def setUp(self):
        self.solver = new_solver_custom_storage([2] * 4, [1] * 3, None, 1, [0, 0, 0, 0]).unwrap()
        self.solver.set_state_cost(np.eye(2), np.ones(2)).unwrap()

    def test_zeroing_shared_slot_fails(self):
        result = self.solver.shift_problem()
        self.assertEqual(result.error, ErrorCode.CONFIG_ERROR)
        np.testing.assert_array_equal(self.solver.get_state_cost(3).value[1], np.ones(2))

    def test_copy_keeps_shared_slot(self):
        self.solver.set_state(np.array([1.0, 2.0]), 3).unwrap()
        self.solver.shift_problem_with_copy().unwrap()
        self.assertEqual(self.solver.get_info()['step_to_storage'], [0, 0, 0, 0])
        np.testing.assert_array_equal(self.solver.get_state_cost(3).value[1], np.ones(2))
        np.testing.assert_array_equal(self.solver.get_state(2).value, [1.0, 2.0])
        np.testing.assert_array_equal(self.solver.get_state(3).value, [1.0, 2.0])

    def test_non_uniform_sizes(self):
        solver = new_solver([2, 3, 3], [1, 1]).unwrap()
        self.assertEqual(solver.shift_problem().error, ErrorCode.DIMENSION_ERROR)
        self.assertEqual(solver.shift_problem_with_copy().error, ErrorCode.DIMENSION_ERROR)


if __name__ == '__main__':
    unittest.main()
