#!/usr/bin/env python3
"""
Closed-Loop Simulation
Receding-horizon MPC loop around a linear model, solved with the ADMM solver
and warm started through horizon shifts
"""

import logging
from typing import Dict, Optional

import numpy as np
import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend for server environments
import matplotlib.pyplot as plt

from .cones import in_cone
from .models import LinearModel
from .options import SolverOptions
from .solver import Solver, new_solver
from .types import ConeType, Diagonal, SolveStatus

logger = logging.getLogger(__name__)


def box_constraint(lower: np.ndarray, upper: np.ndarray):
    """Encode lower <= v <= upper as S v + h <= 0 over the finite bounds"""
    n = lower.shape[0]
    eye = np.eye(n)
    rows, h = [], []
    for i in range(n):
        if np.isfinite(upper[i]):
            rows.append(eye[i])
            h.append(-upper[i])
        if np.isfinite(lower[i]):
            rows.append(-eye[i])
            h.append(lower[i])
    return np.array(rows).reshape(len(rows), n), np.array(h)


class ClosedLoopSimulator:
    """Track a reference with MPC on a linear model"""

    def __init__(self, model: LinearModel, X_ref: np.ndarray, horizon: int = 20,
                 dt: float = 0.02, options: Optional[SolverOptions] = None):
        """
        Args:
            model: Plant and prediction model
            X_ref: Reference states, shape (nstates, T) or (nstates,) for a set point
            horizon: Number of knot points in the MPC problem
            dt: Sampling time
        """
        self.model = model
        X_ref = np.asarray(X_ref, dtype=float)
        self.X_ref = X_ref.reshape(-1, 1) if X_ref.ndim == 1 else X_ref
        self.horizon = horizon
        self.dt = dt
        self.A, self.B, self.f = model.system_matrices(dt)
        self.q_diag, self.r_diag = model.cost_weights()
        self.bounds = model.bounds()
        self.solver = self._setup_solver(options)
        self.reset()

    def _setup_solver(self, options: Optional[SolverOptions]) -> Solver:
        nx, nu, N = self.model.nstates, self.model.ninputs, self.horizon
        Gx, hx = self.state_box = box_constraint(self.bounds['x_min'], self.bounds['x_max'])
        Hu, hu = self.input_box = box_constraint(self.bounds['u_min'], self.bounds['u_max'])
        constraint_dims = [[hx.shape[0], hu.shape[0]]] * N

        solver = new_solver([nx] * N, [nu] * (N - 1), constraint_dims,
                            use_diagonal_costs=True, use_explicit_integration=True,
                            options=options).unwrap()
        solver.set_dynamics(self.A, self.B, self.f).unwrap()
        solver.set_constraint(Gx, None, hx, 0, cone=ConeType.NEGATIVE_ORTHANT).unwrap()
        solver.set_constraint(None, Hu, hu, 1, cone=ConeType.NEGATIVE_ORTHANT).unwrap()
        for k in range(N):
            self._set_reference(solver, k, k)
        return solver

    def _reference(self, t: int) -> np.ndarray:
        return self.X_ref[:, min(t, self.X_ref.shape[1] - 1)]

    def _set_reference(self, solver: Solver, k: int, t: int):
        solver.set_tracking_cost(Diagonal(self.q_diag), Diagonal(self.r_diag),
                                 self._reference(t), np.zeros(self.model.ninputs), k).unwrap()

    def reset(self):
        """Reset simulation state"""
        self.x_history = []
        self.u_history = []
        self.status_history = []
        self.iteration_history = []
        self.solve_time_history = []
        self.cost_history = []

    def simulate(self, steps: int = 100, initial_state: Optional[np.ndarray] = None) -> Dict:
        """Run the closed loop and return get_results()"""
        rng = self.model.noise_model.generator()
        noise = self.model.noise_model
        x = np.zeros(self.model.nstates) if initial_state is None else np.array(initial_state, dtype=float)
        self.reset()
        self.x_history.append(x.copy())
        Q, R = np.diag(self.q_diag), np.diag(self.r_diag)

        for t in range(steps):
            x_meas = x + rng.normal(0, noise.measurement_std, x.shape) if noise.measurement_std > 0 else x
            self.solver.set_initial_state(x_meas).unwrap()
            status = self.solver.solve().unwrap()
            if status != SolveStatus.SOLVED:
                logger.warning(f"Step {t}: solver returned {status.name}")
            u = self.solver.get_input(0).unwrap() if self.horizon > 1 else np.zeros(self.model.ninputs)

            err = x - self._reference(t)
            self.cost_history.append(float(err @ Q @ err + u @ R @ u))
            self.status_history.append(status)
            self.iteration_history.append(self.solver.iterations())
            self.solve_time_history.append(self.solver.solve_time())

            x = self.model.step(x, u, self.dt)
            if noise.process_std > 0:
                x = x + rng.normal(0, noise.process_std, x.shape)
            self.x_history.append(x.copy())
            self.u_history.append(u.copy())

            # warm start the next problem from the shifted solution
            self.solver.shift_problem_with_copy().unwrap()
            for k in range(self.horizon):
                self._set_reference(self.solver, k, t + 1 + k)

        results = self.get_results()
        logger.info(f"Simulated {steps} steps: mean tracking error "
                    f"{results.get('mean_tracking_error', 0.0):.4f}, "
                    f"solved {results.get('solved_fraction', 0.0):.0%}")
        return results

    def get_results(self) -> Dict:
        """Histories and performance metrics"""
        x_history = np.array(self.x_history)
        u_history = np.array(self.u_history)
        results = {
            'x_history': x_history,
            'u_history': u_history,
            'status_history': list(self.status_history),
            'cost_history': list(self.cost_history),
        }
        if len(x_history) > 0:
            results.update(self._calculate_performance_metrics(x_history, u_history))
        return results

    def _calculate_performance_metrics(self, x_history: np.ndarray, u_history: np.ndarray) -> Dict:
        metrics = {}
        errors = np.array([np.linalg.norm(x_history[i] - self._reference(i))
                           for i in range(len(x_history))])
        metrics['final_tracking_error'] = float(errors[-1])
        metrics['mean_tracking_error'] = float(np.mean(errors))
        metrics['max_tracking_error'] = float(np.max(errors))

        if self.status_history:
            metrics['solved_fraction'] = float(np.mean([s == SolveStatus.SOLVED for s in self.status_history]))
            metrics['mean_iterations'] = float(np.mean(self.iteration_history))
            metrics['mean_solve_time'] = float(np.mean(self.solve_time_history))
            metrics['average_cost'] = float(np.mean(self.cost_history))

        if len(u_history) > 0:
            metrics['max_control_input'] = float(np.max(np.abs(u_history)))
            metrics['constraint_violations'] = (self._count_violations(self.state_box, x_history) +
                                                self._count_violations(self.input_box, u_history))
        return metrics

    @staticmethod
    def _count_violations(box, history: np.ndarray, tol: float = 1e-4) -> int:
        """Number of samples outside the box S v + h <= 0"""
        S, h = box
        return sum(not in_cone(ConeType.NEGATIVE_ORTHANT, S @ v + h, tol) for v in history)

    def plot_results(self, save_filename: str = 'simulation_results.png'):
        """Plot state and input histories against the reference and bounds"""
        x_history = np.array(self.x_history)
        u_history = np.array(self.u_history)
        t_x = np.arange(len(x_history)) * self.dt
        t_u = np.arange(len(u_history)) * self.dt
        x_ref = np.array([self._reference(i) for i in range(len(x_history))])

        fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(15, 6))

        for i in range(x_history.shape[1]):
            line, = ax1.plot(t_x, x_history[:, i], linewidth=2, label=f'x[{i}]')
            ax1.plot(t_x, x_ref[:, i], '--', color=line.get_color(), alpha=0.6)
        ax1.set_xlabel('Time (s)')
        ax1.set_ylabel('State')
        ax1.set_title('States (dashed: reference)')
        ax1.grid(True, alpha=0.3)
        if x_history.shape[1] <= 8:
            ax1.legend()

        if len(u_history) > 0:
            for i in range(u_history.shape[1]):
                ax2.step(t_u, u_history[:, i], where='post', linewidth=2, label=f'u[{i}]')
            for bound in ('u_min', 'u_max'):
                for value in np.unique(self.bounds[bound]):
                    ax2.axhline(y=value, color='red', linestyle='--', alpha=0.5)
            ax2.legend()
        ax2.set_xlabel('Time (s)')
        ax2.set_ylabel('Input')
        ax2.set_title('Inputs (dashed: bounds)')
        ax2.grid(True, alpha=0.3)

        plt.tight_layout()
        plt.savefig(save_filename, dpi=150, bbox_inches='tight')
        plt.close(fig)
        logger.info(f"Plot saved as '{save_filename}'")
