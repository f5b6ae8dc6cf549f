"""
Residuals and termination rules for the ADMM iteration
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .kkt import KKTSolver
from .options import SolverOptions
from .problem_data import ProblemData
from .types import SolveStatus
from .workspace import Workspace

logger = logging.getLogger(__name__)


def _inf_norm(v: np.ndarray) -> float:
    return float(np.max(np.abs(v))) if v.size else 0.0


@dataclass
class Residuals:
    """Diagnostics of the current iterate (infinity norms)"""
    primal: float = np.inf
    dual: float = np.inf
    stationarity: float = np.inf
    complementarity: float = np.inf
    constraint_gap: float = np.inf     # ||c - z||
    dual_step: float = np.inf          # ||rho (c - z)||
    dual_step_change: float = np.inf   # change of the above between iterations

    def as_dict(self):
        return {
            'primal_feasibility': self.primal,
            'dual_feasibility': self.dual,
            'stationarity': self.stationarity,
            'complementarity': self.complementarity,
        }


class ConvergenceMonitor:
    """Computes feasibility, stationarity and complementarity of the iterate"""

    def __init__(self, data: ProblemData, workspace: Workspace, kkt: KKTSolver):
        self.data = data
        self.workspace = workspace
        self.kkt = kkt
        self.residuals = Residuals()

    def reset(self):
        self.residuals = Residuals()

    def _input(self, k: int) -> np.ndarray:
        m = self.kkt._input_dim(k)
        return self.workspace.u[k][:m]

    def dynamics_residual(self) -> float:
        ws = self.workspace
        N = self.data.num_horizon
        worst = _inf_norm(ws.x[0] - self.data.x_init)
        for k in range(N - 1):
            A, B, C, D, f = self.data.dynamics_matrices(k)
            u_next = self._input(k + 1)
            r = A @ ws.x[k] + B @ ws.u[k] + C @ ws.x[k + 1] + D[:, :u_next.shape[0]] @ u_next + f
            worst = max(worst, _inf_norm(r))
        return worst

    def stationarity(self) -> float:
        """||grad L|| of the unpenalized cost, conic duals and equality duals"""
        ws = self.workspace
        N = self.data.num_horizon
        worst = 0.0
        for k in range(N):
            d = self.data.slot(k)
            u = self._input(k)
            y = np.concatenate([ws.x[k], u])
            grad = self.kkt.stage_hessian(k, 0.0) @ y + np.concatenate([d.q, d.r[:u.shape[0]]])
            for i, con in enumerate(d.constraints):
                if con.is_declared:
                    grad += self.kkt.stage_jacobian(k, i).T @ ws.lam[k][i]
            if k < N - 1:
                A, B, _, _, _ = self.data.dynamics_matrices(k)
                grad += np.hstack([A, B]).T @ ws.y[k]
            mu = ws.y_init if k == 0 else ws.y[k - 1]
            grad += self.kkt._incoming_coupling(k).T @ mu
            worst = max(worst, _inf_norm(grad))
        return worst

    def evaluate(self, penalty_scaling: float, dual_step_change: float = np.inf) -> Residuals:
        ws = self.workspace
        N = self.data.num_horizon
        primal = self.dynamics_residual()
        dual = 0.0
        compl = 0.0
        worst_gap = 0.0
        dual_step = 0.0
        for k in range(N):
            d = self.data.slot(k)
            u = self._input(k)
            for i, con in enumerate(d.constraints):
                if not con.is_declared:
                    continue
                rho = penalty_scaling * con.rho
                c = con.G @ ws.x[k] + con.H[:, :u.shape[0]] @ u + con.h
                gap = c - ws.z[k][i]
                worst_gap = max(worst_gap, _inf_norm(gap))
                dual = max(dual, rho * _inf_norm(ws.z[k][i] - ws.z_prev[k][i]))
                compl = max(compl, abs(float(ws.lam[k][i] @ gap)))
                dual_step = max(dual_step, rho * _inf_norm(gap))
        self.residuals = Residuals(
            primal=max(primal, worst_gap),
            dual=dual,
            stationarity=self.stationarity(),
            complementarity=compl,
            constraint_gap=worst_gap,
            dual_step=dual_step,
            dual_step_change=dual_step_change,
        )
        return self.residuals

    def classify(self, options: SolverOptions, iteration: int) -> Optional[SolveStatus]:
        """Terminal status for the current residuals, or None to keep iterating"""
        res = self.residuals
        values = (res.primal, res.dual, res.stationarity, res.complementarity)
        if not all(np.isfinite(v) for v in values):
            logger.warning(f"Non-finite residuals at iteration {iteration}")
            return SolveStatus.INFEASIBLE
        if res.primal <= options.tol_primal and res.dual <= options.tol_dual:
            return SolveStatus.SOLVED
        # a constraint gap that settles at a nonzero value: the dual iterate
        # drifts at a constant rate and ADMM cannot close the gap
        if (iteration > 1 and res.constraint_gap > options.tol_primal and
                res.dual_step_change <= options.tol_infeasibility * res.dual_step):
            logger.debug(f"Dual step stalled at {res.dual_step:.3e} (iteration {iteration})")
            return SolveStatus.INFEASIBLE
        if iteration >= options.max_iterations:
            return SolveStatus.MAXITERS
        return None
