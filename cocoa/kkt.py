"""
Block-tridiagonal KKT solve for the equality-constrained subproblem

Each ADMM iteration minimizes the quadratic cost plus the augmented
penalty of every conic constraint, subject to the dynamics chain

    A_k x_k + B_k u_k + C_k x_{k+1} + D_k u_{k+1} + f_k = 0,   x_0 = x_init.

With y_k = (x_k, u_k), E_k = [A_k B_k] and F_k = [C_k D_k] the coupling reads
E_k y_k + F_k y_{k+1} + f_k = 0. The backward pass builds the cost-to-go as a
quadratic function of the incoming coupling w = E_{k-1} y_{k-1} + f_{k-1}:

    J_k(w) = min  1/2 y'L_k y + l_k'y + J_{k+1}(E_k y + f_k)
             s.t. F_{k-1} y + w = 0

and solves one small KKT block per knot point. The multiplier of that block
is dJ_k/dw, which gives both the next value function and the dynamics duals.
Only the linear terms change between ADMM iterations, so the block inverses
are cached until costs, dynamics, penalties or the horizon change.
"""

import logging
from typing import List, Optional

import numpy as np

from .errors import SingularSystemError
from .problem_data import ProblemData
from .workspace import Workspace

logger = logging.getLogger(__name__)


class KKTSolver:
    """Riccati-style backward/forward solver over the time chain"""

    def __init__(self, data: ProblemData, workspace: Workspace):
        self.data = data
        self.workspace = workspace
        capacity = workspace.capacity
        self.Kinv: List[Optional[np.ndarray]] = [None] * capacity   # block inverses
        self.S: List[Optional[np.ndarray]] = [None] * capacity      # cost-to-go Hessians
        self.E: List[Optional[np.ndarray]] = [None] * capacity      # [A_k B_k]
        self.y0: List[Optional[np.ndarray]] = [None] * capacity     # feedforward terms
        self.mu0: List[Optional[np.ndarray]] = [None] * capacity
        self._key = None

    # ------------------------------------------------------------------ #

    def invalidate(self):
        self._key = None

    def _cache_key(self, penalty_scaling: float):
        return (self.data.revision, self.data.mapper.revision, float(penalty_scaling))

    @property
    def is_factorized(self) -> bool:
        return self._key is not None

    def _input_dim(self, k: int) -> int:
        """Inputs entering the problem at step k (none at the final step)"""
        return self.workspace.num_inputs[k] if k < self.data.num_horizon - 1 else 0

    def stage_jacobian(self, k: int, i: int) -> np.ndarray:
        """[G H] of constraint i at step k, restricted to the inputs in play"""
        con = self.data.slot(k).constraints[i]
        m = self._input_dim(k)
        return np.hstack([con.G, con.H[:, :m]])

    def stage_hessian(self, k: int, penalty_scaling: float) -> np.ndarray:
        d = self.data.slot(k)
        nx, m = d.nx, self._input_dim(k)
        L = np.zeros((nx + m, nx + m), dtype=self.data.dtype)
        L[:nx, :nx] = d.Q_dense()
        if m:
            L[nx:, nx:] = d.R_dense()
            if not self.data.is_block_diagonal:
                L[nx:, :nx] = d.Hux
                L[:nx, nx:] = d.Hux.T
        for i, con in enumerate(d.constraints):
            if con.is_declared:
                J = self.stage_jacobian(k, i)
                L += (penalty_scaling * con.rho) * (J.T @ J)
        return L

    def stage_gradient(self, k: int, penalty_scaling: float) -> np.ndarray:
        d = self.data.slot(k)
        m = self._input_dim(k)
        l = np.concatenate([d.q, d.r[:m]])
        for i, con in enumerate(d.constraints):
            if con.is_declared:
                rho = penalty_scaling * con.rho
                e = con.h - self.workspace.z[k][i] + self.workspace.lam[k][i] / rho
                l += rho * (self.stage_jacobian(k, i).T @ e)
        return l

    def _incoming_coupling(self, k: int) -> np.ndarray:
        """F_{k-1}, or the pin [I 0] of the initial state at k = 0"""
        nx, m = self.workspace.num_states[k], self._input_dim(k)
        if k == 0:
            return np.hstack([np.eye(nx, dtype=self.data.dtype),
                              np.zeros((nx, m), dtype=self.data.dtype)])
        _, _, C, D, _ = self.data.dynamics_matrices(k - 1)
        return np.hstack([C, D[:, :m]])

    # ------------------------------------------------------------------ #

    def factorize(self, penalty_scaling: float):
        """Backward pass over the quadratic terms; caches one block inverse per step"""
        key = self._cache_key(penalty_scaling)
        if key == self._key:
            return
        self._key = None
        N = self.data.num_horizon
        for k in range(N - 1, -1, -1):
            P = self.stage_hessian(k, penalty_scaling)
            if k < N - 1:
                A, B, _, _, _ = self.data.dynamics_matrices(k)
                E = np.hstack([A, B])
                P = P + E.T @ self.S[k + 1] @ E
                self.E[k] = E
            F = self._incoming_coupling(k)
            self._check_block(k, P, F)

            n, d = F.shape
            K = np.zeros((d + n, d + n), dtype=P.dtype)
            K[:d, :d] = P
            K[:d, d:] = F.T
            K[d:, :d] = F
            try:
                Kinv = np.linalg.inv(K)
            except np.linalg.LinAlgError as e:
                raise SingularSystemError(f"KKT block at time step {k} is singular: {e}") from e
            S = -Kinv[d:, d:]
            self.Kinv[k] = Kinv
            self.S[k] = 0.5 * (S + S.T)
        self._key = key
        logger.debug(f"KKT factorization updated for horizon {N}")

    def _check_block(self, k: int, P: np.ndarray, F: np.ndarray):
        """F must have full row rank and P must be positive definite on its null space"""
        if not np.all(np.isfinite(P)) or not np.all(np.isfinite(F)):
            raise SingularSystemError(f"Non-finite KKT data at time step {k}")
        n, d = F.shape
        _, sv, Vt = np.linalg.svd(F)
        eps = np.finfo(P.dtype).eps
        tol = max(F.shape) * eps * (sv[0] if sv.size else 0.0)
        rank = int(np.sum(sv > tol))
        if rank < n:
            raise SingularSystemError(
                f"Dynamics coupling into time step {k} is rank deficient ({rank} < {n})")
        Z = Vt[rank:].T
        if Z.shape[1] == 0:
            return
        reduced = Z.T @ P @ Z
        try:
            np.linalg.cholesky(0.5 * (reduced + reduced.T))
        except np.linalg.LinAlgError:
            raise SingularSystemError(
                f"Hessian at time step {k} is not positive definite on the dynamics null space"
            ) from None

    def solve(self, penalty_scaling: float):
        """Solve for the primal trajectory and equality duals given current z and lambda"""
        self.factorize(penalty_scaling)
        ws = self.workspace
        N = self.data.num_horizon

        # backward pass on the linear terms
        s_next = None
        for k in range(N - 1, -1, -1):
            p = self.stage_gradient(k, penalty_scaling)
            if k < N - 1:
                f = self.data.dynamics_matrices(k)[4]
                p = p + self.E[k].T @ (self.S[k + 1] @ f + s_next)
            Kinv = self.Kinv[k]
            d = p.shape[0]
            self.y0[k] = -Kinv[:d, :d] @ p
            self.mu0[k] = -Kinv[d:, :d] @ p
            s_next = self.mu0[k]

        # forward rollout from the pinned initial state
        w = -self.data.x_init
        for k in range(N):
            Kinv = self.Kinv[k]
            d = self.y0[k].shape[0]
            y = self.y0[k] - Kinv[:d, d:] @ w
            mu = self.mu0[k] - Kinv[d:, d:] @ w
            if not (np.all(np.isfinite(y)) and np.all(np.isfinite(mu))):
                raise SingularSystemError(f"Non-finite KKT solution at time step {k}")
            nx = ws.num_states[k]
            np.copyto(ws.x[k], y[:nx])
            if d > nx:
                np.copyto(ws.u[k], y[nx:])
            if k == 0:
                np.copyto(ws.y_init, mu)
            else:
                np.copyto(ws.y[k - 1], mu)
            if k < N - 1:
                w = self.E[k] @ y + self.data.dynamics_matrices(k)[4]
