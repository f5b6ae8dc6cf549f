"""
ADMM iteration loop

Splits every conic constraint c = G x + H u + h in K into c - z = 0 and
z in K, then alternates the equality-constrained KKT solve, the slack
projection and the scaled dual ascent until the convergence monitor reports
a terminal status. Also implements the receding-horizon shift of data and
iterates.
"""

import logging
import time

import numpy as np

from .cones import project
from .convergence import ConvergenceMonitor
from .errors import ConfigError, DimensionError, SingularSystemError
from .kkt import KKTSolver
from .options import SolverOptions
from .problem_data import ProblemData
from .types import SolveStatus
from .workspace import Workspace

logger = logging.getLogger(__name__)


class ADMMEngine:
    """Runs Solve calls and owns the iterates of one solver instance"""

    def __init__(self, data: ProblemData, workspace: Workspace, options: SolverOptions):
        self.data = data
        self.workspace = workspace
        self.options = options
        self.kkt = KKTSolver(data, workspace)
        self.monitor = ConvergenceMonitor(data, workspace, self.kkt)

        self.status = SolveStatus.UNSOLVED
        self.iterations = 0
        self.solve_time = 0.0

    # ------------------------------------------------------------------ #
    # iteration
    # ------------------------------------------------------------------ #

    def _update_slacks_and_duals(self, penalty_scaling: float) -> float:
        """z <- Pi_K(c + lambda/rho), lambda <- lambda + rho (c - z)

        Returns the largest change of the dual step rho (c - z) with respect to
        the previous iteration.
        """
        ws = self.workspace
        change = 0.0
        for k in range(self.data.num_horizon):
            d = self.data.slot(k)
            m = self.kkt._input_dim(k)
            for i, con in enumerate(d.constraints):
                if not con.is_declared:
                    continue
                rho = penalty_scaling * con.rho
                c = con.G @ ws.x[k] + con.H[:, :m] @ ws.u[k][:m] + con.h
                np.copyto(ws.z_prev[k][i], ws.z[k][i])
                z = project(con.cone, c + ws.lam[k][i] / rho)
                step = rho * (c - z)
                change = max(change, float(np.max(np.abs(step - ws.dlam[k][i]))))
                np.copyto(ws.z[k][i], z)
                np.copyto(ws.dlam[k][i], step)
                ws.lam[k][i] += step
        return change

    def _iterate(self) -> SolveStatus:
        opts = self.options
        scaling = opts.penalty_scaling
        for it in range(1, opts.max_iterations + 1):
            self.iterations = it
            self.kkt.solve(scaling)
            change = self._update_slacks_and_duals(scaling)

            if it % opts.check_termination == 0 or it == opts.max_iterations:
                res = self.monitor.evaluate(scaling, change)
                logger.debug(f"Iteration {it}: primal={res.primal:.3e}, dual={res.dual:.3e}")
                status = self.monitor.classify(opts, it)
                if status is not None:
                    return status
        return SolveStatus.MAXITERS

    def solve(self) -> SolveStatus:
        """Run ADMM from the current (warm start) iterates to a terminal status"""
        start = time.perf_counter()
        self.iterations = 0
        self.monitor.reset()
        try:
            self.status = self._iterate()
        except SingularSystemError as e:
            logger.warning(f"Solve stopped: {e}")
            self.status = SolveStatus.INFEASIBLE
        except (np.linalg.LinAlgError, ValueError) as e:
            logger.warning(f"Solve stopped on inconsistent problem data: {e}")
            self.status = SolveStatus.INFEASIBLE
        self.solve_time = time.perf_counter() - start

        res = self.monitor.residuals
        logger.info(f"Solve finished: {self.status.name} after {self.iterations} iterations "
                    f"in {self.solve_time * 1e3:.2f} ms "
                    f"(primal={res.primal:.3e}, dual={res.dual:.3e})")
        return self.status

    # ------------------------------------------------------------------ #
    # state management
    # ------------------------------------------------------------------ #

    def reset(self):
        self.workspace.reset()
        self.monitor.reset()
        self.status = SolveStatus.UNSOLVED
        self.iterations = 0
        self.solve_time = 0.0

    def reset_duals(self):
        self.workspace.reset_duals()

    def invalidate(self):
        self.kkt.invalidate()

    def shift(self, copy_last: bool):
        """Drop step 0 and move every other step down by one

        The slot of the dropped step becomes the slot of the new last step
        and is zeroed, or receives a copy of the former last step. When the
        dropped slot is still used by another step, the copying variant maps
        the new last step onto the former last step's slot instead.
        """
        data, ws, mapper = self.data, self.workspace, self.data.mapper
        n = data.num_horizon
        if not ws.is_uniform(n):
            raise DimensionError("Shifting requires identical sizes at every time step")

        old = mapper.table[:n].copy()
        dropped, former_last = int(old[0]), int(old[n - 1])
        if mapper.is_shared(dropped, range(1, mapper.capacity)):
            if not copy_last:
                raise ConfigError(
                    f"Storage slot {dropped} of time step 0 is shared with other time steps "
                    f"and cannot be zeroed")
            last = former_last
        else:
            last = dropped
            if copy_last and not data.slots[last].same_layout(data.slots[former_last]):
                raise DimensionError(
                    f"Storage slots {last} and {former_last} have different layouts")

        if not copy_last:
            data.slots[last].clear()
        elif last != former_last:
            data.slots[last].copy_from(data.slots[former_last])
        mapper.rotate_window(last)
        data.revision += 1
        ws.shift(n, copy_last)
        self.kkt.invalidate()
        self.status = SolveStatus.UNSOLVED
        logger.debug(f"Shifted horizon of {n} steps, new last slot {last} (copy={copy_last})")
