"""
Primal, dual and slack trajectories

Trajectories are stored per logical time step and are never shared between
steps, even when the steps share problem data. They persist across solves so
the next solve is warm started.
"""

import logging
from typing import List, Sequence

import numpy as np

from .errors import AllocationError, DimensionError

logger = logging.getLogger(__name__)


class Workspace:
    """Preallocated iterates of the ADMM solver"""

    def __init__(self, num_states: Sequence[int], num_inputs: Sequence[int],
                 constraint_dims: Sequence[Sequence[int]], dtype=np.float64):
        self.num_states = list(num_states)
        self.num_inputs = list(num_inputs)
        self.constraint_dims = [list(dims) for dims in constraint_dims]
        capacity = len(self.num_states)
        try:
            self.x = [np.zeros(n, dtype=dtype) for n in self.num_states]
            self.u = [np.zeros(m, dtype=dtype) for m in self.num_inputs]
            # y[k] multiplies the coupling between steps k and k+1
            self.y = [np.zeros(self.num_states[min(k + 1, capacity - 1)], dtype=dtype)
                      for k in range(capacity)]
            self.y_init = np.zeros(self.num_states[0], dtype=dtype)
            self.z = [[np.zeros(p, dtype=dtype) for p in dims] for dims in self.constraint_dims]
            self.z_prev = [[np.zeros(p, dtype=dtype) for p in dims] for dims in self.constraint_dims]
            self.lam = [[np.zeros(p, dtype=dtype) for p in dims] for dims in self.constraint_dims]
            self.dlam = [[np.zeros(p, dtype=dtype) for p in dims] for dims in self.constraint_dims]
        except MemoryError as e:
            raise AllocationError(f"Could not allocate workspace: {e}") from e

    @property
    def capacity(self) -> int:
        return len(self.x)

    def reset(self):
        """Clear primal, dual and slack values"""
        for arrays in (self.x, self.u, self.y):
            for a in arrays:
                a[:] = 0
        self.y_init[:] = 0
        for group in (self.z, self.z_prev, self.lam, self.dlam):
            for arrays in group:
                for a in arrays:
                    a[:] = 0

    def reset_duals(self):
        for a in self.y:
            a[:] = 0
        self.y_init[:] = 0
        for group in (self.lam, self.dlam):
            for arrays in group:
                for a in arrays:
                    a[:] = 0

    def is_uniform(self, num_horizon: int) -> bool:
        first = (self.num_states[0], self.num_inputs[0], self.constraint_dims[0])
        return all((self.num_states[k], self.num_inputs[k], self.constraint_dims[k]) == first
                   for k in range(num_horizon))

    def shift(self, num_horizon: int, copy_last: bool):
        """Move step k+1 to step k; the last step is zeroed or keeps its copy"""
        if not self.is_uniform(num_horizon):
            raise DimensionError("Shifting requires identical sizes at every time step")
        n = num_horizon
        if n > 1:
            # the old step 1 pin becomes the initial-state multiplier
            np.copyto(self.y_init, self.y[0])
        _shift_rows(self.x, n, copy_last)
        _shift_rows(self.u, n, copy_last)
        _shift_rows(self.y, n - 1, copy_last)
        for group in (self.z, self.z_prev, self.lam, self.dlam):
            for k in range(n - 1):
                for dst, src in zip(group[k], group[k + 1]):
                    np.copyto(dst, src)
            if not copy_last:
                for a in group[n - 1]:
                    a[:] = 0
        logger.debug(f"Workspace shifted over {n} steps (copy_last={copy_last})")

    def check_shapes(self, k: int, nx: int, nu: int, constraint_dims: List[int]):
        if (self.num_states[k], self.num_inputs[k], self.constraint_dims[k]) != (nx, nu, constraint_dims):
            raise DimensionError(
                f"Storage layout ({nx}, {nu}, {constraint_dims}) does not match the "
                f"workspace at time step {k}")


def _shift_rows(rows: List[np.ndarray], n: int, copy_last: bool):
    if n < 1:
        return
    for k in range(n - 1):
        np.copyto(rows[k], rows[k + 1])
    if not copy_last:
        rows[n - 1][:] = 0
