"""
Solver facade

Entry point for the outer layer: construction, cost/dynamics/constraint
setters, solve control, state access, options and diagnostics. Every fallible
method returns a Result instead of raising, so a control loop always gets a
status back.
"""

import logging
from typing import Any, Dict, Optional, Sequence

import numpy as np

from .admm import ADMMEngine
from .errors import ConfigError, DimensionError, StorageIndexError, returns_result
from .options import SolverOption, SolverOptions, resolve_float_key, resolve_int_key
from .problem_data import BROADCAST, ProblemData
from .storage import StorageMapper, as_index
from .types import ConeType, SolveStatus, check_precision
from .workspace import Workspace

logger = logging.getLogger(__name__)


class Solver:
    """One COCP instance: problem data, iterates and the ADMM engine"""

    def __init__(self, data: ProblemData, options: Optional[SolverOptions] = None):
        self.data = data
        self.workspace = Workspace(data.num_states, data.num_inputs, data.constraint_dims,
                                   dtype=data.dtype)
        self.options = options if options is not None else SolverOptions()
        self.engine = ADMMEngine(data, self.workspace, self.options)

    # ------------------------------------------------------------------ #
    # construction flags
    # ------------------------------------------------------------------ #

    @property
    def precision(self) -> np.dtype:
        return self.data.dtype

    def uses_single_precision(self) -> bool:
        return self.data.dtype == np.float32

    def get_horizon_length(self) -> int:
        return self.data.num_horizon

    def uses_diagonal_costs(self) -> bool:
        return self.data.use_diagonal_costs

    def is_block_diagonal(self) -> bool:
        return self.data.is_block_diagonal

    def uses_explicit_integration(self) -> bool:
        return self.data.use_explicit_integration

    # ------------------------------------------------------------------ #
    # problem data
    # ------------------------------------------------------------------ #

    @returns_result
    def set_state_cost(self, Q, q, k: int = BROADCAST):
        self.data.set_state_cost(Q, q, k)

    @returns_result
    def set_input_cost(self, R, r, k: int = BROADCAST):
        self.data.set_input_cost(R, r, k)

    @returns_result
    def set_cross_term_cost(self, H, k: int = BROADCAST):
        self.data.set_cross_term_cost(H, k)

    @returns_result
    def set_tracking_cost(self, Q, R, xref, uref, k: int = BROADCAST):
        self.data.set_tracking_cost(Q, R, xref, uref, k)

    @returns_result
    def set_dynamics(self, A, B, f=None, k: int = BROADCAST, C=None, D=None, h: float = 0.0):
        """Dynamics between steps k and k+1

        Implicit form A x_k + B u_k + C x_{k+1} + D u_{k+1} + f = 0 (C = I and
        D = 0 when omitted), or x_{k+1} = A x_k + B u_k + f for solvers built
        with explicit integration.
        """
        self.data.set_dynamics(A, B, C, D, f, h, k)

    @returns_result
    def set_constraint(self, G, H, h, i: int, k: int = BROADCAST,
                       cone: ConeType = ConeType.NEGATIVE_ORTHANT):
        """Constraint i at step k: G x_k + H u_k + h in cone"""
        self.data.set_constraint(G, H, h, i, k, cone)

    @returns_result
    def set_penalty(self, rho: float, i: int, k: int = BROADCAST):
        self.data.set_penalty(rho, i, k)

    @returns_result
    def set_initial_state(self, x0):
        self.data.set_initial_state(x0)

    @returns_result
    def get_state_cost(self, k: int):
        return self.data.get_state_cost(k)

    @returns_result
    def get_input_cost(self, k: int):
        return self.data.get_input_cost(k)

    @returns_result
    def get_cross_term_cost(self, k: int):
        return self.data.get_cross_term_cost(k)

    @returns_result
    def get_dynamics(self, k: int):
        return self.data.get_dynamics(k)

    @returns_result
    def get_constraint(self, i: int, k: int):
        return self.data.get_constraint(i, k)

    @returns_result
    def get_penalty(self, i: int, k: int):
        return self.data.get_penalty(i, k)

    def get_initial_state(self) -> np.ndarray:
        return self.data.get_initial_state()

    # ------------------------------------------------------------------ #
    # iterates
    # ------------------------------------------------------------------ #

    def _steps(self, k: int, input_targeting: bool, allow_broadcast: bool = False):
        k = as_index(k)
        limit = self.data.num_horizon - 1 if input_targeting else self.data.num_horizon
        if allow_broadcast and k == BROADCAST:
            return range(limit)
        if not 0 <= k < limit:
            raise StorageIndexError(f"Time step {k} outside [0, {limit})")
        return [k]

    def _vector(self, value, n: int, name: str) -> np.ndarray:
        try:
            arr = np.asarray(value, dtype=self.data.dtype)
        except (TypeError, ValueError):
            raise DimensionError(f"{name} must be a numeric vector of shape ({n},)") from None
        if arr.shape != (n,):
            raise DimensionError(f"{name} must have shape ({n},), got {arr.shape}")
        return arr

    def _constraint_index(self, k: int, i: int):
        i = as_index(i, "Constraint index")
        dims = self.workspace.constraint_dims[k]
        if not 0 <= i < len(dims):
            raise StorageIndexError(f"Constraint index {i} outside [0, {len(dims)})")

    @returns_result
    def set_state(self, x, k: int = BROADCAST):
        steps = self._steps(k, input_targeting=False, allow_broadcast=True)
        staged = [self._vector(x, self.workspace.num_states[j], "x") for j in steps]
        for j, xv in zip(steps, staged):
            np.copyto(self.workspace.x[j], xv)

    @returns_result
    def get_state(self, k: int) -> np.ndarray:
        self._steps(k, input_targeting=False)
        return self.workspace.x[k].copy()

    @returns_result
    def set_input(self, u, k: int = BROADCAST):
        steps = self._steps(k, input_targeting=True, allow_broadcast=True)
        staged = [self._vector(u, self.workspace.num_inputs[j], "u") for j in steps]
        for j, uv in zip(steps, staged):
            np.copyto(self.workspace.u[j], uv)

    @returns_result
    def get_input(self, k: int) -> np.ndarray:
        self._steps(k, input_targeting=True)
        return self.workspace.u[k].copy()

    @returns_result
    def set_dual(self, lam, k: int, i: int):
        """Conic dual of constraint i at step k"""
        self._steps(k, input_targeting=False)
        self._constraint_index(k, i)
        lam = self._vector(lam, self.workspace.constraint_dims[k][i], "lambda")
        np.copyto(self.workspace.lam[k][i], lam)

    @returns_result
    def get_dual(self, k: int, i: int) -> np.ndarray:
        self._steps(k, input_targeting=False)
        self._constraint_index(k, i)
        return self.workspace.lam[k][i].copy()

    @returns_result
    def get_slack(self, k: int, i: int) -> np.ndarray:
        self._steps(k, input_targeting=False)
        self._constraint_index(k, i)
        return self.workspace.z[k][i].copy()

    @returns_result
    def get_dynamics_dual(self, k: int) -> np.ndarray:
        """Multiplier of the dynamics between steps k and k+1"""
        self._steps(k, input_targeting=True)
        return self.workspace.y[k].copy()

    def get_initial_state_dual(self) -> np.ndarray:
        return self.workspace.y_init.copy()

    # ------------------------------------------------------------------ #
    # solve control
    # ------------------------------------------------------------------ #

    @returns_result
    def solve(self) -> SolveStatus:
        return self.engine.solve()

    @returns_result
    def reset(self):
        """Clear primal, dual and slack iterates"""
        self.engine.reset()

    @returns_result
    def reset_duals(self):
        self.engine.reset_duals()

    @returns_result
    def reset_penalties(self):
        self.data.reset_penalties()

    @returns_result
    def shift_problem(self):
        """Drop step 0; the new last step starts from zero data and iterates

        Zeroing needs a slot of its own: when the storage slot of step 0 is
        shared with any other time step (a regulator mapping such as
        [0, 0, 0, 0]) this fails with CONFIG_ERROR and nothing moves. Use
        shift_problem_with_copy for shared storage.
        """
        self.engine.shift(copy_last=False)

    @returns_result
    def shift_problem_with_copy(self):
        """Drop step 0; the new last step repeats the former last step"""
        self.engine.shift(copy_last=True)

    @returns_result
    def change_horizon_length(self, num_horizon: int):
        self.data.mapper.change_horizon_length(num_horizon)
        self.engine.status = SolveStatus.UNSOLVED

    @returns_result
    def set_time_step_to_storage_mapping(self, step_to_storage: Sequence[int],
                                         num_horizon: Optional[int] = None):
        mapper = self.data.mapper
        table = np.asarray(step_to_storage).ravel()
        if num_horizon is None:
            num_horizon = table.shape[0]
        table = mapper.validate_mapping(table, num_horizon)
        ws = self.workspace
        for k, s in enumerate(table):
            slot = self.data.slots[int(s)]
            ws.check_shapes(k, slot.nx, slot.nu, [c.dim for c in slot.constraints])
            if k + 1 >= table.shape[0]:
                continue
            following = (ws.num_states[k + 1], ws.num_inputs[k + 1])
            if (slot.nx_next, slot.nu_next) != following:
                raise DimensionError(
                    f"Storage slot {s} couples to (states, inputs) = {(slot.nx_next, slot.nu_next)} "
                    f"but time step {k + 1} has {following}")
        mapper.set_mapping(table, num_horizon)
        self.engine.status = SolveStatus.UNSOLVED

    # ------------------------------------------------------------------ #
    # options
    # ------------------------------------------------------------------ #

    @returns_result
    def set_option_float(self, key, value: float):
        key = resolve_float_key(key)
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Option '{key.value}' expects a number, got {value!r}") from None
        self.options.set(key, value)
        if key == SolverOption.PENALTY_SCALING:
            self.engine.invalidate()

    @returns_result
    def set_option_int(self, key, value: int):
        key = resolve_int_key(key)
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise ConfigError(f"Option '{key.value}' expects an integer, got {value!r}")
        self.options.set(key, int(value))

    @returns_result
    def get_option_float(self, key) -> float:
        return float(self.options.get(resolve_float_key(key)))

    @returns_result
    def get_option_int(self, key) -> int:
        return int(self.options.get(resolve_int_key(key)))

    # ------------------------------------------------------------------ #
    # diagnostics
    # ------------------------------------------------------------------ #

    def get_solve_status(self) -> SolveStatus:
        return self.engine.status

    def primal_feasibility(self) -> float:
        return self.engine.monitor.residuals.primal

    def dual_feasibility(self) -> float:
        return self.engine.monitor.residuals.dual

    def stationarity(self) -> float:
        return self.engine.monitor.residuals.stationarity

    def complementarity(self) -> float:
        return self.engine.monitor.residuals.complementarity

    def iterations(self) -> int:
        return self.engine.iterations

    def solve_time(self) -> float:
        return self.engine.solve_time

    def get_info(self) -> Dict[str, Any]:
        """Snapshot of sizes, flags, options and the last solve"""
        info = {
            'num_horizon': self.data.num_horizon,
            'max_horizon': self.data.mapper.capacity,
            'num_data': self.data.mapper.num_data,
            'num_states': self.data.num_states[:self.data.num_horizon],
            'num_inputs': self.data.num_inputs[:self.data.num_horizon - 1],
            'constraint_dims': self.data.constraint_dims[:self.data.num_horizon],
            'step_to_storage': self.data.mapper.active_slots(),
            'precision': str(self.data.dtype),
            'use_diagonal_costs': self.data.use_diagonal_costs,
            'is_block_diagonal': self.data.is_block_diagonal,
            'use_explicit_integration': self.data.use_explicit_integration,
            'options': self.options.as_dict(),
            'status': self.engine.status.name,
            'iterations': self.engine.iterations,
            'solve_time': self.engine.solve_time,
        }
        info.update(self.engine.monitor.residuals.as_dict())
        return info


# ---------------------------------------------------------------------- #
# construction
# ---------------------------------------------------------------------- #

def _build(num_states, num_inputs, constraint_dims, mapper, use_diagonal_costs,
           is_block_diagonal, use_explicit_integration, dtype, options) -> Solver:
    dtype = check_precision(dtype)
    data = ProblemData(num_states, num_inputs, constraint_dims, mapper,
                       use_diagonal_costs=use_diagonal_costs,
                       is_block_diagonal=is_block_diagonal,
                       use_explicit_integration=use_explicit_integration,
                       dtype=dtype)
    solver = Solver(data, options)
    logger.info(f"Solver created: horizon={mapper.num_horizon}/{mapper.capacity}, "
                f"slots={mapper.num_data}, nx={data.num_states[0]}, nu={data.num_inputs[0]}, "
                f"precision={dtype}")
    return solver


@returns_result
def new_solver(num_states: Sequence[int], num_inputs: Sequence[int],
               constraint_dims: Optional[Sequence[Sequence[int]]] = None,
               num_horizon: Optional[int] = None,
               use_diagonal_costs: bool = False,
               is_block_diagonal: bool = False,
               use_explicit_integration: bool = False,
               dtype=np.float64,
               options: Optional[SolverOptions] = None) -> Solver:
    """Solver with one storage slot per time step

    Args:
        num_states: States per time step; its length is the longest horizon
        num_inputs: Inputs per time step (length num_states or one less)
        constraint_dims: Per time step, the dimension of every conic constraint
        num_horizon: Active horizon, at most len(num_states) (default: all)
    """
    mapper = StorageMapper.identity(len(num_states), num_horizon)
    return _build(num_states, num_inputs, constraint_dims, mapper, use_diagonal_costs,
                  is_block_diagonal, use_explicit_integration, dtype, options)


@returns_result
def new_solver_custom_storage(num_states: Sequence[int], num_inputs: Sequence[int],
                              constraint_dims: Optional[Sequence[Sequence[int]]],
                              num_data: int,
                              step_to_storage: Sequence[int],
                              num_horizon: Optional[int] = None,
                              use_diagonal_costs: bool = False,
                              is_block_diagonal: bool = False,
                              use_explicit_integration: bool = False,
                              dtype=np.float64,
                              options: Optional[SolverOptions] = None) -> Solver:
    """Solver whose time steps share num_data storage slots through step_to_storage"""
    mapper = StorageMapper(num_data, len(num_states))
    table = np.asarray(step_to_storage, dtype=np.intp).ravel()
    mapper.set_mapping(table, table.shape[0] if num_horizon is None else num_horizon)
    return _build(num_states, num_inputs, constraint_dims, mapper, use_diagonal_costs,
                  is_block_diagonal, use_explicit_integration, dtype, options)
