"""
Problem data arena

One KnotPointData record per storage slot holds the cost, dynamics and
constraint coefficients. All buffers are allocated when the arena is built;
setters validate first and then copy into the existing buffers, so a failed
call never leaves a partial write behind.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import AllocationError, ConfigError, DimensionError, StorageIndexError
from .storage import StorageMapper, as_index
from .types import ConeType, Dense, Diagonal, QuadraticTerm, as_quadratic_term

logger = logging.getLogger(__name__)

BROADCAST = -1


class ConstraintData:
    """Coefficients of one conic constraint G x + H u + h in K"""

    def __init__(self, dim: int, nx: int, nu: int, dtype):
        self.dim = dim
        self.G = np.zeros((dim, nx), dtype=dtype)
        self.H = np.zeros((dim, nu), dtype=dtype)
        self.h = np.zeros(dim, dtype=dtype)
        self.cone: Optional[ConeType] = None
        self.rho = 1.0

    @property
    def is_declared(self) -> bool:
        return self.cone is not None

    def evaluate(self, x: np.ndarray, u: Optional[np.ndarray]) -> np.ndarray:
        c = self.G @ x + self.h
        if u is not None:
            c += self.H @ u
        return c

    def clear(self):
        self.G[:] = 0
        self.H[:] = 0
        self.h[:] = 0

    def copy_from(self, other: 'ConstraintData'):
        np.copyto(self.G, other.G)
        np.copyto(self.H, other.H)
        np.copyto(self.h, other.h)
        self.rho = other.rho


class KnotPointData:
    """Cost, dynamics and constraint coefficients stored in one slot"""

    def __init__(self, nx: int, nu: int, nx_next: int, nu_next: int,
                 constraint_dims: Sequence[int], use_diagonal_costs: bool, dtype):
        self.nx = nx
        self.nu = nu
        self.nx_next = nx_next
        self.nu_next = nu_next

        # Cost
        self.Q = np.zeros(nx if use_diagonal_costs else (nx, nx), dtype=dtype)
        self.q = np.zeros(nx, dtype=dtype)
        self.R = np.zeros(nu if use_diagonal_costs else (nu, nu), dtype=dtype)
        self.r = np.zeros(nu, dtype=dtype)
        self.Hux = np.zeros((nu, nx), dtype=dtype)
        self.Q_diagonal = use_diagonal_costs
        self.R_diagonal = use_diagonal_costs

        # Dynamics
        self.A = np.zeros((nx_next, nx), dtype=dtype)
        self.B = np.zeros((nx_next, nu), dtype=dtype)
        self.C = np.zeros((nx_next, nx_next), dtype=dtype)
        self.D = np.zeros((nx_next, nu_next), dtype=dtype)
        self.f = np.zeros(nx_next, dtype=dtype)
        self.h = 0.0
        self.has_C = False
        self.has_D = False

        self.constraints = [ConstraintData(p, nx, nu, dtype) for p in constraint_dims]

    def Q_dense(self) -> np.ndarray:
        return np.diag(self.Q) if self.Q.ndim == 1 else self.Q

    def R_dense(self) -> np.ndarray:
        return np.diag(self.R) if self.R.ndim == 1 else self.R

    def clear(self):
        """Zero every coefficient; cone declarations are kept"""
        for buf in (self.Q, self.q, self.R, self.r, self.Hux,
                    self.A, self.B, self.C, self.D, self.f):
            buf[:] = 0
        self.h = 0.0
        self.has_C = False
        self.has_D = False
        for con in self.constraints:
            con.clear()

    def copy_from(self, other: 'KnotPointData'):
        for name in ('Q', 'q', 'R', 'r', 'Hux', 'A', 'B', 'C', 'D', 'f'):
            np.copyto(getattr(self, name), getattr(other, name))
        self.Q_diagonal = other.Q_diagonal
        self.R_diagonal = other.R_diagonal
        self.h = other.h
        self.has_C = other.has_C
        self.has_D = other.has_D
        for con, src in zip(self.constraints, other.constraints):
            con.copy_from(src)
            con.cone = src.cone

    def same_layout(self, other: 'KnotPointData') -> bool:
        return ((self.nx, self.nu, self.nx_next, self.nu_next) ==
                (other.nx, other.nu, other.nx_next, other.nu_next) and
                [c.dim for c in self.constraints] == [c.dim for c in other.constraints])


def _pad_inputs(num_inputs: Sequence[int], capacity: int) -> List[int]:
    num_inputs = [int(m) for m in num_inputs]
    if len(num_inputs) == capacity:
        return num_inputs
    if len(num_inputs) == capacity - 1:
        # The final knot point has no input; give it the preceding layout
        return num_inputs + [num_inputs[-1] if num_inputs else 0]
    raise DimensionError(
        f"num_inputs has {len(num_inputs)} entries, expected {capacity - 1} or {capacity}")


def _slot_value(values: dict, s: int, value, what: str):
    if s in values and values[s] != value:
        raise DimensionError(
            f"Time steps sharing storage slot {s} disagree on {what}: {values[s]} != {value}")
    values[s] = value


class ProblemData:
    """Arena of KnotPointData records addressed through a StorageMapper"""

    def __init__(self, num_states: Sequence[int], num_inputs: Sequence[int],
                 constraint_dims: Optional[Sequence[Sequence[int]]],
                 mapper: StorageMapper,
                 use_diagonal_costs: bool = False,
                 is_block_diagonal: bool = False,
                 use_explicit_integration: bool = False,
                 dtype=np.float64):
        self.mapper = mapper
        self.dtype = np.dtype(dtype)
        self.use_diagonal_costs = bool(use_diagonal_costs)
        self.is_block_diagonal = bool(is_block_diagonal)
        self.use_explicit_integration = bool(use_explicit_integration)
        self.revision = 0

        capacity = mapper.capacity
        self.num_states = [int(n) for n in num_states]
        if len(self.num_states) != capacity:
            raise DimensionError(
                f"num_states has {len(self.num_states)} entries, expected {capacity}")
        self.num_inputs = _pad_inputs(num_inputs, capacity)
        if constraint_dims is None:
            constraint_dims = [[] for _ in range(capacity)]
        self.constraint_dims = [[int(p) for p in dims] for dims in constraint_dims]
        if len(self.constraint_dims) != capacity:
            raise DimensionError(
                f"constraint_dims has {len(self.constraint_dims)} entries, expected {capacity}")
        if min(self.num_states) < 1 or min(self.num_inputs) < 0:
            raise DimensionError("Every time step needs at least one state and no negative inputs")
        if any(p < 1 for dims in self.constraint_dims for p in dims):
            raise DimensionError("Every conic constraint needs dimension at least 1")

        layout = self._slot_layout()
        try:
            self.slots = [
                KnotPointData(*layout[s], use_diagonal_costs=self.use_diagonal_costs, dtype=self.dtype)
                for s in range(mapper.num_data)
            ]
            self.x_init = np.zeros(self.num_states[0], dtype=self.dtype)
        except MemoryError as e:
            raise AllocationError(f"Could not allocate problem data: {e}") from e

        logger.debug(f"Problem data allocated: {mapper.num_data} slots for {capacity} time steps")

    def _slot_layout(self):
        """Derive per-slot buffer sizes from the per-step sizes and the table"""
        table = self.mapper.table
        capacity = self.mapper.capacity
        own, nxt, cons = {}, {}, {}
        for k in range(capacity):
            s = int(table[k])
            if s < 0:
                continue
            _slot_value(own, s, (self.num_states[k], self.num_inputs[k]), "state/input sizes")
            _slot_value(cons, s, tuple(self.constraint_dims[k]), "constraint sizes")
            if k + 1 < capacity:
                _slot_value(nxt, s, (self.num_states[k + 1], self.num_inputs[k + 1]),
                            "next state/input sizes")
        default = (self.num_states[0], self.num_inputs[0])
        layout = []
        for s in range(self.mapper.num_data):
            nx, nu = own.get(s, default)
            nx_next, nu_next = nxt.get(s, (nx, nu))
            layout.append((nx, nu, nx_next, nu_next, cons.get(s, tuple(self.constraint_dims[0]))))
        return layout

    # ------------------------------------------------------------------ #
    # index resolution
    # ------------------------------------------------------------------ #

    @property
    def num_horizon(self) -> int:
        return self.mapper.num_horizon

    def slot(self, k: int) -> KnotPointData:
        return self.slots[self.mapper.resolve(k)]

    def _targets(self, k: int, input_targeting: bool) -> List[KnotPointData]:
        """Slots written by a setter at step k (or every reachable slot for k=-1)"""
        k = as_index(k)
        if k == BROADCAST:
            return [self.slots[s] for s in self.mapper.reachable_slots()]
        limit = self.num_horizon - 1 if input_targeting else self.num_horizon
        if not 0 <= k < limit:
            raise StorageIndexError(f"Time step {k} outside [0, {limit}) (or -1 for broadcast)")
        return [self.slot(k)]

    def _array(self, value, shape: Tuple[int, ...], name: str) -> np.ndarray:
        try:
            arr = np.asarray(value, dtype=self.dtype)
        except (TypeError, ValueError):
            raise DimensionError(f"{name} must be a numeric array of shape {shape}") from None
        if arr.shape != shape:
            raise DimensionError(f"{name} must have shape {shape}, got {arr.shape}")
        return arr

    def _quadratic(self, term: QuadraticTerm, n: Optional[int], name: str):
        try:
            term = as_quadratic_term(term)
            term = (Diagonal(np.asarray(term.values, dtype=self.dtype)) if isinstance(term, Diagonal)
                    else Dense(np.asarray(term.matrix, dtype=self.dtype)))
        except (TypeError, ValueError) as e:
            raise DimensionError(f"{name} must be a numeric vector or square matrix: {e}") from None
        if n is not None and term.size != n:
            raise DimensionError(f"{name} must have size {n}, got {term.size}")
        if self.use_diagonal_costs and not isinstance(term, Diagonal):
            raise DimensionError(f"{name} must be Diagonal when the solver uses diagonal costs")
        return term

    def _touch(self):
        self.revision += 1

    # ------------------------------------------------------------------ #
    # setters
    # ------------------------------------------------------------------ #

    def _stage_cost(self, name: str, W, w, k: int):
        """Validate a quadratic/linear cost pair for every target slot"""
        input_targeting = name == 'R'
        targets = self._targets(k, input_targeting)
        staged = []
        for d in targets:
            n = d.nu if input_targeting else d.nx
            staged.append((self._quadratic(W, n, name), self._array(w, (n,), name.lower())))
        return targets, staged

    def _commit_cost(self, name: str, targets, staged):
        for d, (Wt, wv) in zip(targets, staged):
            _store_quadratic(d, name, Wt)
            np.copyto(getattr(d, name.lower()), wv)

    def set_state_cost(self, Q, q, k: int):
        self._commit_cost('Q', *self._stage_cost('Q', Q, q, k))
        self._touch()

    def set_input_cost(self, R, r, k: int):
        self._commit_cost('R', *self._stage_cost('R', R, r, k))
        self._touch()

    def set_tracking_cost(self, Q, R, xref, uref, k: int):
        """Quadratic tracking of (xref, uref): q = -Q xref, r = -R uref

        The input part is written only where step k has an input in play.
        """
        stages = [('Q', Q, xref)]
        if k == BROADCAST or 0 <= k < self.num_horizon - 1:
            stages.append(('R', R, uref))
        pending = []
        for name, W, ref in stages:
            Wt = self._quadratic(W, None, name)
            ref = self._array(ref, (Wt.size,), f"{name} reference")
            pending.append((name, self._stage_cost(name, Wt, -(Wt.to_dense() @ ref), k)))
        for name, (targets, staged) in pending:
            self._commit_cost(name, targets, staged)
        self._touch()

    def set_cross_term_cost(self, Hux, k: int):
        if self.is_block_diagonal:
            raise ConfigError("Cross-term cost is fixed at zero for block-diagonal solvers")
        targets = self._targets(k, input_targeting=True)
        staged = [self._array(Hux, (d.nu, d.nx), "H") for d in targets]
        for d, H in zip(targets, staged):
            np.copyto(d.Hux, H)
        self._touch()

    def set_dynamics(self, A, B, C, D, f, h: float, k: int):
        if self.use_explicit_integration and (C is not None or D is not None):
            raise ConfigError("C and D must be None when the solver uses explicit integration")
        h = _scalar(h, "Time step h")
        targets = self._targets(k, input_targeting=True)
        staged = []
        for d in targets:
            staged.append((
                self._array(A, (d.nx_next, d.nx), "A"),
                self._array(B, (d.nx_next, d.nu), "B"),
                None if C is None else self._array(C, (d.nx_next, d.nx_next), "C"),
                None if D is None else self._array(D, (d.nx_next, d.nu_next), "D"),
                np.zeros(d.nx_next, dtype=self.dtype) if f is None else
                self._array(f, (d.nx_next,), "f"),
            ))
        for d, (Av, Bv, Cv, Dv, fv) in zip(targets, staged):
            np.copyto(d.A, Av)
            np.copyto(d.B, Bv)
            np.copyto(d.f, fv)
            d.has_C = Cv is not None
            d.has_D = Dv is not None
            if Cv is not None:
                np.copyto(d.C, Cv)
            else:
                d.C[:] = 0
            if Dv is not None:
                np.copyto(d.D, Dv)
            else:
                d.D[:] = 0
            d.h = h
        self._touch()

    def _constraint_targets(self, i: int, k: int):
        i = as_index(i, "Constraint index")
        targets = self._targets(k, input_targeting=False)
        for d in targets:
            if not 0 <= i < len(d.constraints):
                raise StorageIndexError(
                    f"Constraint index {i} outside [0, {len(d.constraints)})")
        return [d.constraints[i] for d in targets], targets

    def set_constraint(self, G, H, h, i: int, k: int, cone: ConeType):
        try:
            cone = ConeType(cone)
        except ValueError:
            raise ConfigError(f"Unknown cone {cone!r}") from None
        cons, targets = self._constraint_targets(i, k)
        staged = []
        for con, d in zip(cons, targets):
            if con.cone is not None and con.cone != cone:
                raise ConfigError(
                    f"Constraint {i} was declared as {con.cone.name}, cannot change to {cone.name}")
            staged.append((
                np.zeros_like(con.G) if G is None else self._array(G, con.G.shape, "G"),
                np.zeros_like(con.H) if H is None else self._array(H, con.H.shape, "H"),
                self._array(h, con.h.shape, "h"),
            ))
        for con, (Gv, Hv, hv) in zip(cons, staged):
            np.copyto(con.G, Gv)
            np.copyto(con.H, Hv)
            np.copyto(con.h, hv)
            con.cone = cone
        self._touch()

    def set_penalty(self, rho: float, i: int, k: int):
        cons, _ = self._constraint_targets(i, k)
        rho = _scalar(rho, "Penalty weight")
        if not (np.isfinite(rho) and rho > 0):
            raise ConfigError(f"Penalty weight must be positive and finite, got {rho}")
        for con in cons:
            con.rho = rho
        self._touch()

    def reset_penalties(self):
        for d in self.slots:
            for con in d.constraints:
                con.rho = 1.0
        self._touch()

    def set_initial_state(self, x0):
        np.copyto(self.x_init, self._array(x0, self.x_init.shape, "x0"))

    # ------------------------------------------------------------------ #
    # getters
    # ------------------------------------------------------------------ #

    def _read_slot(self, k: int, input_targeting: bool) -> KnotPointData:
        if k == BROADCAST:
            # every reachable slot holds the same broadcast value; read the first
            return self.slots[self.mapper.reachable_slots()[0]]
        return self._targets(k, input_targeting)[0]

    def get_state_cost(self, k: int) -> Tuple[QuadraticTerm, np.ndarray]:
        d = self._read_slot(k, input_targeting=False)
        return _load_quadratic(d, 'Q'), d.q.copy()

    def get_input_cost(self, k: int) -> Tuple[QuadraticTerm, np.ndarray]:
        d = self._read_slot(k, input_targeting=True)
        return _load_quadratic(d, 'R'), d.r.copy()

    def get_cross_term_cost(self, k: int) -> np.ndarray:
        return self._read_slot(k, input_targeting=True).Hux.copy()

    def get_dynamics(self, k: int):
        """Return (A, B, C, D, f, h); C and D are None when not supplied"""
        d = self._read_slot(k, input_targeting=True)
        return (d.A.copy(), d.B.copy(),
                d.C.copy() if d.has_C else None,
                d.D.copy() if d.has_D else None,
                d.f.copy(), d.h)

    def _read_constraint(self, i: int, k: int) -> ConstraintData:
        i = as_index(i, "Constraint index")
        d = self._read_slot(k, input_targeting=False)
        if not 0 <= i < len(d.constraints):
            raise StorageIndexError(f"Constraint index {i} outside [0, {len(d.constraints)})")
        return d.constraints[i]

    def get_constraint(self, i: int, k: int):
        """Return (G, H, h, cone) of constraint i at step k"""
        con = self._read_constraint(i, k)
        return con.G.copy(), con.H.copy(), con.h.copy(), con.cone

    def get_penalty(self, i: int, k: int) -> float:
        return self._read_constraint(i, k).rho

    def get_initial_state(self) -> np.ndarray:
        return self.x_init.copy()

    # ------------------------------------------------------------------ #
    # per-step views used by the solver
    # ------------------------------------------------------------------ #

    def dynamics_matrices(self, k: int):
        """(A, B, C, D, f) of the coupling between steps k and k+1, defaults filled in"""
        d = self.slot(k)
        if self.use_explicit_integration:
            C = -np.eye(d.nx_next, dtype=self.dtype)
            D = np.zeros_like(d.D)
        else:
            C = d.C if d.has_C else np.eye(d.nx_next, dtype=self.dtype)
            D = d.D
        return d.A, d.B, C, D, d.f


def _scalar(value, what: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{what} must be a number, got {value!r}") from None


def _store_quadratic(d: KnotPointData, name: str, term: QuadraticTerm):
    buf = getattr(d, name)
    if buf.ndim == 1:
        np.copyto(buf, term.values)
    else:
        np.copyto(buf, term.to_dense())
    setattr(d, f"{name}_diagonal", isinstance(term, Diagonal))


def _load_quadratic(d: KnotPointData, name: str) -> QuadraticTerm:
    buf = getattr(d, name)
    if getattr(d, f"{name}_diagonal"):
        return Diagonal(buf.copy() if buf.ndim == 1 else np.diag(buf).copy())
    return Dense(buf.copy())
