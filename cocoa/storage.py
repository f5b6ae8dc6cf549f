"""
Time step to storage slot mapping

Several knot points may share one ProblemData record (regulator problems,
hybrid modes, or a horizon that varies below a fixed maximum). The mapper
owns the index table that redirects every logical time step to its slot.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from .errors import StorageIndexError

logger = logging.getLogger(__name__)

UNSET = -1


def as_index(value, what: str = "Time step") -> int:
    """Plain int of an integral index; anything else is a StorageIndexError"""
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, np.integer)):
        raise StorageIndexError(f"{what} must be an integer, got {value!r}")
    return int(value)


class StorageMapper:
    """Bounds-checked index table from logical time step to arena slot"""

    def __init__(self, num_data: int, capacity: int):
        """
        Args:
            num_data: Number of ProblemData records in the arena
            capacity: Length of the index table, i.e. the longest horizon
        """
        if num_data < 1:
            raise StorageIndexError(f"num_data must be at least 1, got {num_data}")
        if capacity < 1:
            raise StorageIndexError(f"Horizon capacity must be at least 1, got {capacity}")
        self.num_data = int(num_data)
        self.capacity = int(capacity)
        self.table = np.full(self.capacity, UNSET, dtype=np.intp)
        self.num_horizon = 0
        self.revision = 0

    @classmethod
    def identity(cls, capacity: int, num_horizon: Optional[int] = None) -> 'StorageMapper':
        """One slot per time step, with the first num_horizon steps active"""
        mapper = cls(capacity, capacity)
        mapper.set_mapping(np.arange(capacity), capacity if num_horizon is None else num_horizon)
        return mapper

    def resolve(self, k: int) -> int:
        k = as_index(k)
        if not 0 <= k < self.num_horizon:
            raise StorageIndexError(f"Time step {k} outside [0, {self.num_horizon})")
        s = int(self.table[k])
        if s == UNSET:
            raise StorageIndexError(f"Time step {k} has no storage slot assigned")
        return s

    def validate_mapping(self, table: Sequence[int], num_horizon: int) -> np.ndarray:
        table = np.asarray(table).ravel()
        if table.size and not np.issubdtype(table.dtype, np.integer):
            raise StorageIndexError(f"Storage indices must be integers, got {table.tolist()}")
        table = table.astype(np.intp)
        num_horizon = as_index(num_horizon, "Horizon length")
        if not 1 <= num_horizon <= self.capacity:
            raise StorageIndexError(
                f"Horizon length {num_horizon} outside [1, {self.capacity}]")
        if not num_horizon <= table.shape[0] <= self.capacity:
            raise StorageIndexError(
                f"Mapping has {table.shape[0]} entries, expected between "
                f"{num_horizon} and {self.capacity}")
        bad = (table < 0) | (table >= self.num_data)
        if np.any(bad):
            raise StorageIndexError(
                f"Storage indices {table[bad].tolist()} outside [0, {self.num_data})")
        return table

    def set_mapping(self, table: Sequence[int], num_horizon: int):
        """Replace the k -> s table and the active horizon length"""
        table = self.validate_mapping(table, num_horizon)
        self.table[:table.shape[0]] = table
        self.num_horizon = int(num_horizon)
        self.revision += 1
        logger.debug(f"Storage mapping set: horizon={num_horizon}, table={self.table.tolist()}")

    def change_horizon_length(self, num_horizon: int):
        """Move the end of the logical window without touching storage"""
        num_horizon = as_index(num_horizon, "Horizon length")
        if not 1 <= num_horizon <= self.capacity:
            raise StorageIndexError(
                f"Horizon length {num_horizon} outside [1, {self.capacity}]")
        if np.any(self.table[:num_horizon] == UNSET):
            raise StorageIndexError(f"Horizon length {num_horizon} reaches unmapped time steps")
        self.num_horizon = int(num_horizon)
        self.revision += 1
        logger.debug(f"Horizon length changed to {num_horizon}")

    def active_slots(self) -> List[int]:
        return [int(s) for s in self.table[:self.num_horizon]]

    def reachable_slots(self) -> List[int]:
        """Every slot referenced by any entry of the table, in ascending order"""
        table = self.table[self.table != UNSET]
        return sorted(set(int(s) for s in table))

    def is_shared(self, s: int, steps: range) -> bool:
        return any(int(self.table[k]) == s for k in steps)

    def rotate_window(self, last_slot: int):
        """Step k takes the slot of step k+1; the last step gets `last_slot`"""
        n = self.num_horizon
        if not 0 <= last_slot < self.num_data:
            raise StorageIndexError(f"Storage index {last_slot} outside [0, {self.num_data})")
        self.table[:n - 1] = self.table[1:n].copy()
        self.table[n - 1] = last_slot
        self.revision += 1
