"""
cocoa - conic optimal control via ADMM

ADMM solver for constrained optimal control problems: quadratic costs,
linear dynamics coupling consecutive knot points and conic path constraints.
"""

from .errors import (AllocationError, ConfigError, DimensionError, ErrorCode, Result,
                     SingularSystemError, SolverError, StorageIndexError)
from .options import SolverOption, SolverOptions
from .problem_data import BROADCAST
from .solver import Solver, new_solver, new_solver_custom_storage
from .types import EQUALITY, INEQUALITY, ConeType, Dense, Diagonal, SolveStatus

__version__ = "0.1.0"

__all__ = [
    'AllocationError', 'ConfigError', 'DimensionError', 'ErrorCode', 'Result',
    'SingularSystemError', 'SolverError', 'StorageIndexError',
    'SolverOption', 'SolverOptions', 'BROADCAST',
    'Solver', 'new_solver', 'new_solver_custom_storage',
    'EQUALITY', 'INEQUALITY', 'ConeType', 'Dense', 'Diagonal', 'SolveStatus',
]
