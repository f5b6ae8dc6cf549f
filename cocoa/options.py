"""
Solver configuration record

The outer layer addresses options by key; the core owns the key set, the
type of each value and its validation.
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Union

from .errors import ConfigError


class SolverOption(Enum):
    """Closed set of recognized option keys"""
    TOL_PRIMAL = "tol_primal"
    TOL_DUAL = "tol_dual"
    TOL_INFEASIBILITY = "tol_infeasibility"
    PENALTY_SCALING = "penalty_scaling"
    MAX_ITERATIONS = "max_iterations"
    CHECK_TERMINATION = "check_termination"


FLOAT_OPTIONS = (
    SolverOption.TOL_PRIMAL,
    SolverOption.TOL_DUAL,
    SolverOption.TOL_INFEASIBILITY,
    SolverOption.PENALTY_SCALING,
)
INT_OPTIONS = (
    SolverOption.MAX_ITERATIONS,
    SolverOption.CHECK_TERMINATION,
)


@dataclass
class SolverOptions:
    """Tunable ADMM parameters"""
    tol_primal: float = 1e-6
    tol_dual: float = 1e-6
    tol_infeasibility: float = 1e-6
    penalty_scaling: float = 1.0
    max_iterations: int = 200
    check_termination: int = 1  # iterations between convergence checks

    def __post_init__(self):
        for f in fields(self):
            self._validate(SolverOption(f.name), getattr(self, f.name))

    @staticmethod
    def _validate(key: SolverOption, value):
        if key in INT_OPTIONS:
            if value < 1:
                raise ConfigError(f"{key.value} must be at least 1, got {value}")
        elif not value > 0:
            raise ConfigError(f"{key.value} must be positive, got {value}")

    def get(self, key: SolverOption):
        return getattr(self, key.value)

    def set(self, key: SolverOption, value):
        self._validate(key, value)
        setattr(self, key.value, value)

    def as_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}


def resolve_key(key: Union[SolverOption, str]) -> SolverOption:
    """Map a key given as enum member or string onto the closed key set"""
    if isinstance(key, SolverOption):
        return key
    try:
        return SolverOption(key)
    except ValueError:
        raise ConfigError(f"Unknown option '{key}'") from None


def resolve_float_key(key) -> SolverOption:
    key = resolve_key(key)
    if key not in FLOAT_OPTIONS:
        raise ConfigError(f"Option '{key.value}' is not a floating-point option")
    return key


def resolve_int_key(key) -> SolverOption:
    key = resolve_key(key)
    if key not in INT_OPTIONS:
        raise ConfigError(f"Option '{key.value}' is not an integer option")
    return key
