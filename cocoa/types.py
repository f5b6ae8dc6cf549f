"""
Shared types for the cocoa solver core
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

import numpy as np

from .errors import ConfigError, DimensionError


class ConeType(Enum):
    """Supported cones for conic constraints G x + H u + h in K"""
    ZERO = "zero"                   # equality, c = 0
    NEGATIVE_ORTHANT = "negative"   # inequality, c <= 0
    SECOND_ORDER = "soc"            # c = (t, v), ||v|| <= t


EQUALITY = ConeType.ZERO
INEQUALITY = ConeType.NEGATIVE_ORTHANT


class SolveStatus(Enum):
    """Terminal status of a solve"""
    UNSOLVED = "unsolved"
    SOLVED = "solved"
    INFEASIBLE = "infeasible"
    MAXITERS = "maxiters"


SUPPORTED_PRECISIONS = (np.float64, np.float32)


def check_precision(dtype) -> np.dtype:
    """Validate a construction-time precision and return it as a numpy dtype"""
    dtype = np.dtype(dtype)
    if dtype.type not in SUPPORTED_PRECISIONS:
        raise ConfigError(f"Unsupported precision {dtype}, expected float64 or float32")
    return dtype


@dataclass(frozen=True)
class Diagonal:
    """Quadratic cost term stored as the vector of its diagonal"""
    values: np.ndarray

    def __post_init__(self):
        values = np.asarray(self.values)
        if values.ndim != 1:
            raise DimensionError(f"Diagonal cost must be a vector, got shape {values.shape}")
        object.__setattr__(self, 'values', values)

    @property
    def size(self) -> int:
        return self.values.shape[0]

    def to_dense(self) -> np.ndarray:
        return np.diag(self.values)

    def __eq__(self, other):
        return isinstance(other, Diagonal) and np.array_equal(self.values, other.values)


@dataclass(frozen=True)
class Dense:
    """Quadratic cost term stored as a full square matrix"""
    matrix: np.ndarray

    def __post_init__(self):
        matrix = np.asarray(self.matrix)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise DimensionError(f"Dense cost must be a square matrix, got shape {matrix.shape}")
        object.__setattr__(self, 'matrix', matrix)

    @property
    def size(self) -> int:
        return self.matrix.shape[0]

    def to_dense(self) -> np.ndarray:
        return self.matrix

    def __eq__(self, other):
        return isinstance(other, Dense) and np.array_equal(self.matrix, other.matrix)


QuadraticTerm = Union[Diagonal, Dense]


def as_quadratic_term(value) -> QuadraticTerm:
    """Tag a raw array: vectors become Diagonal, square matrices Dense"""
    if isinstance(value, (Diagonal, Dense)):
        return value
    value = np.asarray(value)
    if value.ndim == 1:
        return Diagonal(value)
    return Dense(value)
