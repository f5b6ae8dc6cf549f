"""
Error taxonomy for the cocoa solver core

Validation code raises SolverError subclasses; the public Solver methods
convert them into Result values so that callers in a control loop always get
a status back instead of an exception.
"""

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Discrete error codes reported by fallible solver operations"""
    OK = 0
    MEMORY_ERROR = 1
    INDEX_ERROR = 2
    DIMENSION_ERROR = 3
    CONFIG_ERROR = 4
    SINGULAR_SYSTEM = 5


class SolverError(Exception):
    """Base class for all structured solver errors"""
    code = ErrorCode.OK


class AllocationError(SolverError, MemoryError):
    code = ErrorCode.MEMORY_ERROR


class StorageIndexError(SolverError, IndexError):
    code = ErrorCode.INDEX_ERROR


class DimensionError(SolverError, ValueError):
    code = ErrorCode.DIMENSION_ERROR


class ConfigError(SolverError):
    code = ErrorCode.CONFIG_ERROR


class SingularSystemError(SolverError):
    """A KKT block cannot be solved as posed (surfaces as INFEASIBLE)"""
    code = ErrorCode.SINGULAR_SYSTEM


_EXCEPTIONS = {
    ErrorCode.MEMORY_ERROR: AllocationError,
    ErrorCode.INDEX_ERROR: StorageIndexError,
    ErrorCode.DIMENSION_ERROR: DimensionError,
    ErrorCode.CONFIG_ERROR: ConfigError,
    ErrorCode.SINGULAR_SYSTEM: SingularSystemError,
}


@dataclass(frozen=True)
class Result:
    """Either a value or a structured error from the taxonomy above"""
    value: Any = None
    error: Optional[ErrorCode] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def code(self) -> ErrorCode:
        return ErrorCode.OK if self.error is None else self.error

    @classmethod
    def success(cls, value: Any = None) -> 'Result':
        return cls(value=value)

    @classmethod
    def failure(cls, exc: SolverError) -> 'Result':
        return cls(error=exc.code, message=str(exc))

    def unwrap(self) -> Any:
        """Return the value or raise the matching SolverError subclass"""
        if self.error is not None:
            raise _EXCEPTIONS[self.error](self.message)
        return self.value

    def __bool__(self):
        return self.ok


def returns_result(method: Callable) -> Callable:
    """Wrap a method so SolverError exceptions come back as a failed Result"""

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return Result.success(method(*args, **kwargs))
        except SolverError as e:
            logger.debug(f"{method.__name__} failed with {e.code.name}: {e}")
            return Result.failure(e)

    return wrapper
