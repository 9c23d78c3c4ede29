"""
FSO Error Taxonomy

Every failing operation raises a subclass of FSOError. Each exception
carries an ErrorCode so that collaborators which prefer a flat status
code (CSV writers, batch runners) can map outcomes without inspecting
exception types.

Recoverable outcomes are NOT exceptions: an uncorrectable RS codeword
or an LDPC decode that hits its iteration cap returns the best-effort
output together with a flag.
"""

from enum import IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    """Status codes shared by all components."""
    SUCCESS = 0
    INVALID_PARAM = -1
    MEMORY = -2
    NOT_INITIALIZED = -3
    CONVERGENCE = -4
    UNSUPPORTED = -5
    IO = -6


class FSOError(Exception):
    """Base class for simulator errors."""
    code = ErrorCode.INVALID_PARAM


class InvalidParameterError(FSOError, ValueError):
    """Precondition on a range or shape was violated."""
    code = ErrorCode.INVALID_PARAM


class ResourceExhaustedError(FSOError, MemoryError):
    """A fixed capacity (e.g. sparse matrix nnz budget) was exceeded."""
    code = ErrorCode.MEMORY


class NotInitializedError(FSOError, RuntimeError):
    """Operation called before init or after free."""
    code = ErrorCode.NOT_INITIALIZED


class ConvergenceError(FSOError):
    """An iterative procedure failed to reach its goal."""
    code = ErrorCode.CONVERGENCE


class UnsupportedError(FSOError, ValueError):
    """Unknown enum value or unsupported configuration variant."""
    code = ErrorCode.UNSUPPORTED


class FSOIOError(FSOError, OSError):
    """File could not be read or written."""
    code = ErrorCode.IO


def status_of(exc: Optional[BaseException]) -> ErrorCode:
    """
    Map an exception (or None) to its ErrorCode.

    Exceptions from outside the taxonomy are classified by their
    builtin base: MemoryError -> MEMORY, OSError -> IO, anything
    else -> INVALID_PARAM.
    """
    if exc is None:
        return ErrorCode.SUCCESS
    if isinstance(exc, FSOError):
        return exc.code
    if isinstance(exc, MemoryError):
        return ErrorCode.MEMORY
    if isinstance(exc, OSError):
        return ErrorCode.IO
    return ErrorCode.INVALID_PARAM
