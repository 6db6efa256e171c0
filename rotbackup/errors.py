"""Error taxonomy for rotbackup.

Every fatal condition in a run is raised as a RotationError carrying an
ErrorKind. The top-level driver in rotbackup.backup converts any of them
into a single abort path with an exit code.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Category of a fatal condition."""
    PARSE = "parse"
    LISTING = "listing"
    MATERIALIZATION = "materialization"
    TRANSFER = "transfer"
    CONFIG = "config"
    INTERNAL = "internal"


class RotationError(Exception):
    """Base exception for all fatal rotbackup conditions."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class ParseError(RotationError):
    """Raised when a string is not a valid backup name."""
    kind = ErrorKind.PARSE


class ListingError(RotationError):
    """Raised when a tier directory cannot be enumerated."""
    kind = ErrorKind.LISTING


class MaterializationError(RotationError):
    """Raised when a move, delete, symlink or mkdir operation fails."""
    kind = ErrorKind.MATERIALIZATION


class TransferError(RotationError):
    """Raised when the file transfer into a new backup folder fails."""
    kind = ErrorKind.TRANSFER

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class InvariantViolation(RotationError):
    """Raised when an internal ordering invariant is broken."""
    kind = ErrorKind.INTERNAL


_ERROR_CLASSES = {
    ErrorKind.PARSE: ParseError,
    ErrorKind.LISTING: ListingError,
    ErrorKind.MATERIALIZATION: MaterializationError,
    ErrorKind.TRANSFER: TransferError,
}


def error_for_kind(kind: ErrorKind, message: str) -> RotationError:
    """Build the exception class matching an error kind."""
    error_class = _ERROR_CLASSES.get(kind)
    if error_class is None:
        return RotationError(message, kind=kind)
    return error_class(message)
