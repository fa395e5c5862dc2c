from enum import Enum
from typing import Optional

"""
errors.py — one exception type for everything a client is allowed to see.

Anything raised as CommandError ends up as an `error` datagram for the sender.
Protocol problems (bad JSON, unknown message type) are *not* CommandErrors;
those are logged and dropped by the dispatcher.
"""


class ErrorKind(str, Enum):
    """Coarse category sent alongside the human-readable message."""
    VALIDATION = "validation"   # missing filename, bad path, unknown op/role
    PERMISSION = "permission"   # role lacks the capability
    IO = "io"                   # file not found, read/write/delete failure
    PROCESS = "process"         # spawn failure, unsupported type, busy, timeout


class CommandError(Exception):
    def __init__(self, kind: ErrorKind, message: str, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    def __repr__(self) -> str:
        return f"CommandError({self.kind.value!r}, {self.message!r})"


def validation(message: str, details: Optional[str] = None) -> CommandError:
    return CommandError(ErrorKind.VALIDATION, message, details)


def permission(message: str) -> CommandError:
    return CommandError(ErrorKind.PERMISSION, message)
