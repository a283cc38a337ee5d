"""Tagged outcome of running one call's handler chain."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

INTERNAL_ERROR: dict[str, Any] = {"message": "Internal Server Error", "status": 500}


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    HANDLER = "handler"
    TIMEOUT = "timeout"
    INVALID_RESULT = "invalid_result"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class Ok:
    value: dict[str, Any]


@dataclass(frozen=True, slots=True)
class Err:
    kind: ErrorKind
    error: dict[str, Any]

    @classmethod
    def internal(cls, kind: ErrorKind) -> "Err":
        """Build the fixed internal-error outcome used for timeouts and bad chains."""
        return cls(kind, dict(INTERNAL_ERROR))


Outcome = Ok | Err
