"""Wagering engine exception hierarchy.

Every failure that reaches a caller says whether the *input* was wrong
(``kind == "invalid_input"``, do not retry unchanged) or whether the system
*could not complete* the operation (``kind == "not_completed"``, a retry may
succeed once the conflicting state clears).

- ``ValidationError``   : bad amount, identical players, missing fields.
- ``ConflictError``     : match no longer open, odd gone, insufficient balance.
- ``DependencyError``   : odds model failure; recovered by the fallback table.
- ``DataIntegrityError``: malformed selection data found while grading.
"""

from __future__ import annotations

INVALID_INPUT = "invalid_input"
NOT_COMPLETED = "not_completed"


class WagerError(Exception):
    """Base exception for the wagering engine."""

    kind: str = NOT_COMPLETED
    retryable: bool = False

    def __init__(self, message: str, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "error_type": type(self).__name__,
            "kind": self.kind,
            "retryable": self.retryable,
        }


class ValidationError(WagerError):
    """The caller's input was invalid."""

    kind = INVALID_INPUT
    retryable = False


class ConflictError(WagerError):
    """Current state prevents the operation; nothing was persisted."""

    retryable = True


class DependencyError(WagerError):
    """A pricing dependency failed."""

    pass


class DataIntegrityError(WagerError):
    """Stored data cannot be graded."""

    pass
