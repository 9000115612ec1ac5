"""
Error types — the typed failures the core hands back to its callers.

Every error carries a stable ``kind`` string so front ends (CLI, menu
bar) can render a uniform message and so a failed OperationRecord can
store the failure without holding the exception object itself.

Probe timeouts have no error type: a tool that hangs is reported
as ``installed=False``, never raised.
"""

from __future__ import annotations


class InitiumError(Exception):
    """Base class for all Initium errors."""

    kind = "unknown"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message or self.kind


class ValidationError(InitiumError):
    """A configuration field is malformed or out of range."""

    kind = "validation"

    def __init__(self, message: str, field: str = "") -> None:
        super().__init__(message)
        self.field = field


class FileSystemError(InitiumError):
    """Reading or writing a persisted document failed."""

    kind = "filesystem"


class ConflictError(InitiumError):
    """An operation of the same kind is already in flight."""

    kind = "conflict"


class TooLateError(InitiumError):
    """Cancel or clear was requested in a state that does not allow it."""

    kind = "too_late"


class InvalidTransitionError(InitiumError):
    """The operation engine was driven through a transition it does not have."""

    kind = "invalid_transition"


class ExternalActionError(InitiumError):
    """Wraps whatever failure an opaque backup/install action reports."""

    kind = "external_action"


class OperationCancelled(InitiumError):
    """Raised at a checkpoint once cancellation has been requested."""

    kind = "cancelled"
