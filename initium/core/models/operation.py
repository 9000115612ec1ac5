"""
OperationRecord — the observable state of one long-running operation.

Records are frozen. The engine replaces the record in its per-kind slot
on every transition, so a reader always sees a consistent snapshot and
never a half-applied change (e.g. progress set while still Requested).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from initium.core.models.metrics import ImpactRecord


def _now() -> datetime:
    return datetime.now(UTC)


class OperationKind(StrEnum):
    """Category of operation. Also the mutual-exclusion key."""

    BACKUP_CREATE = "backupCreate"
    BACKUP_RESTORE = "backupRestore"
    BACKUP_DELETE = "backupDelete"
    SERVICE_INSTALL = "serviceInstall"
    SERVICE_CONFIGURE = "serviceConfigure"


class OperationState(StrEnum):
    IDLE = "idle"
    REQUESTED = "requested"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({
    OperationState.SUCCEEDED,
    OperationState.FAILED,
    OperationState.CANCELLED,
})


class OperationError(BaseModel):
    """Failure stored on a Failed record."""

    model_config = ConfigDict(frozen=True)

    kind: str
    message: str


class OperationRecord(BaseModel):
    """Snapshot of one operation."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    kind: OperationKind
    state: OperationState = OperationState.REQUESTED
    requested_at: datetime = Field(default_factory=_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    progress: float | None = Field(default=None, ge=0, le=1)
    error: OperationError | None = None
    result: Any = None
    payload: Any = None
    impact: ImpactRecord | None = None

    @property
    def terminal(self) -> bool:
        return self.state.terminal

    @property
    def duration_s(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def evolve(self, **changes: Any) -> OperationRecord:
        """Return a copy with ``changes`` applied."""
        return self.model_copy(update=changes)
