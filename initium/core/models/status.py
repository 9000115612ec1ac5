"""
Probe and service status models.

Both are frozen: a probe result is never mutated, only superseded by a
newer one, and callers of the status cache receive read-only snapshots.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(UTC)


class ToolProbeResult(BaseModel):
    """Outcome of one bounded-time tool probe."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    installed: bool = False
    version: str | None = None
    probed_at: datetime = Field(default_factory=_now)


class OverallStatus(StrEnum):
    AVAILABLE = "available"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


def overall_from(results: dict[str, ToolProbeResult]) -> OverallStatus:
    """Aggregate per-service results.

    available iff every tracked service is installed, degraded if at
    least one is, unavailable if none is. Nothing tracked is unknown.
    """
    if not results:
        return OverallStatus.UNKNOWN
    installed = sum(1 for r in results.values() if r.installed)
    if installed == len(results):
        return OverallStatus.AVAILABLE
    if installed > 0:
        return OverallStatus.DEGRADED
    return OverallStatus.UNAVAILABLE


class ServiceStatus(BaseModel):
    """Snapshot of every tracked service."""

    model_config = ConfigDict(frozen=True)

    per_service: dict[str, ToolProbeResult] = Field(default_factory=dict)
    overall: OverallStatus = OverallStatus.UNKNOWN
    refreshed_at: datetime | None = None

    @classmethod
    def from_results(cls, results: dict[str, ToolProbeResult]) -> ServiceStatus:
        return cls(
            per_service=dict(results),
            overall=overall_from(results),
            refreshed_at=_now(),
        )

    @property
    def installed_count(self) -> int:
        return sum(1 for r in self.per_service.values() if r.installed)
