"""
Metric snapshots and the impact records computed from pairs of them.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(UTC)


class MetricSnapshot(BaseModel):
    """Point-in-time host performance metrics."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=_now)
    boot_time_seconds: float = Field(default=0.0, ge=0)
    memory_usage_pct: float = Field(default=0.0, ge=0, le=100)
    disk_usage_pct: float = Field(default=0.0, ge=0, le=100)
    cpu_usage_pct: float = Field(default=0.0, ge=0, le=100)


class ImpactRecord(BaseModel):
    """Two snapshots and the score computed from them."""

    model_config = ConfigDict(frozen=True)

    before: MetricSnapshot
    after: MetricSnapshot
    impact_score: float = Field(ge=0)
    change_id: uuid.UUID | None = None
