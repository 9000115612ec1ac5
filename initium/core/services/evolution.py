"""
Evolution tracking — change events, host metric snapshots, and impact scoring.

The impact score is a first-order metric: the absolute change in boot
time plus the absolute change in memory usage. Disk and CPU usage are
recorded on the snapshots but do not contribute to the score.

Change events can be kept in memory only or appended to a JSON-lines
ledger (last ``_EVENTS_MAX`` kept).
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from initium.core.models.metrics import ImpactRecord, MetricSnapshot

logger = logging.getLogger(__name__)

_EVENTS_MAX = 200  # keep last N change events


# ═══════════════════════════════════════════════════════════════════
#  Impact scoring
# ═══════════════════════════════════════════════════════════════════


class EvolutionScorer:
    """Computes an ImpactRecord from two snapshots. Pure."""

    def impact(
        self,
        before: MetricSnapshot,
        after: MetricSnapshot,
        change_id: uuid.UUID | None = None,
    ) -> ImpactRecord:
        score = (
            abs(after.boot_time_seconds - before.boot_time_seconds)
            + abs(after.memory_usage_pct - before.memory_usage_pct)
        )
        return ImpactRecord(
            before=before,
            after=after,
            impact_score=score,
            change_id=change_id,
        )


def impact(before: MetricSnapshot, after: MetricSnapshot) -> ImpactRecord:
    """Module-level shortcut for :meth:`EvolutionScorer.impact`."""
    return EvolutionScorer().impact(before, after)


# ═══════════════════════════════════════════════════════════════════
#  Host metrics
# ═══════════════════════════════════════════════════════════════════


def _clamp_pct(value: float) -> float:
    return max(0.0, min(100.0, value))


def _read_memory_usage_pct() -> float:
    """Used memory percentage from /proc/meminfo (0 when unavailable)."""
    try:
        fields: dict[str, int] = {}
        with open("/proc/meminfo") as f:
            for line in f:
                key, _, rest = line.partition(":")
                parts = rest.split()
                if parts:
                    fields[key] = int(parts[0])
        total = fields.get("MemTotal", 0)
        available = fields.get("MemAvailable", fields.get("MemFree", 0))
        if total <= 0:
            return 0.0
        return _clamp_pct((total - available) * 100.0 / total)
    except (OSError, ValueError):
        return 0.0


def _read_disk_usage_pct(path: str = "/") -> float:
    try:
        usage = shutil.disk_usage(path)
    except OSError:
        return 0.0
    if usage.total <= 0:
        return 0.0
    return _clamp_pct(usage.used * 100.0 / usage.total)


def _read_cpu_usage_pct() -> float:
    """One-minute load average relative to CPU count."""
    try:
        load1, _, _ = os.getloadavg()
    except (OSError, AttributeError):
        return 0.0
    cpus = os.cpu_count() or 1
    return _clamp_pct(load1 * 100.0 / cpus)


def collect_metrics(boot_time_seconds: float = 0.0, disk_path: str = "/") -> MetricSnapshot:
    """Take a snapshot of the current host.

    Boot time cannot be measured from a running process, so it is passed
    in by whoever knows it; 0 means unknown.
    """
    snapshot = MetricSnapshot(
        boot_time_seconds=max(0.0, boot_time_seconds),
        memory_usage_pct=_read_memory_usage_pct(),
        disk_usage_pct=_read_disk_usage_pct(disk_path),
        cpu_usage_pct=_read_cpu_usage_pct(),
    )
    logger.debug(
        "Metrics: mem=%.1f%% disk=%.1f%% cpu=%.1f%%",
        snapshot.memory_usage_pct, snapshot.disk_usage_pct, snapshot.cpu_usage_pct,
    )
    return snapshot


# ═══════════════════════════════════════════════════════════════════
#  Change events
# ═══════════════════════════════════════════════════════════════════


class ChangeType(StrEnum):
    PACKAGE_INSTALLED = "package_installed"
    PACKAGE_REMOVED = "package_removed"
    PACKAGE_UPDATED = "package_updated"
    CONFIGURATION_CHANGED = "configuration_changed"
    SYSTEM_UPDATE = "system_update"
    UNKNOWN = "unknown"


class SystemChangeEvent(BaseModel):
    """One recorded change to the development environment."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    type: ChangeType = ChangeType.UNKNOWN
    description: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)


class EvolutionTracker:
    """Records change events and answers the timeline.

    Args:
        path: Optional JSON-lines ledger. Without it events live in memory.
        log: Logging sink (default: this module's logger).
    """

    def __init__(
        self,
        path: Path | None = None,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self.path = path
        self._events: list[SystemChangeEvent] = []
        self._lock = threading.Lock()
        self._log = log or logger

    def record_change(self, event: SystemChangeEvent) -> SystemChangeEvent:
        self._log.info("Recording system change: %s", event.type.value)
        with self._lock:
            if self.path is None:
                self._events.append(event)
                del self._events[:-_EVENTS_MAX]
            else:
                self._append(event)
        return event

    def timeline(self, n: int = 50) -> list[SystemChangeEvent]:
        """Latest ``n`` events, newest first."""
        with self._lock:
            events = list(self._events) if self.path is None else self._read()
        events.reverse()
        return events[:n]

    # ── Ledger ──────────────────────────────────────────────────

    def _append(self, event: SystemChangeEvent) -> None:
        assert self.path is not None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(event.model_dump_json() + "\n")

        lines = self.path.read_text(encoding="utf-8").splitlines()
        if len(lines) > _EVENTS_MAX:
            self.path.write_text("\n".join(lines[-_EVENTS_MAX:]) + "\n", encoding="utf-8")

    def _read(self) -> list[SystemChangeEvent]:
        assert self.path is not None
        if not self.path.is_file():
            return []
        events: list[SystemChangeEvent] = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                events.append(SystemChangeEvent.model_validate(json.loads(line)))
            except ValueError as e:
                self._log.warning("Skipping unreadable change event in %s: %s", self.path, e)
        return events
