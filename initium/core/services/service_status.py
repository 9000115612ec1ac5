"""
Service status cache — aggregated tool availability with a staleness policy.

Holds one ``ServiceStatus`` and the monotonic time of its last refresh.
A non-forced read inside the staleness window returns the cached
snapshot without probing. Otherwise every tracked service is probed in
parallel and the cache is replaced in one assignment after all probes
have finished, so readers never observe a mix of old and new results.

Thread safety
─────────────
- ``_refresh_lock`` serializes refreshes: two callers hitting a cold
  cache at the same time trigger one round of probes, the second caller
  waits and then reads the fresh snapshot.
- The snapshot itself is a frozen model behind a single reference, so
  ``peek()`` never takes a lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed

from initium.core.models.config import Configuration
from initium.core.models.status import ServiceStatus, ToolProbeResult
from initium.core.services.event_bus import EventBus, publish_safe
from initium.core.services.tool_probe import ToolProbe

logger = logging.getLogger(__name__)

DEFAULT_STALENESS_S = 60.0

ProbeFn = Callable[[str], ToolProbeResult]


class ServiceStatusCache:
    """Cached availability of a fixed set of named services.

    Args:
        services: Tool names to track.
        probe: Callable mapping a tool name to a ``ToolProbeResult``
            (default: a :class:`ToolProbe`).
        staleness_seconds: Maximum age of the cached snapshot.
        clock: Monotonic time source, injectable for tests.
        max_workers: Probe thread pool size (default: one per service).
        bus: Optional event bus for ``status:refreshed`` events.
        log: Logging sink (default: this module's logger).
    """

    def __init__(
        self,
        services: Iterable[str],
        *,
        probe: ProbeFn | None = None,
        staleness_seconds: float = DEFAULT_STALENESS_S,
        clock: Callable[[], float] = time.monotonic,
        max_workers: int | None = None,
        bus: EventBus | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.services: tuple[str, ...] = tuple(dict.fromkeys(services))
        self.staleness_seconds = staleness_seconds
        self._probe: ProbeFn = probe or ToolProbe()
        self._clock = clock
        self._max_workers = max_workers
        self._bus = bus
        self._log = log or logger

        self._status = ServiceStatus()
        self._refreshed_at: float | None = None
        self._refresh_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: Configuration,
        probe: ProbeFn | None = None,
        **kwargs,
    ) -> ServiceStatusCache:
        """Build a cache from the ``services`` section of the configuration."""
        section = config.services
        if probe is None:
            probe = ToolProbe(timeout=section.probe_timeout_seconds)
        return cls(
            section.tracked,
            probe=probe,
            staleness_seconds=section.staleness_seconds,
            **kwargs,
        )

    # ── Reads ───────────────────────────────────────────────────

    @property
    def age(self) -> float | None:
        """Seconds since the last refresh, or None if never refreshed."""
        if self._refreshed_at is None:
            return None
        return self._clock() - self._refreshed_at

    def is_fresh(self) -> bool:
        age = self.age
        return age is not None and age < self.staleness_seconds

    def peek(self) -> ServiceStatus:
        """Current snapshot without probing (``unknown`` before the first refresh)."""
        return self._status

    def status(self, force_fresh: bool = False) -> ServiceStatus:
        """Return the cached status, re-probing when stale or forced."""
        if not force_fresh and self.is_fresh():
            self._log.debug("Returning cached service status")
            return self._status

        with self._refresh_lock:
            # Another caller may have refreshed while we waited
            if not force_fresh and self.is_fresh():
                return self._status
            return self._refresh()

    def invalidate(self) -> None:
        """Mark the snapshot stale so the next read re-probes."""
        self._refreshed_at = None

    # ── Refresh ─────────────────────────────────────────────────

    def _refresh(self) -> ServiceStatus:
        start = time.monotonic()
        results = self._probe_all()

        status = ServiceStatus.from_results(
            {name: results[name] for name in self.services}
        )
        self._status = status
        self._refreshed_at = self._clock()

        elapsed = time.monotonic() - start
        self._log.info(
            "Service status updated: %s (%d/%d installed, %.2fs)",
            status.overall.value, status.installed_count, len(self.services), elapsed,
        )
        publish_safe(
            self._bus,
            "status:refreshed",
            key="services",
            data={
                "overall": status.overall.value,
                "installed": status.installed_count,
                "total": len(self.services),
            },
            duration_s=elapsed,
        )
        return status

    def _probe_all(self) -> dict[str, ToolProbeResult]:
        if not self.services:
            return {}

        results: dict[str, ToolProbeResult] = {}
        workers = self._max_workers or len(self.services)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="probe") as pool:
            futures = {pool.submit(self._probe, name): name for name in self.services}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    results[name] = future.result()
                except Exception as exc:
                    self._log.warning("Probe for %s failed: %s", name, exc)
                    results[name] = ToolProbeResult(tool_name=name, installed=False)
        return results
