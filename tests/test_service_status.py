"""
Tests for the service status cache — aggregation, staleness, refresh.
"""

import threading

from initium.core.models.config import Configuration
from initium.core.models.status import (
    OverallStatus,
    ServiceStatus,
    ToolProbeResult,
    overall_from,
)
from initium.core.services.event_bus import EventBus
from initium.core.services.service_status import ServiceStatusCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _results(table: dict[str, bool]) -> dict[str, ToolProbeResult]:
    return {
        name: ToolProbeResult(tool_name=name, installed=ok)
        for name, ok in table.items()
    }


# ── Aggregation ─────────────────────────────────────────────────────


class TestOverall:
    def test_all_installed_is_available(self):
        assert overall_from(_results({"brew": True, "git": True})) == OverallStatus.AVAILABLE

    def test_some_installed_is_degraded(self):
        results = _results({"brew": False, "git": True, "swift": True})
        assert overall_from(results) == OverallStatus.DEGRADED

    def test_none_installed_is_unavailable(self):
        assert overall_from(_results({"brew": False})) == OverallStatus.UNAVAILABLE

    def test_nothing_tracked_is_unknown(self):
        assert overall_from({}) == OverallStatus.UNKNOWN

    def test_initial_snapshot_is_unknown(self):
        assert ServiceStatus().overall == OverallStatus.UNKNOWN


# ── Cache ───────────────────────────────────────────────────────────


class TestServiceStatusCache:
    def _cache(self, fake_probe_factory, table, **kwargs):
        probe = fake_probe_factory(table)
        clock = kwargs.pop("clock", FakeClock())
        cache = ServiceStatusCache(list(table), probe=probe, clock=clock, **kwargs)
        return cache, probe, clock

    def test_degraded_example(self, fake_probe_factory):
        cache, _, _ = self._cache(
            fake_probe_factory, {"brew": False, "git": True, "swift": True}
        )
        status = cache.status()
        assert status.overall == OverallStatus.DEGRADED
        assert set(status.per_service) == {"brew", "git", "swift"}
        assert status.per_service["git"].installed is True
        assert status.installed_count == 2
        assert status.refreshed_at is not None

    def test_fresh_read_does_not_probe(self, fake_probe_factory):
        cache, probe, clock = self._cache(fake_probe_factory, {"brew": True, "git": True})
        first = cache.status()
        assert len(probe.calls) == 2

        clock.now += 59.0
        second = cache.status()
        assert len(probe.calls) == 2
        assert second is first

    def test_stale_read_reprobes(self, fake_probe_factory):
        cache, probe, clock = self._cache(fake_probe_factory, {"brew": True, "git": True})
        cache.status()
        clock.now += 60.0
        cache.status()
        assert len(probe.calls) == 4

    def test_force_fresh_probes_each_service_once(self, fake_probe_factory):
        cache, probe, _ = self._cache(
            fake_probe_factory, {"brew": True, "git": True, "swift": False}
        )
        cache.status()
        probe.calls.clear()

        cache.status(force_fresh=True)
        assert sorted(probe.calls) == ["brew", "git", "swift"]

    def test_new_results_replace_old(self, fake_probe_factory):
        cache, probe, _ = self._cache(fake_probe_factory, {"brew": False, "git": True})
        assert cache.status().overall == OverallStatus.DEGRADED

        probe.installed["brew"] = True
        assert cache.status().overall == OverallStatus.DEGRADED  # still cached
        assert cache.status(force_fresh=True).overall == OverallStatus.AVAILABLE

    def test_zero_staleness_always_probes(self, fake_probe_factory):
        cache, probe, _ = self._cache(fake_probe_factory, {"git": True}, staleness_seconds=0)
        cache.status()
        cache.status()
        assert probe.calls == ["git", "git"]

    def test_invalidate(self, fake_probe_factory):
        cache, probe, _ = self._cache(fake_probe_factory, {"git": True})
        cache.status()
        assert cache.is_fresh()
        cache.invalidate()
        assert not cache.is_fresh()
        cache.status()
        assert probe.calls == ["git", "git"]

    def test_peek_never_probes(self, fake_probe_factory):
        cache, probe, _ = self._cache(fake_probe_factory, {"git": True})
        assert cache.peek().overall == OverallStatus.UNKNOWN
        assert probe.calls == []
        assert cache.age is None

    def test_duplicate_services_probed_once(self, fake_probe_factory):
        probe = fake_probe_factory({"git": True})
        cache = ServiceStatusCache(["git", "git"], probe=probe, clock=FakeClock())
        cache.status()
        assert probe.calls == ["git"]

    def test_empty_tracked_list(self, fake_probe_factory):
        probe = fake_probe_factory({})
        cache = ServiceStatusCache([], probe=probe, clock=FakeClock())
        status = cache.status()
        assert status.overall == OverallStatus.UNKNOWN
        assert status.per_service == {}
        assert probe.calls == []

    def test_raising_probe_counts_as_not_installed(self):
        def probe(name: str) -> ToolProbeResult:
            if name == "brew":
                raise RuntimeError("boom")
            return ToolProbeResult(tool_name=name, installed=True)

        cache = ServiceStatusCache(["brew", "git"], probe=probe, clock=FakeClock())
        status = cache.status()
        assert status.per_service["brew"].installed is False
        assert status.overall == OverallStatus.DEGRADED

    def test_concurrent_cold_reads_probe_once(self):
        calls = []
        gate = threading.Event()

        def slow_probe(name: str) -> ToolProbeResult:
            calls.append(name)
            gate.wait(2.0)
            return ToolProbeResult(tool_name=name, installed=True)

        cache = ServiceStatusCache(["git"], probe=slow_probe, clock=FakeClock())
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(cache.status()))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        gate.set()
        for t in threads:
            t.join(5.0)

        assert calls == ["git"]
        assert len(results) == 4
        assert all(r.overall == OverallStatus.AVAILABLE for r in results)

    def test_refresh_in_progress_keeps_previous_snapshot(self):
        answers = {"git": False, "brew": False}
        gate = threading.Event()
        gate.set()
        brew_waiting = threading.Event()
        git_done = threading.Event()

        def probe(name: str) -> ToolProbeResult:
            if name == "brew":
                brew_waiting.set()
                gate.wait(5)
            result = ToolProbeResult(tool_name=name, installed=answers[name])
            if name == "git":
                git_done.set()
            return result

        cache = ServiceStatusCache(["git", "brew"], probe=probe, clock=FakeClock())
        previous = cache.status()
        assert previous.overall == OverallStatus.UNAVAILABLE

        gate.clear()
        brew_waiting.clear()
        git_done.clear()
        answers.update(git=True, brew=True)
        refresher = threading.Thread(target=cache.status, kwargs={"force_fresh": True})
        refresher.start()
        try:
            assert brew_waiting.wait(5)
            assert git_done.wait(5)

            # git has answered, brew has not: readers still see the old snapshot whole
            assert cache.peek() is previous
            assert cache.status() is previous
            assert not any(r.installed for r in cache.peek().per_service.values())
        finally:
            gate.set()
            refresher.join(5)

        current = cache.peek()
        assert current is not previous
        assert set(current.per_service) == {"git", "brew"}
        assert all(r.installed for r in current.per_service.values())
        assert current.overall == OverallStatus.AVAILABLE

    def test_publishes_refresh_event(self, fake_probe_factory):
        bus = EventBus()
        cache, _, _ = self._cache(fake_probe_factory, {"git": True}, bus=bus)
        cache.status()
        event = bus.latest("services")
        assert event is not None
        assert event["type"] == "status:refreshed"
        assert event["data"] == {"overall": "available", "installed": 1, "total": 1}


class TestFromConfig:
    def test_uses_services_section(self, fake_probe_factory):
        config = Configuration()
        config.services.tracked = ["git", "docker"]
        config.services.staleness_seconds = 5.0
        probe = fake_probe_factory({"git": True})

        cache = ServiceStatusCache.from_config(config, probe=probe, clock=FakeClock())

        assert cache.services == ("git", "docker")
        assert cache.staleness_seconds == 5.0
        assert cache.status().overall == OverallStatus.DEGRADED

    def test_default_tracked(self):
        cache = ServiceStatusCache.from_config(Configuration())
        assert cache.services == ("brew", "git", "swift")
        assert cache.peek().overall == OverallStatus.UNKNOWN
