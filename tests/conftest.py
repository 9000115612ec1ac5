"""
Shared test fixtures and configuration.
"""

import logging
from pathlib import Path

import pytest

from initium.core.config.store import CONFIG_ENV_VAR
from initium.core.models.status import ToolProbeResult


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the real user config and logging env."""
    monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "default-config.json"))
    for name in ("INITIUM_LOG_LEVEL", "INITIUM_LOG_FILE", "INITIUM_LOG_FILE_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """setup_logging() replaces root handlers; put them back after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    """Return a config path inside a not-yet-created directory."""
    return tmp_path / "initium" / "config.json"


class FakeProbe:
    """Probe stand-in answering from a fixed table and counting calls."""

    def __init__(self, installed: dict[str, bool]) -> None:
        self.installed = dict(installed)
        self.calls: list[str] = []

    def __call__(self, tool_name: str) -> ToolProbeResult:
        self.calls.append(tool_name)
        ok = self.installed.get(tool_name, False)
        return ToolProbeResult(
            tool_name=tool_name,
            installed=ok,
            version=f"{tool_name} 1.0" if ok else None,
        )


@pytest.fixture
def fake_probe_factory():
    """Build a FakeProbe from a {tool: installed} table."""
    return FakeProbe
