"""
Tool probe — bounded-time check of whether an external tool is usable.

Runs ``<tool> <version-arg>`` in a child process. The tool counts as
installed iff the process starts and exits 0; the trimmed combined
stdout/stderr becomes the version string. Spawn failures and timeouts
are answered as ``installed=False``, never raised. No retries.
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Iterable

from initium.core.models.status import ToolProbeResult

logger = logging.getLogger(__name__)

DEFAULT_VERSION_ARG = "--version"
DEFAULT_TIMEOUT_S = 5.0

# Tools whose version flag is not ``--version``
VERSION_ARGS: dict[str, str] = {
    "go":         "version",
    "terraform":  "version",
    "xcodebuild": "-version",
    "helm":       "version",
    "java":       "-version",
}

# Common development tools shown by ``initium info --tools``
COMMON_TOOLS: tuple[str, ...] = (
    "brew", "git", "node", "npm", "yarn", "python3", "ruby",
    "swift", "xcodebuild", "pod", "fastlane", "carthage",
)


def version_arg_for(tool: str) -> str:
    """Version argument for ``tool`` (``--version`` unless known otherwise)."""
    return VERSION_ARGS.get(tool, DEFAULT_VERSION_ARG)


class ToolProbe:
    """Probe external tools with a per-call timeout.

    Args:
        timeout: Default timeout in seconds for each probe.
        log: Logging sink (default: this module's logger).
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_S,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self.timeout = timeout
        self._log = log or logger

    def __call__(self, tool_name: str) -> ToolProbeResult:
        return self.probe(tool_name)

    def probe(
        self,
        tool_name: str,
        version_arg: str | None = None,
        timeout: float | None = None,
    ) -> ToolProbeResult:
        """Probe one tool. Never raises."""
        arg = version_arg if version_arg is not None else version_arg_for(tool_name)
        limit = timeout if timeout is not None else self.timeout
        cmd = [tool_name, arg] if arg else [tool_name]

        self._log.debug("Probing: %s (timeout=%.1fs)", " ".join(cmd), limit)
        start = time.monotonic()

        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                timeout=limit,
            )
        except subprocess.TimeoutExpired:
            self._log.info("Probe for %s timed out after %.1fs", tool_name, limit)
            return ToolProbeResult(tool_name=tool_name, installed=False)
        except (OSError, ValueError) as e:
            # Not found, not executable, permission denied, NUL in the name
            self._log.debug("Probe for %s could not start: %s", tool_name, e)
            return ToolProbeResult(tool_name=tool_name, installed=False)

        elapsed_ms = int((time.monotonic() - start) * 1000)

        if result.returncode != 0:
            self._log.debug(
                "Probe for %s exited with code %d (%dms)",
                tool_name, result.returncode, elapsed_ms,
            )
            return ToolProbeResult(tool_name=tool_name, installed=False)

        version = (result.stdout or "").strip()
        self._log.debug("Probe for %s ok (%dms): %s", tool_name, elapsed_ms, version)
        return ToolProbeResult(tool_name=tool_name, installed=True, version=version)

    def probe_many(self, tools: Iterable[str]) -> list[ToolProbeResult]:
        """Probe several tools sequentially, in order."""
        return [self.probe(tool) for tool in tools]
