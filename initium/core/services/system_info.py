"""
System information — OS, architecture, model, and memory of the host.
"""

from __future__ import annotations

import os
import platform
from pathlib import Path

from pydantic import BaseModel, ConfigDict


def _read_total_memory_gb() -> float:
    """Total RAM in GB (sysconf, falling back to /proc/meminfo)."""
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
        if pages > 0 and page_size > 0:
            return pages * page_size / (1024 ** 3)
    except (ValueError, OSError, AttributeError):
        pass
    try:
        with open("/proc/meminfo") as f:
            for line in f:
                if line.startswith("MemTotal:"):
                    return int(line.split()[1]) / (1024 ** 2)
    except (OSError, ValueError, IndexError):
        pass
    return 0.0


def _read_device_model() -> str:
    """Hardware model string where the platform exposes one."""
    for candidate in (
        "/sys/devices/virtual/dmi/id/product_name",
        "/proc/device-tree/model",
    ):
        try:
            value = Path(candidate).read_text(errors="replace").strip("\x00\n ")
        except OSError:
            continue
        if value:
            return value
    return platform.node() or "unknown"


class SystemInfo(BaseModel):
    """Static facts about the host."""

    model_config = ConfigDict(frozen=True)

    os_name: str
    os_version: str
    architecture: str
    device_model: str
    total_memory_gb: float

    @classmethod
    def detect(cls) -> SystemInfo:
        machine = platform.machine().lower()
        arch = {"amd64": "x86_64", "aarch64": "arm64"}.get(machine, machine or "unknown")
        return cls(
            os_name=platform.system() or "unknown",
            os_version=platform.release() or "unknown",
            architecture=arch,
            device_model=_read_device_model(),
            total_memory_gb=_read_total_memory_gb(),
        )
