"""
Backup models — providers, content settings, and produced metadata.

The core only produces metadata; where it is stored durably and how the
payload bytes move are the concern of a ``PayloadMover``.
"""

from __future__ import annotations

import platform
import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(UTC)


def _system_version() -> str:
    return f"{platform.system()} {platform.release()}".strip()


class BackupProvider(StrEnum):
    """Available backup storage providers."""

    LOCAL = "local"
    ICLOUD = "icloud"

    @property
    def display_name(self) -> str:
        return {"local": "Local Storage", "icloud": "iCloud"}[self.value]

    @property
    def description(self) -> str:
        return {
            "local": "Store backups locally on this machine",
            "icloud": "Store backups in iCloud for sync across devices",
        }[self.value]

    @property
    def requires_authentication(self) -> bool:
        return self is BackupProvider.ICLOUD


class CompressionLevel(StrEnum):
    NONE = "none"
    FAST = "fast"
    BALANCED = "balanced"
    MAXIMUM = "maximum"


class BackupSettings(BaseModel):
    """What a backup should include."""

    model_config = ConfigDict(frozen=True)

    include_packages: bool = True
    include_configurations: bool = True
    include_dotfiles: bool = True
    include_preferences: bool = False
    include_applications: bool = False
    compression: CompressionLevel = CompressionLevel.BALANCED
    encryption: bool = True

    @classmethod
    def default(cls) -> BackupSettings:
        return cls()

    @classmethod
    def minimal(cls) -> BackupSettings:
        return cls(
            include_configurations=False,
            include_dotfiles=False,
            compression=CompressionLevel.FAST,
            encryption=False,
        )

    @classmethod
    def complete(cls) -> BackupSettings:
        return cls(
            include_preferences=True,
            include_applications=True,
            compression=CompressionLevel.MAXIMUM,
        )


BACKUP_PRESETS = {
    "default": BackupSettings.default,
    "minimal": BackupSettings.minimal,
    "complete": BackupSettings.complete,
}


class BackupMetadata(BaseModel):
    """Information about a produced backup."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str
    provider: BackupProvider = BackupProvider.LOCAL
    settings: BackupSettings = Field(default_factory=BackupSettings)
    created_at: datetime = Field(default_factory=_now)
    size: int | None = None
    system_version: str = Field(default_factory=_system_version)
    checksum: str | None = None

    @property
    def formatted_size(self) -> str:
        """Human-readable size, e.g. ``"1.5 MB"``."""
        if self.size is None:
            return "Unknown"
        size = float(self.size)
        for unit in ("bytes", "KB", "MB", "GB"):
            if size < 1024 or unit == "GB":
                return f"{int(size)} bytes" if unit == "bytes" else f"{size:.1f} {unit}"
            size /= 1024
        return f"{size:.1f} GB"

    def age(self, now: datetime | None = None) -> str:
        """Relative age, e.g. ``"3 days ago"``."""
        delta = (now or _now()) - self.created_at
        seconds = int(delta.total_seconds())
        if seconds < 60:
            return "just now"
        for unit, span in (("day", 86400), ("hour", 3600), ("minute", 60)):
            if seconds >= span:
                count = seconds // span
                return f"{count} {unit}{'s' if count != 1 else ''} ago"
        return "just now"
