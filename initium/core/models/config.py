"""
Configuration — the single persisted user document.

Serialized to ``~/.config/initium/config.json`` with camelCase keys::

    {
      "schemaVersion": "1",
      "preferences": {"analyticsEnabled": true, "autoBackup": false, "verboseLogging": false},
      "backup": {"provider": "local", "retentionDays": 30, "compressionEnabled": true},
      "services": {"tracked": ["brew", "git", "swift"], "stalenessSeconds": 60, "probeTimeoutSeconds": 5}
    }

Unknown keys and unknown providers are validation failures, never
silently defaulted.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from initium.core.models.backup import BackupProvider

CONFIG_SCHEMA_VERSION = "1"


class _Document(BaseModel):
    """Shared settings for every section of the persisted document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class Preferences(_Document):
    """User preferences."""

    analytics_enabled: bool = True
    auto_backup: bool = False
    verbose_logging: bool = False


class BackupConfig(_Document):
    """Backup defaults consulted by the backup operations."""

    provider: BackupProvider = BackupProvider.LOCAL
    retention_days: int = Field(default=30, gt=0)
    compression_enabled: bool = True


class ServicesConfig(_Document):
    """Which tools the status cache tracks and how long a result stays fresh."""

    tracked: list[str] = Field(default_factory=lambda: ["brew", "git", "swift"])
    staleness_seconds: float = Field(default=60.0, ge=0)
    probe_timeout_seconds: float = Field(default=5.0, gt=0)


class Configuration(_Document):
    """Root configuration document."""

    schema_version: str = CONFIG_SCHEMA_VERSION
    preferences: Preferences = Field(default_factory=Preferences)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    services: ServicesConfig = Field(default_factory=ServicesConfig)

    def to_document(self) -> dict:
        """Serialize to the on-disk (camelCase) shape."""
        return self.model_dump(mode="json", by_alias=True)
