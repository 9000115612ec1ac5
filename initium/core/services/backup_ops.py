"""
Backup operations — create, restore, and delete backups through the
operation engine.

The core owns orchestration and metadata only. Moving payload bytes is
the job of a ``PayloadMover`` registered per provider; the built-in
``ManifestPayloadMover`` writes nothing and only fingerprints the backup
manifest. A provider without a mover fails with ``ExternalActionError``.

Each public operation returns a ``Future`` resolving to the terminal
OperationRecord. A second request of the same kind while one is in
flight raises ``ConflictError`` immediately.
"""

from __future__ import annotations

import hashlib
import json
import logging
import platform
import threading
import uuid
from concurrent.futures import Future
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict

from initium.core.config.store import ConfigStore
from initium.core.engine.operations import OperationContext, OperationStateMachine
from initium.core.errors import ExternalActionError
from initium.core.models.backup import BackupMetadata, BackupProvider, BackupSettings
from initium.core.models.operation import OperationKind, OperationRecord

logger = logging.getLogger(__name__)

BACKUP_KINDS = (
    OperationKind.BACKUP_CREATE,
    OperationKind.BACKUP_RESTORE,
    OperationKind.BACKUP_DELETE,
)


# ═══════════════════════════════════════════════════════════════════
#  Payload movers
# ═══════════════════════════════════════════════════════════════════


class PayloadReceipt(BaseModel):
    """What a mover reports after storing a backup payload."""

    model_config = ConfigDict(frozen=True)

    size: int | None = None
    checksum: str | None = None


class PayloadMover(Protocol):
    """External collaborator that moves backup payloads for one provider."""

    def create(self, metadata: BackupMetadata, ctx: OperationContext) -> PayloadReceipt: ...

    def restore(self, metadata: BackupMetadata, ctx: OperationContext) -> None: ...

    def delete(self, metadata: BackupMetadata, ctx: OperationContext) -> None: ...


class ManifestPayloadMover:
    """Local mover that records a manifest fingerprint and moves no bytes."""

    def create(self, metadata: BackupMetadata, ctx: OperationContext) -> PayloadReceipt:
        ctx.checkpoint()
        manifest = json.dumps(
            metadata.model_dump(mode="json", exclude={"size", "checksum"}),
            sort_keys=True,
        ).encode("utf-8")
        ctx.report_progress(0.5)
        return PayloadReceipt(
            size=len(manifest),
            checksum=hashlib.sha256(manifest).hexdigest(),
        )

    def restore(self, metadata: BackupMetadata, ctx: OperationContext) -> None:
        raise ExternalActionError(
            f"Restore is not supported by the '{metadata.provider.value}' provider"
        )

    def delete(self, metadata: BackupMetadata, ctx: OperationContext) -> None:
        ctx.checkpoint()


DEFAULT_MOVERS: dict[BackupProvider, PayloadMover] = {
    BackupProvider.LOCAL: ManifestPayloadMover(),
}


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════


def generate_backup_name(now: datetime | None = None) -> str:
    """``initium_backup_<YYYY-MM-DD_HH-MM-SS>_<system>``."""
    timestamp = (now or datetime.now(UTC)).strftime("%Y-%m-%d_%H-%M-%S")
    system = f"{platform.system()}_{platform.release()}".replace(" ", "_").strip("_")
    return f"initium_backup_{timestamp}_{system or 'unknown'}"


class BackupStatus(BaseModel):
    """Summary for status surfaces: what is running and the last backup."""

    model_config = ConfigDict(frozen=True)

    is_running: bool = False
    current_operation: OperationKind | None = None
    progress: float | None = None
    last_backup: BackupMetadata | None = None
    error: str | None = None


# ═══════════════════════════════════════════════════════════════════
#  Manager
# ═══════════════════════════════════════════════════════════════════


class BackupManager:
    """High-level backup interface over the operation engine.

    Args:
        config_store: Source of provider and retention defaults.
        machine: Shared operation engine.
        movers: Payload movers per provider (default: local manifest mover).
        log: Logging sink (default: this module's logger).
    """

    def __init__(
        self,
        config_store: ConfigStore,
        machine: OperationStateMachine,
        *,
        movers: dict[BackupProvider, PayloadMover] | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.config_store = config_store
        self.machine = machine
        self.movers = dict(DEFAULT_MOVERS if movers is None else movers)
        self._log = log or logger
        self._catalog: dict[uuid.UUID, BackupMetadata] = {}
        self._catalog_lock = threading.Lock()
        self._last_backup: BackupMetadata | None = None

    # ── Operations ──────────────────────────────────────────────

    def create_backup(
        self,
        name: str | None = None,
        settings: BackupSettings | None = None,
    ) -> Future[OperationRecord]:
        """Create a backup with the configured provider."""
        config = self.config_store.load()
        provider = config.backup.provider
        metadata = BackupMetadata(
            name=name or generate_backup_name(),
            provider=provider,
            settings=settings or BackupSettings.default(),
        )
        self._log.info("Creating backup %s with provider: %s", metadata.name, provider.value)

        def perform(ctx: OperationContext) -> BackupMetadata:
            mover = self._mover_for(provider)
            receipt = mover.create(metadata, ctx)
            ctx.checkpoint()
            created = metadata.model_copy(
                update={"size": receipt.size, "checksum": receipt.checksum}
            )
            with self._catalog_lock:
                self._catalog[created.id] = created
                self._last_backup = created
            return created

        return self.machine.start(
            OperationKind.BACKUP_CREATE,
            perform,
            payload={"name": metadata.name, "provider": provider.value},
            supersede=True,
        )

    def restore_backup(self, backup_id: uuid.UUID) -> Future[OperationRecord]:
        """Restore from a catalogued backup."""
        self._log.info("Restore requested for backup: %s", backup_id)

        def perform(ctx: OperationContext) -> dict[str, Any]:
            metadata = self._lookup(backup_id)
            self._mover_for(metadata.provider).restore(metadata, ctx)
            return {"restored": str(metadata.id)}

        return self.machine.start(
            OperationKind.BACKUP_RESTORE,
            perform,
            payload={"backup_id": str(backup_id)},
            supersede=True,
        )

    def delete_backup(self, backup_id: uuid.UUID) -> Future[OperationRecord]:
        """Delete a catalogued backup and drop it from the catalog."""
        self._log.info("Delete requested for backup: %s", backup_id)

        def perform(ctx: OperationContext) -> dict[str, Any]:
            metadata = self._lookup(backup_id)
            self._mover_for(metadata.provider).delete(metadata, ctx)
            ctx.checkpoint()
            with self._catalog_lock:
                self._catalog.pop(metadata.id, None)
                if self._last_backup is not None and self._last_backup.id == metadata.id:
                    self._last_backup = None
            return {"deleted": str(metadata.id)}

        return self.machine.start(
            OperationKind.BACKUP_DELETE,
            perform,
            payload={"backup_id": str(backup_id)},
            supersede=True,
        )

    def cancel(self, kind: OperationKind = OperationKind.BACKUP_CREATE) -> OperationRecord:
        return self.machine.cancel(kind)

    # ── Catalog ─────────────────────────────────────────────────

    def register(self, metadata: BackupMetadata) -> None:
        """Add externally stored backup metadata to the catalog."""
        with self._catalog_lock:
            self._catalog[metadata.id] = metadata

    def list_backups(self, provider: BackupProvider | None = None) -> list[BackupMetadata]:
        """Catalogued backups, newest first."""
        self._log.debug("Listing backups for provider: %s", provider.value if provider else "all")
        with self._catalog_lock:
            entries = list(self._catalog.values())
        if provider is not None:
            entries = [m for m in entries if m.provider == provider]
        return sorted(entries, key=lambda m: m.created_at, reverse=True)

    def expired(self, now: datetime | None = None) -> list[BackupMetadata]:
        """Backups older than the configured retention period."""
        retention = timedelta(days=self.config_store.load().backup.retention_days)
        cutoff = (now or datetime.now(UTC)) - retention
        return [m for m in self.list_backups() if m.created_at < cutoff]

    def status(self) -> BackupStatus:
        """What backup operation is running (if any) and the last backup."""
        for kind in BACKUP_KINDS:
            record = self.machine.current_record(kind)
            if record is not None and not record.terminal:
                return BackupStatus(
                    is_running=True,
                    current_operation=kind,
                    progress=record.progress,
                    last_backup=self._last_backup,
                )

        error = None
        for kind in BACKUP_KINDS:
            record = self.machine.current_record(kind)
            if record is not None and record.error is not None:
                error = record.error.message
                break
        return BackupStatus(last_backup=self._last_backup, error=error)

    # ── Internal helpers ────────────────────────────────────────

    def _mover_for(self, provider: BackupProvider) -> PayloadMover:
        mover = self.movers.get(provider)
        if mover is None:
            raise ExternalActionError(
                f"No payload mover is available for provider '{provider.value}'"
            )
        return mover

    def _lookup(self, backup_id: uuid.UUID) -> BackupMetadata:
        with self._catalog_lock:
            metadata = self._catalog.get(backup_id)
        if metadata is None:
            raise ExternalActionError(f"Unknown backup: {backup_id}")
        return metadata
