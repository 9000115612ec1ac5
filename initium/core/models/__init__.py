"""
Domain models — Pydantic types for the Initium core.

All models are re-exported here for convenient access:

    from initium.core.models import Configuration, OperationRecord, ServiceStatus
"""

from initium.core.models.backup import (
    BackupMetadata,
    BackupProvider,
    BackupSettings,
    CompressionLevel,
)
from initium.core.models.config import (
    BackupConfig,
    Configuration,
    Preferences,
    ServicesConfig,
)
from initium.core.models.metrics import ImpactRecord, MetricSnapshot
from initium.core.models.operation import (
    OperationError,
    OperationKind,
    OperationRecord,
    OperationState,
)
from initium.core.models.status import (
    OverallStatus,
    ServiceStatus,
    ToolProbeResult,
)

__all__ = [
    # config.py
    "BackupConfig",
    # backup.py
    "BackupMetadata",
    "BackupProvider",
    "BackupSettings",
    "CompressionLevel",
    "Configuration",
    # metrics.py
    "ImpactRecord",
    "MetricSnapshot",
    # operation.py
    "OperationError",
    "OperationKind",
    "OperationRecord",
    "OperationState",
    # status.py
    "OverallStatus",
    "Preferences",
    "ServiceStatus",
    "ServicesConfig",
    "ToolProbeResult",
]
