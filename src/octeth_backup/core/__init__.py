"""
Octeth Backup Core Module.

Provides the shared models and exception hierarchy.
"""

__all__ = [
    "ArtifactRef",
    "BackupArtifact",
    "BackupReport",
    "RestoreReport",
    "RetentionPolicy",
    "RunStatus",
    "StepOutcome",
    "StepStatus",
    "StorageStats",
    "Tier",
    "TierStats",
    # Exceptions
    "BackupSystemError",
    "AlreadyRunningError",
    "ChecksumMismatchError",
    "CompressionError",
    "ConfigurationError",
    "DatabaseUnreachableError",
    "EngineError",
    "EngineUnavailableError",
    "InsufficientCapacityError",
    "LockError",
    "PreflightError",
    "RestoreError",
    "RunInterrupted",
    "ServiceControlError",
    "StorageBackendError",
    "ToolMissingError",
]

from octeth_backup.core.exceptions import (
    AlreadyRunningError,
    BackupSystemError,
    ChecksumMismatchError,
    CompressionError,
    ConfigurationError,
    DatabaseUnreachableError,
    EngineError,
    EngineUnavailableError,
    InsufficientCapacityError,
    LockError,
    PreflightError,
    RestoreError,
    RunInterrupted,
    ServiceControlError,
    StorageBackendError,
    ToolMissingError,
)
from octeth_backup.core.models import (
    ArtifactRef,
    BackupArtifact,
    BackupReport,
    RestoreReport,
    RetentionPolicy,
    RunStatus,
    StepOutcome,
    StepStatus,
    StorageStats,
    Tier,
    TierStats,
)
