"""
Core data models for Octeth Backup.

Artifacts, tiers, retention counts and the structured outcomes that the
backup and restore flows report back to the command line.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

ARTIFACT_SUFFIX = ".tar.gz"
CHECKSUM_SUFFIX = ".sha256"


class Tier(Enum):
    """Retention bucket of an artifact, doubling as its storage sub-path."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class StepStatus(Enum):
    """Outcome of a single orchestration step."""

    OK = "ok"
    WARNING = "warning"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(Enum):
    """Overall outcome of a backup or restore run."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ArtifactRef:
    """An artifact as seen in one storage location."""

    tier: Tier
    name: str
    size_bytes: int
    modified_at: datetime
    location: str
    key: str
    has_checksum: bool = False

    @property
    def filename(self) -> str:
        return f"{self.name}{ARTIFACT_SUFFIX}"

    @property
    def checksum_filename(self) -> str:
        return f"{self.filename}{CHECKSUM_SUFFIX}"


@dataclass
class StepOutcome:
    """Result of one step in a backup or restore state machine."""

    step: str
    status: StepStatus
    message: str = ""
    duration_seconds: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED


class BackupArtifact(BaseModel):
    """A freshly created, checksummed artifact placed in local storage."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Artifact name without extension")
    tier: Tier = Field(description="Tier assigned at creation")
    path: Path = Field(description="Local path of the compressed archive")
    size_bytes: int = Field(description="Size of the compressed archive")
    checksum: str = Field(description="SHA-256 of the compressed archive")
    created_at: datetime = Field(description="Run start time used for the name")

    @property
    def checksum_path(self) -> Path:
        return self.path.with_name(self.path.name + CHECKSUM_SUFFIX)


class RetentionPolicy(BaseModel):
    """Per-tier keep-counts applied identically to every location."""

    model_config = ConfigDict(frozen=True)

    daily: int = Field(default=7, ge=0, description="Daily artifacts to keep")
    weekly: int = Field(default=4, ge=0, description="Weekly artifacts to keep")
    monthly: int = Field(default=6, ge=0, description="Monthly artifacts to keep")

    def keep_count(self, tier: Tier) -> int:
        """Return the keep-count configured for a tier."""
        match tier:
            case Tier.DAILY:
                return self.daily
            case Tier.WEEKLY:
                return self.weekly
            case Tier.MONTHLY:
                return self.monthly


class BackupReport(BaseModel):
    """Summary of one backup run."""

    status: RunStatus = Field(description="Overall run outcome")
    name: str | None = Field(default=None, description="Artifact name, once generated")
    tier: Tier | None = Field(default=None, description="Tier, once classified")
    artifact: BackupArtifact | None = Field(default=None, description="Placed artifact")
    duration_seconds: float = Field(default=0.0, description="Elapsed run time")
    replicated: bool = Field(default=False, description="Whether the remote copy succeeded")
    steps: list[StepOutcome] = Field(default_factory=list, description="Per-step outcomes")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal problems")
    errors: list[str] = Field(default_factory=list, description="Fatal problems")

    def is_success(self) -> bool:
        """Check if the run completed."""
        return self.status == RunStatus.SUCCESS


class RestoreReport(BaseModel):
    """Summary of one restore run."""

    status: RunStatus = Field(description="Overall run outcome")
    artifact: str = Field(description="Artifact file that was restored")
    data_dir: Path | None = Field(default=None, description="Restored data directory")
    safety_copy: Path | None = Field(default=None, description="Copy of the previous data")
    table_count: int | None = Field(default=None, description="Tables found after restore")
    checksum_verified: bool = Field(default=False, description="Whether the sidecar matched")
    steps: list[StepOutcome] = Field(default_factory=list, description="Per-step outcomes")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal problems")

    def is_success(self) -> bool:
        """Check if the restore completed."""
        return self.status == RunStatus.SUCCESS


@dataclass
class TierStats:
    """Artifact count and size for one tier in one location."""

    tier: Tier
    count: int = 0
    size_bytes: int = 0


@dataclass
class StorageStats:
    """Per-tier statistics for one location."""

    location: str
    tiers: list[TierStats] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return sum(t.count for t in self.tiers)

    @property
    def total_bytes(self) -> int:
        return sum(t.size_bytes for t in self.tiers)
