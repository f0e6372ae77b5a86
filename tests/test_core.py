"""Tests for core models, exceptions and step tracking."""

from datetime import datetime
from pathlib import Path

import pytest
from pydantic import ValidationError

from octeth_backup.core.exceptions import (
    AlreadyRunningError,
    BackupSystemError,
    ConfigurationError,
    InsufficientCapacityError,
    PreflightError,
    RestoreError,
    RunInterrupted,
    format_exception,
)
from octeth_backup.core.models import (
    ArtifactRef,
    BackupArtifact,
    RetentionPolicy,
    StepOutcome,
    StepStatus,
    StorageStats,
    Tier,
    TierStats,
)
from octeth_backup.core.steps import track_step


# =============================================================================
# Model tests
# =============================================================================


class TestModels:
    """Tests for the shared data models."""

    def test_artifact_ref_filenames(self) -> None:
        """Refs derive the archive and sidecar names."""
        ref = ArtifactRef(
            tier=Tier.DAILY,
            name="octeth-backup-2025-03-03_02-00-00",
            size_bytes=10,
            modified_at=datetime(2025, 3, 3, 2, 0, 0),
            location="local",
            key="daily/octeth-backup-2025-03-03_02-00-00.tar.gz",
        )
        assert ref.filename == "octeth-backup-2025-03-03_02-00-00.tar.gz"
        assert ref.checksum_filename == "octeth-backup-2025-03-03_02-00-00.tar.gz.sha256"

    def test_backup_artifact_checksum_path(self) -> None:
        artifact = BackupArtifact(
            name="n",
            tier=Tier.WEEKLY,
            path=Path("/b/weekly/n.tar.gz"),
            size_bytes=1,
            checksum="0" * 64,
            created_at=datetime(2025, 3, 2),
        )
        assert artifact.checksum_path == Path("/b/weekly/n.tar.gz.sha256")

    def test_retention_policy(self) -> None:
        """keep_count maps each tier to its setting."""
        policy = RetentionPolicy(daily=3, weekly=2, monthly=1)
        assert [policy.keep_count(t) for t in Tier] == [3, 2, 1]

    def test_retention_policy_rejects_negative(self) -> None:
        with pytest.raises(ValidationError):
            RetentionPolicy(daily=-1)

    def test_storage_stats_totals(self) -> None:
        stats = StorageStats(
            location="local",
            tiers=[TierStats(Tier.DAILY, 2, 100), TierStats(Tier.MONTHLY, 1, 50)],
        )
        assert stats.total_count == 3
        assert stats.total_bytes == 150


# =============================================================================
# Exception tests
# =============================================================================


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_details_in_str(self) -> None:
        """Keyword context is folded into details and rendered."""
        error = ConfigurationError("Bad value", config_key="RETENTION_DAILY")
        assert str(error) == "Bad value (config_key=RETENTION_DAILY)"
        assert error.to_dict() == {
            "error_type": "ConfigurationError",
            "message": "Bad value",
            "details": {"config_key": "RETENTION_DAILY"},
        }

    def test_plain_message(self) -> None:
        assert str(BackupSystemError("boom")) == "boom"

    def test_capacity_is_preflight(self) -> None:
        """Capacity failures are pre-flight failures tagged with their check."""
        error = InsufficientCapacityError("Not enough space", volume="/b", required=17.0)
        assert isinstance(error, PreflightError)
        assert error.details == {"volume": "/b", "required": 17.0, "check": "capacity"}

    def test_already_running_default_message(self) -> None:
        error = AlreadyRunningError(lock_file="/run/x.lock", pid=42)
        assert "already running" in str(error)
        assert error.details["pid"] == 42

    def test_restore_error_names_safety_copy(self) -> None:
        error = RestoreError("install failed", step="install", safety_copy="/data/pre-restore")
        assert "safety_copy=/data/pre-restore" in str(error)

    def test_run_interrupted(self) -> None:
        assert RunInterrupted(15).signum == 15

    def test_format_exception(self) -> None:
        """Foreign exceptions are prefixed with their class name."""
        assert format_exception(ValueError("nope")) == "ValueError: nope"
        assert format_exception(BackupSystemError("ours")) == "ours"


# =============================================================================
# Step tracking tests
# =============================================================================


class TestTrackStep:
    """Tests for track_step."""

    def test_records_outcome(self) -> None:
        """A completed block records its status and message."""
        steps: list[StepOutcome] = []
        with track_step(steps, "checksum") as outcome:
            outcome.status = StepStatus.WARNING
            outcome.message = "no sidecar"

        assert len(steps) == 1
        assert steps[0].step == "checksum"
        assert steps[0].status == StepStatus.WARNING
        assert steps[0].duration_seconds >= 0

    def test_failure_propagates(self) -> None:
        """An exception marks the step failed and is re-raised."""
        steps: list[StepOutcome] = []
        with pytest.raises(BackupSystemError):
            with track_step(steps, "extract"):
                raise BackupSystemError("corrupt archive")

        assert steps[0].failed
        assert steps[0].message == "corrupt archive"
