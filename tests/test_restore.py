"""Tests for the restore coordinator."""

import logging
import shutil
import signal
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from octeth_backup.artifacts import write_sidecar
from octeth_backup.config import Settings
from octeth_backup.core.exceptions import (
    AlreadyRunningError,
    ChecksumMismatchError,
    RestoreError,
    RunInterrupted,
)
from octeth_backup.core.models import RunStatus, StepStatus, Tier
from octeth_backup.engine import compress_directory
from octeth_backup.notifications import NotificationSink
from octeth_backup.orchestrator import RunLock
from octeth_backup.restore import SAFETY_COPY_PREFIX, RestoreCoordinator, parse_owner
from octeth_backup.storage import LocalBackend

NAME = "octeth-backup-2025-03-01_02-00-00"
RESTORE_TIME = datetime(2025, 3, 2, 9, 30, 0)
REAL_COPYTREE = shutil.copytree


@pytest.fixture
def local(settings: Settings) -> LocalBackend:
    return LocalBackend(settings.paths.backup_dir)


@pytest.fixture
def artifact(temp_dir: Path, local: LocalBackend) -> Path:
    """A checksummed artifact in the daily tier holding restored data."""
    snapshot = temp_dir / "snapshot" / NAME
    (snapshot / "oempro").mkdir(parents=True)
    (snapshot / "ibdata1").write_bytes(b"restored-ibdata")
    (snapshot / "oempro" / "users.ibd").write_bytes(b"restored-users")

    result = compress_directory(snapshot, local.artifact_path(Tier.DAILY, NAME))
    write_sidecar(result.path, result.checksum)
    return result.path


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(spec=NotificationSink)


def _failing_safety_copy(src, dst, *args, **kwargs):
    """Fail only the copy into a safety-copy directory."""
    if Path(dst).name.startswith(SAFETY_COPY_PREFIX):
        raise OSError("No space left on device")
    return REAL_COPYTREE(src, dst, *args, **kwargs)


def _coordinator(settings: Settings, controller: MagicMock, local: LocalBackend, **kwargs):
    kwargs.setdefault("clock", lambda: RESTORE_TIME)
    kwargs.setdefault("sleep", lambda seconds: None)
    return RestoreCoordinator(settings, controller, local, **kwargs)


# =============================================================================
# Checksum gate
# =============================================================================


class TestChecksumGate:
    """A damaged artifact never reaches a destructive step."""

    def test_truncated_artifact_aborts_before_stop(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, data_dir: Path, notifier: MagicMock,
    ) -> None:
        """Checksum failure without force stops before the service is touched."""
        content = artifact.read_bytes()
        artifact.write_bytes(content[: len(content) // 2])
        coordinator = _coordinator(settings, controller, local, notifier=notifier)

        with pytest.raises(ChecksumMismatchError) as exc_info:
            coordinator.restore_file(artifact, assume_yes=True)

        assert "--force" in str(exc_info.value)
        controller.stop.assert_not_called()
        assert (data_dir / "ibdata1").read_bytes() == b"live-ibdata"
        assert not settings.paths.lock_file.exists()
        notifier.restore_failed.assert_called_once()

    def test_forced_truncated_artifact_fails_extraction_before_stop(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, data_dir: Path,
    ) -> None:
        """With --force a truncated archive still fails before the service stops."""
        content = artifact.read_bytes()
        artifact.write_bytes(content[: len(content) // 2])

        with pytest.raises(RestoreError) as exc_info:
            _coordinator(settings, controller, local).restore_file(
                artifact, force=True, assume_yes=True
            )

        assert exc_info.value.step == "extract"
        controller.stop.assert_not_called()
        assert (data_dir / "ibdata1").read_bytes() == b"live-ibdata"

    def test_missing_checksum_warns(
        self, settings: Settings, controller: MagicMock, local: LocalBackend, artifact: Path,
    ) -> None:
        """An artifact without a sidecar is restored with a warning."""
        artifact.with_name(artifact.name + ".sha256").unlink()

        report = _coordinator(settings, controller, local).restore_file(artifact, assume_yes=True)

        assert report.is_success()
        assert report.checksum_verified is False
        assert any("checksum" in w.lower() for w in report.warnings)

    def test_missing_file(
        self, settings: Settings, controller: MagicMock, local: LocalBackend, temp_dir: Path,
    ) -> None:
        """A path that does not exist fails at locate."""
        with pytest.raises(RestoreError) as exc_info:
            _coordinator(settings, controller, local).restore_file(temp_dir / "nope.tar.gz")
        assert exc_info.value.step == "locate"


# =============================================================================
# Full restore
# =============================================================================


class TestRestoreFile:
    """Tests for a complete restore from a local file."""

    def test_restore_replaces_data_and_keeps_safety_copy(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, data_dir: Path, notifier: MagicMock,
    ) -> None:
        """Data is swapped in and the previous data is kept aside."""
        report = _coordinator(settings, controller, local, notifier=notifier).restore_file(
            artifact, assume_yes=True
        )

        assert report.status == RunStatus.SUCCESS
        assert report.checksum_verified
        assert report.table_count == 42
        assert (data_dir / "ibdata1").read_bytes() == b"restored-ibdata"
        assert (data_dir / "oempro" / "users.ibd").read_bytes() == b"restored-users"

        expected_copy = settings.paths.backup_dir / f"{SAFETY_COPY_PREFIX}20250302-093000"
        assert report.safety_copy == expected_copy
        assert (expected_copy / "ibdata1").read_bytes() == b"live-ibdata"

        controller.stop.assert_called_once_with("oempro_mysql")
        controller.start.assert_called_once_with("oempro_mysql")
        controller.count_tables.assert_called_once_with("oempro_mysql", "oempro")
        notifier.restore_finished.assert_called_once_with(report)
        assert not settings.paths.lock_file.exists()
        assert list((settings.paths.temp_dir).glob("restore-*")) == []

    def test_step_order(
        self, settings: Settings, controller: MagicMock, local: LocalBackend, artifact: Path,
    ) -> None:
        """Destructive steps run after every non-destructive check."""
        report = _coordinator(settings, controller, local).restore_file(artifact, assume_yes=True)
        steps = [s.step for s in report.steps]
        assert steps == [
            "locate", "verify_checksum", "resolve_data_dir", "confirm", "extract",
            "stop_service", "safety_copy", "clear_data_dir", "install",
            "fix_ownership", "start_service", "await_ready", "verify_table_count",
        ]

    def test_operator_declines(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, data_dir: Path,
    ) -> None:
        """Answering no cancels without touching the service."""
        confirm = MagicMock(return_value=False)
        report = _coordinator(settings, controller, local, confirm=confirm).restore_file(artifact)

        assert report.status == RunStatus.CANCELLED
        assert "REPLACE" in confirm.call_args.args[0]
        controller.stop.assert_not_called()
        assert (data_dir / "ibdata1").read_bytes() == b"live-ibdata"

    def test_operator_confirms(
        self, settings: Settings, controller: MagicMock, local: LocalBackend, artifact: Path,
    ) -> None:
        """Answering yes proceeds."""
        confirm = MagicMock(return_value=True)
        report = _coordinator(settings, controller, local, confirm=confirm).restore_file(artifact)
        assert report.is_success()
        confirm.assert_called_once()

    def test_no_operator_requires_yes(
        self, settings: Settings, controller: MagicMock, local: LocalBackend, artifact: Path,
    ) -> None:
        """Without a way to ask and without --yes the restore refuses."""
        with pytest.raises(RestoreError) as exc_info:
            _coordinator(settings, controller, local).restore_file(artifact)
        assert exc_info.value.step == "confirm"
        controller.stop.assert_not_called()

    def test_server_never_ready(
        self, settings: Settings, controller: MagicMock, local: LocalBackend, artifact: Path,
    ) -> None:
        """Readiness exhaustion fails and names the safety copy."""
        controller.is_alive.return_value = False
        sleep = MagicMock()

        with pytest.raises(RestoreError) as exc_info:
            _coordinator(settings, controller, local, sleep=sleep).restore_file(
                artifact, assume_yes=True
            )

        assert exc_info.value.step == "await_ready"
        assert SAFETY_COPY_PREFIX in exc_info.value.safety_copy
        assert "Your original data is backed up at" in exc_info.value.message
        assert controller.is_alive.call_count == settings.restore.ready_retries
        assert sleep.call_count == settings.restore.ready_retries - 1
        expected_copy = settings.paths.backup_dir / f"{SAFETY_COPY_PREFIX}20250302-093000"
        assert str(expected_copy) in str(exc_info.value)

    def test_install_failure_names_safety_copy(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, notifier: MagicMock,
    ) -> None:
        """A failed copy into the cleared directory points at the safety copy."""
        controller.is_alive.return_value = False
        expected_copy = settings.paths.backup_dir / f"{SAFETY_COPY_PREFIX}20250302-093000"

        with patch(
            "octeth_backup.restore.coordinator._copy_contents",
            side_effect=OSError("No space left on device"),
        ):
            with pytest.raises(RestoreError) as exc_info:
                _coordinator(settings, controller, local, notifier=notifier).restore_file(
                    artifact, assume_yes=True
                )

        error = exc_info.value
        assert error.step == "install"
        assert error.safety_copy == str(expected_copy)
        assert str(expected_copy) in str(error)
        assert (expected_copy / "ibdata1").read_bytes() == b"live-ibdata"
        controller.start.assert_not_called()
        controller.is_alive.assert_not_called()
        notifier.restore_failed.assert_called_once()
        assert not settings.paths.lock_file.exists()
        assert list(settings.paths.temp_dir.glob("restore-*")) == []

    def test_empty_database_is_a_warning(
        self, settings: Settings, controller: MagicMock, local: LocalBackend, artifact: Path,
    ) -> None:
        """Zero tables after restore warns without failing."""
        controller.count_tables.return_value = 0
        report = _coordinator(settings, controller, local).restore_file(artifact, assume_yes=True)

        assert report.is_success()
        step = next(s for s in report.steps if s.step == "verify_table_count")
        assert step.status == StepStatus.WARNING


# =============================================================================
# Safety copy
# =============================================================================


class TestSafetyCopy:
    """Tests for the pre-restore copy of the live data."""

    def test_failure_aborts_and_restarts(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, data_dir: Path,
    ) -> None:
        """Without consent a failed copy aborts and brings the service back."""
        with patch(
            "octeth_backup.restore.coordinator.shutil.copytree", side_effect=_failing_safety_copy
        ):
            with pytest.raises(RestoreError) as exc_info:
                _coordinator(settings, controller, local).restore_file(artifact, assume_yes=True)

        assert exc_info.value.step == "safety_copy"
        controller.stop.assert_called_once()
        controller.start.assert_called_once()
        assert (data_dir / "ibdata1").read_bytes() == b"live-ibdata"

    def test_failure_allowed_by_flag(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, data_dir: Path,
    ) -> None:
        """--allow-no-safety-copy proceeds with a warning."""
        with patch(
            "octeth_backup.restore.coordinator.shutil.copytree", side_effect=_failing_safety_copy
        ):
            report = _coordinator(settings, controller, local).restore_file(
                artifact, assume_yes=True, allow_no_safety_copy=True
            )

        assert report.is_success()
        assert report.safety_copy is None
        assert any("safety copy" in w for w in report.warnings)


# =============================================================================
# Signals and locking
# =============================================================================


class TestInterruption:
    """Tests for termination signals and lock contention during a restore."""

    def test_sigterm_before_data_touched_restarts(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, data_dir: Path,
    ) -> None:
        """SIGTERM while stopping brings the untouched service back."""
        previous = signal.getsignal(signal.SIGTERM)
        controller.stop.side_effect = lambda service: signal.raise_signal(signal.SIGTERM)

        with pytest.raises(RunInterrupted):
            _coordinator(settings, controller, local).restore_file(artifact, assume_yes=True)

        controller.start.assert_called_once_with("oempro_mysql")
        assert (data_dir / "ibdata1").read_bytes() == b"live-ibdata"
        assert not settings.paths.lock_file.exists()
        assert list(settings.paths.temp_dir.glob("restore-*")) == []
        assert signal.getsignal(signal.SIGTERM) is previous

    def test_interrupt_after_clear_leaves_service_stopped(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Once the data directory is cleared the service stays down and the copy is named."""
        expected_copy = settings.paths.backup_dir / f"{SAFETY_COPY_PREFIX}20250302-093000"

        with patch(
            "octeth_backup.restore.coordinator._copy_contents",
            side_effect=RunInterrupted(signal.SIGTERM),
        ):
            with caplog.at_level(logging.ERROR, logger="octeth_backup.restore.coordinator"):
                with pytest.raises(RunInterrupted):
                    _coordinator(settings, controller, local).restore_file(
                        artifact, assume_yes=True
                    )

        controller.start.assert_not_called()
        assert "left stopped" in caplog.text
        assert str(expected_copy) in caplog.text
        assert not settings.paths.lock_file.exists()

    def test_held_lock_is_logged(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, notifier: MagicMock, caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A restore blocked by a running backup logs the refusal before raising."""
        holder = RunLock(settings.paths.lock_file)
        holder.acquire()
        try:
            with caplog.at_level(logging.ERROR, logger="octeth_backup.restore.coordinator"):
                with pytest.raises(AlreadyRunningError):
                    _coordinator(settings, controller, local, notifier=notifier).restore_file(
                        artifact, assume_yes=True
                    )
        finally:
            holder.release()

        assert "Restore failed: Another backup process is already running" in caplog.text
        controller.stop.assert_not_called()
        notifier.restore_failed.assert_not_called()


# =============================================================================
# Cloud restore and listing
# =============================================================================


class TestRestoreCloud:
    """Tests for restoring from a remote backend."""

    def test_restore_from_remote(
        self, settings: Settings, controller: MagicMock, local: LocalBackend,
        artifact: Path, temp_dir: Path, data_dir: Path,
    ) -> None:
        """The artifact and sidecar are fetched into the restore area first."""
        remote = LocalBackend(temp_dir / "cloud")
        remote.upload(artifact, Tier.DAILY, NAME)

        report = _coordinator(settings, controller, local, remote=remote).restore_cloud(
            NAME, Tier.DAILY, assume_yes=True
        )

        assert report.is_success()
        assert report.checksum_verified
        assert (settings.paths.temp_dir / "restore" / f"{NAME}.tar.gz").is_file()
        assert (data_dir / "ibdata1").read_bytes() == b"restored-ibdata"
        assert report.steps[0].step == "download"

    def test_missing_remote_artifact(
        self, settings: Settings, controller: MagicMock, local: LocalBackend, temp_dir: Path,
    ) -> None:
        """A name that is not in the bucket fails the download step."""
        remote = LocalBackend(temp_dir / "cloud")
        with pytest.raises(RestoreError) as exc_info:
            _coordinator(settings, controller, local, remote=remote).restore_cloud(
                NAME, Tier.WEEKLY, assume_yes=True
            )
        assert exc_info.value.step == "download"
        controller.stop.assert_not_called()

    def test_list_artifacts(
        self, settings: Settings, controller: MagicMock, local: LocalBackend, artifact: Path,
    ) -> None:
        """Listings cover every tier."""
        listing = _coordinator(settings, controller, local).list_artifacts(local)
        assert set(listing) == set(Tier)
        assert [r.name for r in listing[Tier.DAILY]] == [NAME]
        assert listing[Tier.MONTHLY] == []


class TestParseOwner:
    """Tests for parse_owner."""

    def test_numeric(self) -> None:
        assert parse_owner("999:999") == (999, 999)
        assert parse_owner("27:28") == (27, 28)

    def test_user_only(self) -> None:
        """A bare id is used for the group too."""
        assert parse_owner("0") == (0, 0)

    def test_empty_means_unchanged(self) -> None:
        assert parse_owner("") is None
        assert parse_owner("  ") is None
