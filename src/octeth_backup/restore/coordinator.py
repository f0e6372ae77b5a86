"""
Restore coordinator.

Reverses a backup onto the live service:

    locate -> verify checksum -> confirm -> extract -> stop service
    -> safety copy -> clear data dir -> install -> fix ownership
    -> start service -> await ready -> verify table count

Everything that can fail without touching the database (checksum,
confirmation, extraction, data directory discovery) happens before the
service is stopped. Once the data directory has been cleared, every
failure names the safety copy so the operator can put the old data back.
"""

import grp
import logging
import os
import pwd
import shutil
import tarfile
import tempfile
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from octeth_backup.artifacts import ChecksumStatus, verify_checksum
from octeth_backup.config import Settings
from octeth_backup.core.exceptions import (
    BackupSystemError,
    ChecksumMismatchError,
    LockError,
    RestoreError,
    RunInterrupted,
    ServiceControlError,
    StorageBackendError,
    format_exception,
)
from octeth_backup.core.models import (
    ArtifactRef,
    RestoreReport,
    RunStatus,
    StepOutcome,
    StepStatus,
    Tier,
)
from octeth_backup.core.steps import track_step
from octeth_backup.engine import ServiceController
from octeth_backup.notifications import NotificationSink
from octeth_backup.orchestrator.lock import RunLock, terminate_on_signal
from octeth_backup.storage import LocalBackend, StorageBackend

logger = logging.getLogger(__name__)

SAFETY_COPY_PREFIX = "pre-restore-backup-"

ConfirmCallback = Callable[[str], bool]


def parse_owner(owner: str) -> tuple[int, int] | None:
    """
    Parse a `user:group` ownership spec into numeric ids.

    Names are looked up in the system databases. An empty spec means
    ownership is left alone.
    """
    owner = owner.strip()
    if not owner:
        return None
    user, _, group = owner.partition(":")
    group = group or user
    uid = int(user) if user.isdigit() else pwd.getpwnam(user).pw_uid
    gid = int(group) if group.isdigit() else grp.getgrnam(group).gr_gid
    return uid, gid


def _clear_directory(directory: Path) -> None:
    """Remove the contents of a directory, keeping the directory itself."""
    for child in directory.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def _copy_contents(source: Path, destination: Path) -> None:
    for child in source.iterdir():
        target = destination / child.name
        if child.is_dir() and not child.is_symlink():
            shutil.copytree(child, target, symlinks=True)
        else:
            shutil.copy2(child, target, follow_symlinks=False)


def _chown_tree(root: Path, uid: int, gid: int) -> None:
    os.chown(root, uid, gid, follow_symlinks=False)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            os.chown(os.path.join(dirpath, name), uid, gid, follow_symlinks=False)


class RestoreCoordinator:
    """
    Restores a backup artifact into the database service's data directory.

    Restore shares the backup run lock: both write the data directory.
    """

    def __init__(
        self,
        settings: Settings,
        controller: ServiceController,
        local: LocalBackend,
        remote: StorageBackend | None = None,
        notifier: NotificationSink | None = None,
        confirm: ConfirmCallback | None = None,
        lock: RunLock | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize coordinator.

        Args:
            settings: Immutable run configuration
            controller: Control plane for the database service
            local: Local backup tree
            remote: Cloud backend for restores from the cloud
            notifier: Notification sink (no channels when omitted)
            confirm: Asks the operator a yes/no question; None means
                nobody can answer and interactive steps refuse
            lock: Run lock (built from settings when omitted)
            sleep: Wait between readiness polls
            clock: Source of the safety copy timestamp
        """
        self.settings = settings
        self.controller = controller
        self.local = local
        self.remote = remote
        self.notifier = notifier or NotificationSink()
        self.confirm = confirm
        self.lock = lock or RunLock(settings.paths.lock_file)
        self.sleep = sleep
        self.clock = clock

    def list_artifacts(self, backend: StorageBackend) -> dict[Tier, list[ArtifactRef]]:
        """List every artifact in a location, newest first within each tier."""
        return {tier: backend.list(tier) for tier in Tier}

    def restore_file(
        self,
        artifact_path: Path,
        force: bool = False,
        assume_yes: bool = False,
        allow_no_safety_copy: bool = False,
    ) -> RestoreReport:
        """
        Restore from a local artifact file.

        Args:
            artifact_path: The `.tar.gz` to restore
            force: Proceed with a warning when the checksum does not match
            assume_yes: Skip the confirmation prompt
            allow_no_safety_copy: Proceed when the safety copy cannot be made

        Returns:
            RestoreReport; status CANCELLED when the operator declined

        Raises:
            ChecksumMismatchError: On a mismatch without force
            RestoreError: On any other failure
        """
        report = RestoreReport(status=RunStatus.FAILED, artifact=artifact_path.name)
        with self._locked():
            return self._guarded(
                report,
                lambda: self._restore(report, artifact_path, force, assume_yes, allow_no_safety_copy),
            )

    def restore_cloud(
        self,
        name: str,
        tier: Tier,
        force: bool = False,
        assume_yes: bool = False,
        allow_no_safety_copy: bool = False,
    ) -> RestoreReport:
        """
        Download an artifact from the cloud backend and restore it.

        The artifact and its sidecar are fetched into `<TEMP_DIR>/restore`.
        """
        report = RestoreReport(status=RunStatus.FAILED, artifact=name)

        def fetch_and_restore() -> RestoreReport:
            path = self._fetch(report, name, tier)
            report.artifact = path.name
            return self._restore(report, path, force, assume_yes, allow_no_safety_copy)

        with self._locked():
            return self._guarded(report, fetch_and_restore)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the run lock and turn termination signals into RunInterrupted."""
        try:
            self.lock.acquire()
        except LockError as e:
            logger.error(f"Restore failed: {format_exception(e)}")
            raise
        try:
            with terminate_on_signal():
                yield
        finally:
            self.lock.release()

    def _guarded(self, report: RestoreReport, body: Callable[[], RestoreReport]) -> RestoreReport:
        try:
            result = body()
        except BackupSystemError as e:
            logger.error(f"Restore failed: {format_exception(e)}")
            self.notifier.restore_failed(report.artifact, format_exception(e))
            raise
        if result.is_success():
            self.notifier.restore_finished(result)
        return result

    def _fetch(self, report: RestoreReport, name: str, tier: Tier) -> Path:
        with track_step(report.steps, "download"):
            if self.remote is None:
                raise StorageBackendError("Cloud storage is disabled in configuration")
            name = name.strip()
            filename = name if name.endswith(".tar.gz") else f"{name}.tar.gz"
            destination = self.settings.paths.temp_dir / "restore" / filename
            logger.info(f"Downloading {tier.value}/{filename} from {self.remote.label}")
            result = self.remote.download(tier, filename, destination)
            if not result.success:
                raise RestoreError(
                    f"Failed to download {filename} from {self.remote.label}: {result.error}",
                    step="download",
                )
            if not result.sidecar_transferred:
                logger.warning(f"No checksum found for {filename} in {self.remote.label}")
            return destination

    def _restore(
        self,
        report: RestoreReport,
        artifact_path: Path,
        force: bool,
        assume_yes: bool,
        allow_no_safety_copy: bool,
    ) -> RestoreReport:
        service = self.settings.mysql.service

        with track_step(report.steps, "locate"):
            if not artifact_path.is_file():
                raise RestoreError(f"Backup file not found: {artifact_path}", step="locate")

        with track_step(report.steps, "verify_checksum") as step:
            self._verify_checksum(report, artifact_path, force, step)

        with track_step(report.steps, "resolve_data_dir") as step:
            data_dir = self._resolve_data_dir()
            report.data_dir = data_dir
            step.message = str(data_dir)

        with track_step(report.steps, "confirm") as step:
            if assume_yes:
                step.status = StepStatus.SKIPPED
            elif not self._ask(self._confirmation_text(artifact_path, data_dir)):
                logger.info("Restore cancelled")
                report.status = RunStatus.CANCELLED
                return report

        extract_root = Path(
            tempfile.mkdtemp(prefix="restore-", dir=self._ensure_dir(self.settings.paths.temp_dir))
        )
        service_stopped = data_touched = False
        try:
            with track_step(report.steps, "extract"):
                restored = self._extract(artifact_path, extract_root)

            with track_step(report.steps, "stop_service"):
                service_stopped = True
                try:
                    self.controller.stop(service)
                except ServiceControlError as e:
                    raise RestoreError(
                        f"Failed to stop {service}: {e.message}", step="stop_service"
                    ) from e

            with track_step(report.steps, "safety_copy") as step:
                report.safety_copy = self._safety_copy(report, data_dir, assume_yes, allow_no_safety_copy)
                if report.safety_copy is None:
                    step.status = StepStatus.WARNING
                else:
                    step.message = str(report.safety_copy)

            safety = str(report.safety_copy) if report.safety_copy else None
            recovery = self._recovery_hint(report)

            data_touched = True
            with track_step(report.steps, "clear_data_dir"):
                try:
                    _clear_directory(data_dir)
                except OSError as e:
                    raise RestoreError(
                        f"Failed to clear {data_dir}: {e}. {recovery}",
                        step="clear_data_dir",
                        safety_copy=safety,
                    ) from e

            with track_step(report.steps, "install"):
                try:
                    _copy_contents(restored, data_dir)
                except (OSError, shutil.Error) as e:
                    raise RestoreError(
                        f"Failed to copy restored data into {data_dir}: {e}. {recovery}",
                        step="install",
                        safety_copy=safety,
                    ) from e
        except RunInterrupted:
            if data_touched:
                logger.error(
                    f"Restore interrupted after {data_dir} was cleared; "
                    f"{service} left stopped. {self._recovery_hint(report)}"
                )
            elif service_stopped:
                logger.warning(f"Restore interrupted before {data_dir} was touched, restarting {service}")
                self._restart_after_abort()
            raise
        finally:
            shutil.rmtree(extract_root, ignore_errors=True)

        with track_step(report.steps, "fix_ownership") as step:
            self._fix_ownership(report, data_dir, step)

        with track_step(report.steps, "start_service"):
            try:
                self.controller.start(service)
            except ServiceControlError as e:
                raise RestoreError(
                    f"Failed to start {service}: {e.message}. {recovery}",
                    step="start_service",
                    safety_copy=safety,
                ) from e

        with track_step(report.steps, "await_ready") as step:
            attempts = self._await_ready(service)
            if attempts is None:
                raise RestoreError(
                    f"MySQL failed to become ready after "
                    f"{self.settings.restore.ready_retries} checks. {recovery}",
                    step="await_ready",
                    safety_copy=safety,
                )
            step.message = f"ready after {attempts} check(s)"

        with track_step(report.steps, "verify_table_count") as step:
            self._count_tables(report, step)

        report.status = RunStatus.SUCCESS
        logger.info(
            f"Restore of {report.artifact} completed: {report.table_count} table(s) in "
            f"{self.settings.mysql.database}, safety copy {safety or 'none'}"
        )
        return report

    def _verify_checksum(
        self, report: RestoreReport, artifact_path: Path, force: bool, step: StepOutcome
    ) -> None:
        status, expected, actual = verify_checksum(artifact_path)
        match status:
            case ChecksumStatus.MATCH:
                report.checksum_verified = True
                step.message = f"sha256 {actual}"
                logger.info("Checksum verification passed")
            case ChecksumStatus.MISSING:
                step.status = StepStatus.WARNING
                step.message = "no checksum file"
                report.warnings.append("No checksum file found, verification skipped")
                logger.warning("No checksum file found, skipping verification")
            case ChecksumStatus.MISMATCH if force:
                step.status = StepStatus.WARNING
                step.message = "mismatch ignored"
                report.warnings.append("Checksum verification failed; restored anyway (--force)")
                logger.warning("Proceeding with restore despite failed checksum (--force)")
            case ChecksumStatus.MISMATCH:
                raise ChecksumMismatchError(
                    "Checksum verification failed. Use --force to restore anyway",
                    artifact=artifact_path.name,
                    expected=expected,
                    actual=actual,
                )

    def _resolve_data_dir(self) -> Path:
        configured = self.settings.mysql.data_dir
        if configured is not None and configured.is_dir():
            return configured
        if configured is not None:
            logger.warning(f"MYSQL_DATA_DIR {configured} is not a directory, trying to auto-detect")

        service = self.settings.mysql.service
        try:
            detected = self.controller.inspect_data_mount(service)
        except ServiceControlError as e:
            raise RestoreError(
                f"Cannot inspect {service} for its data directory: {e.message}",
                step="resolve_data_dir",
            ) from e
        if detected is None or not detected.is_dir():
            raise RestoreError(
                "Cannot find MySQL data directory. Please set MYSQL_DATA_DIR",
                step="resolve_data_dir",
            )
        logger.info(f"Using MySQL data directory: {detected}")
        return detected

    def _confirmation_text(self, artifact_path: Path, data_dir: Path) -> str:
        mysql = self.settings.mysql
        return "\n".join(
            [
                "WARNING: This will REPLACE your current MySQL database!",
                f"Service: {mysql.service}",
                f"Database: {mysql.service}:{mysql.port}/{mysql.database}",
                f"Data directory: {data_dir}",
                f"Restore from: {artifact_path.name}",
            ]
        )

    def _ask(self, question: str) -> bool:
        if self.confirm is None:
            raise RestoreError(
                "Confirmation required but no operator is available; pass --yes",
                step="confirm",
            )
        return self.confirm(question)

    def _extract(self, artifact_path: Path, extract_root: Path) -> Path:
        logger.info(f"Extracting {artifact_path.name}")
        try:
            with tarfile.open(artifact_path, "r:gz") as tar:
                tar.extractall(extract_root, filter="data")
        except (OSError, EOFError, tarfile.TarError) as e:
            raise RestoreError(f"Failed to extract backup: {e}", step="extract") from e

        prefix = self.settings.schedule.prefix
        candidates = sorted(
            p for p in extract_root.glob(f"{prefix}-*") if p.is_dir() and not p.is_symlink()
        )
        if not candidates:
            raise RestoreError(
                "Cannot find backup directory in extracted archive", step="extract"
            )
        logger.info(f"Backup extracted to {candidates[0]}")
        return candidates[0]

    def _safety_copy(
        self,
        report: RestoreReport,
        data_dir: Path,
        assume_yes: bool,
        allow_no_safety_copy: bool,
    ) -> Path | None:
        backup_dir = self.settings.paths.backup_dir
        destination = backup_dir / f"{SAFETY_COPY_PREFIX}{self.clock():%Y%m%d-%H%M%S}"
        logger.info(f"Creating safety copy of current data at {destination}")
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copytree(data_dir, destination, symlinks=True)
            return destination
        except (OSError, shutil.Error) as e:
            reason = f"Failed to create safety copy at {destination}: {e}"

        logger.warning(reason)
        if allow_no_safety_copy:
            logger.warning("Continuing without a safety copy (--allow-no-safety-copy)")
        elif not assume_yes and self.confirm is not None and self.confirm(
            f"{reason}\nContinue WITHOUT a copy of the current data?"
        ):
            logger.warning("Operator chose to continue without a safety copy")
        else:
            self._restart_after_abort()
            raise RestoreError(
                f"{reason}. Restore aborted; the current data was not touched",
                step="safety_copy",
            )
        report.warnings.append(reason)
        return None

    @staticmethod
    def _recovery_hint(report: RestoreReport) -> str:
        if report.safety_copy:
            return f"Your original data is backed up at: {report.safety_copy}"
        return "No safety copy of the original data exists"

    def _restart_after_abort(self) -> None:
        service = self.settings.mysql.service
        try:
            self.controller.start(service)
        except ServiceControlError as e:
            logger.error(f"Could not restart {service} after aborting: {e}")

    def _fix_ownership(self, report: RestoreReport, data_dir: Path, step: StepOutcome) -> None:
        owner = self.settings.mysql.data_owner
        try:
            ids = parse_owner(owner)
        except (KeyError, ValueError) as e:
            ids = None
            report.warnings.append(f"Unknown data owner {owner!r}: {e}")
        if ids is None:
            step.status = StepStatus.SKIPPED
            return
        try:
            _chown_tree(data_dir, *ids)
            step.message = f"{ids[0]}:{ids[1]}"
        except OSError as e:
            step.status = StepStatus.WARNING
            step.message = str(e)
            report.warnings.append(f"Failed to change ownership of {data_dir}: {e}")
            logger.warning(f"Failed to change ownership of {data_dir} to {owner}: {e}")

    def _await_ready(self, service: str) -> int | None:
        retries = self.settings.restore.ready_retries
        interval = self.settings.restore.ready_interval_seconds
        logger.info("Waiting for MySQL to be ready")
        for attempt in range(1, retries + 1):
            try:
                if self.controller.is_alive(service):
                    logger.info("MySQL is ready")
                    return attempt
            except ServiceControlError as e:
                logger.debug(f"Readiness check {attempt} failed: {e}")
            if attempt < retries:
                self.sleep(interval)
        return None

    def _count_tables(self, report: RestoreReport, step: StepOutcome) -> None:
        database = self.settings.mysql.database
        try:
            report.table_count = self.controller.count_tables(self.settings.mysql.service, database)
        except ServiceControlError as e:
            step.status = StepStatus.WARNING
            report.warnings.append(f"Could not count tables in {database}: {e.message}")
            logger.warning(f"Could not count tables in {database}: {e}")
            return
        step.message = f"{report.table_count} table(s)"
        if report.table_count == 0:
            step.status = StepStatus.WARNING
            report.warnings.append(f"Database {database} has no tables after restore")
            logger.warning(f"Database {database} has no tables after restore")

    @staticmethod
    def _ensure_dir(path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path
