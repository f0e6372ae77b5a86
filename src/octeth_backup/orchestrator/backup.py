"""
Backup orchestrator.

Runs one hot backup as a strictly sequential state machine that stops at
the first hard failure:

    acquire lock -> verify engine -> verify connectivity -> verify capacity
    -> classify tier -> snapshot -> make consistent -> compress and checksum
    -> place artifact -> replicate (best effort) -> notify -> release lock

Pre-flight checks run before any engine call. Every exit path removes the
run's temporary directory and releases the lock.
"""

import logging
import shutil
import subprocess
import tempfile
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from octeth_backup.artifacts import ArtifactNamer, TierClassifier, write_sidecar
from octeth_backup.config import Settings
from octeth_backup.core.exceptions import (
    BackupSystemError,
    CompressionError,
    DatabaseUnreachableError,
    EngineError,
    LockError,
    PreflightError,
    format_exception,
)
from octeth_backup.core.models import (
    BackupArtifact,
    BackupReport,
    RunStatus,
    StepOutcome,
    StepStatus,
)
from octeth_backup.core.steps import track_step
from octeth_backup.engine import (
    BackupEngine,
    ConnectionInfo,
    ServiceController,
    compress_directory,
    resolve_compressor,
)
from octeth_backup.notifications import NotificationSink
from octeth_backup.orchestrator.capacity import evaluate_capacity, probe_capacity
from octeth_backup.orchestrator.lock import RunLock, terminate_on_signal
from octeth_backup.storage import LocalBackend, StorageBackend

logger = logging.getLogger(__name__)


class BackupOrchestrator:
    """
    Coordinates the engine, the service controller and storage for one run.

    Usage:
        orchestrator = BackupOrchestrator(settings, engine, controller, local, remote)
        report = orchestrator.run()
    """

    def __init__(
        self,
        settings: Settings,
        engine: BackupEngine,
        controller: ServiceController,
        local: LocalBackend,
        remote: StorageBackend | None = None,
        notifier: NotificationSink | None = None,
        classifier: TierClassifier | None = None,
        namer: ArtifactNamer | None = None,
        clock: Callable[[], datetime] = datetime.now,
        lock: RunLock | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            settings: Immutable run configuration
            engine: Hot-backup engine
            controller: Control plane for the database service
            local: Local backup tree, the primary artifact location
            remote: Optional cloud replica
            notifier: Notification sink (no channels when omitted)
            classifier: Tier classifier (built from settings when omitted)
            namer: Artifact namer (built from settings when omitted)
            clock: Source of the run start time used for tier and name
            lock: Run lock (built from settings when omitted)
        """
        schedule = settings.schedule
        self.settings = settings
        self.engine = engine
        self.controller = controller
        self.local = local
        self.remote = remote
        self.notifier = notifier or NotificationSink()
        self.classifier = classifier or TierClassifier(schedule.monthly_day, schedule.weekly_day)
        self.namer = namer or ArtifactNamer(schedule.prefix, schedule.date_format)
        self.clock = clock
        self.lock = lock or RunLock(settings.paths.lock_file)
        self._started = 0.0

    def run(self) -> BackupReport:
        """
        Execute one backup.

        Returns:
            BackupReport; failures are reported there, not raised
        """
        self._started = time.monotonic()
        report = BackupReport(status=RunStatus.FAILED)

        try:
            with track_step(report.steps, "acquire_lock"):
                self.lock.acquire()
        except LockError as e:
            self._record_failure(report, e)
            report.duration_seconds = self._elapsed()
            self._notify(report)
            return report

        try:
            with terminate_on_signal():
                try:
                    self._execute(report)
                    report.status = RunStatus.SUCCESS
                except (BackupSystemError, OSError) as e:
                    self._record_failure(report, e)
                report.duration_seconds = self._elapsed()
                self._notify(report)
        finally:
            self.lock.release()

        if report.is_success():
            logger.info(
                f"Backup {report.name} ({report.tier.value}) completed "
                f"in {report.duration_seconds:.0f}s"
            )
        return report

    def _execute(self, report: BackupReport) -> None:
        settings = self.settings
        service = settings.mysql.service

        with track_step(report.steps, "verify_engine") as step:
            version = self.engine.check_available()
            compressor = resolve_compressor(settings.compression.tool)
            step.message = f"{version}; compressor {compressor.value}"

        with track_step(report.steps, "verify_connectivity") as step:
            if not self.controller.is_alive(service):
                raise DatabaseUnreachableError(
                    f"MySQL service {service} is not responding", service=service
                )
            source_dir = self._resolve_data_dir()
            step.message = f"{service} alive, data in {source_dir}"

        with track_step(report.steps, "verify_capacity") as step:
            probe = probe_capacity(settings.paths.backup_dir, settings.paths.temp_dir, source_dir)
            step.message = evaluate_capacity(
                probe, settings.capacity.max_disk_usage, settings.capacity.min_free_space_gb
            )
            logger.info(f"Capacity check passed: {step.message}")

        with track_step(report.steps, "classify_tier") as step:
            started_at = self.clock()
            report.tier = self.classifier.classify_and_log(started_at.date())
            report.name = self.namer.name(None, started_at)
            step.message = f"{report.name} ({report.tier.value})"
            logger.info(f"Starting {report.tier.value} backup {report.name}")

        settings.paths.temp_dir.mkdir(parents=True, exist_ok=True)
        work_root = Path(tempfile.mkdtemp(prefix=f"{report.name}.", dir=settings.paths.temp_dir))
        try:
            snapshot_dir = work_root / report.name

            with track_step(report.steps, "snapshot"):
                host, port = self.controller.resolve_endpoint(service)
                connection = ConnectionInfo(
                    host=host,
                    port=port,
                    user=settings.mysql.user,
                    password=settings.mysql.password,
                )
                self._run_engine(
                    "snapshot",
                    lambda timeout: self.engine.snapshot(
                        source_dir,
                        snapshot_dir,
                        connection,
                        settings.engine.parallel_threads,
                        timeout,
                    ),
                )

            with track_step(report.steps, "make_consistent") as step:
                if settings.engine.verify_backup:
                    self._run_engine(
                        "prepare",
                        lambda timeout: self.engine.make_consistent(snapshot_dir, timeout),
                    )
                else:
                    step.status = StepStatus.SKIPPED
                    step.message = "VERIFY_BACKUP is off"
                    logger.warning(
                        "Skipping prepare; the artifact has not been made consistent "
                        "and must be prepared before it can be restored"
                    )

            with track_step(report.steps, "compress_and_checksum") as step:
                destination = self.local.artifact_path(report.tier, report.name)
                compressed = compress_directory(
                    snapshot_dir,
                    destination,
                    compressor,
                    settings.compression.level,
                    settings.engine.parallel_threads,
                )
                try:
                    write_sidecar(compressed.path, compressed.checksum)
                except OSError as e:
                    compressed.path.unlink(missing_ok=True)
                    raise CompressionError(
                        f"Could not write checksum for {compressed.path.name}: {e}"
                    ) from e
                step.message = f"sha256 {compressed.checksum}"
        finally:
            shutil.rmtree(work_root, ignore_errors=True)

        with track_step(report.steps, "place_artifact") as step:
            report.artifact = BackupArtifact(
                name=report.name,
                tier=report.tier,
                path=compressed.path,
                size_bytes=compressed.size_bytes,
                checksum=compressed.checksum,
                created_at=started_at,
            )
            step.message = str(compressed.path)
            logger.info(f"Artifact placed at {compressed.path} ({compressed.size_bytes} bytes)")

        with track_step(report.steps, "replicate") as step:
            self._replicate(report, step)

    def _replicate(self, report: BackupReport, step: StepOutcome) -> None:
        if self.remote is None:
            step.status = StepStatus.SKIPPED
            step.message = "cloud storage disabled"
            return

        result = self.remote.upload(report.artifact.path, report.tier, report.name)
        if result.success:
            report.replicated = True
            step.message = f"{self.remote.label}/{report.tier.value}"
            if not result.sidecar_transferred:
                report.warnings.append(f"Checksum for {report.name} was not uploaded")
            return

        warning = f"Upload to {self.remote.label} failed: {result.error}"
        logger.warning(f"{warning}; the local artifact is kept")
        report.warnings.append(warning)
        step.status = StepStatus.WARNING
        step.message = warning

    def _resolve_data_dir(self) -> Path:
        configured = self.settings.mysql.data_dir
        if configured is not None:
            return configured
        service = self.settings.mysql.service
        detected = self.controller.inspect_data_mount(service)
        if detected is None:
            raise PreflightError(
                f"Cannot detect the MySQL data directory of {service}; set MYSQL_DATA_DIR",
                check="data_dir",
            )
        logger.info(f"Detected MySQL data directory {detected}")
        return detected

    def _run_engine(self, operation: str, call: Callable[[float], int]) -> None:
        """Invoke the engine with what is left of the run's timeout budget."""
        budget = self.settings.engine.timeout_seconds
        remaining = budget - self._elapsed()
        if remaining <= 0:
            raise EngineError(
                f"Backup timeout of {budget}s exhausted before {operation}",
                operation=operation,
            )
        try:
            exit_code = call(remaining)
        except subprocess.TimeoutExpired as e:
            raise EngineError(
                f"xtrabackup {operation} exceeded the backup timeout of {budget}s",
                operation=operation,
            ) from e
        except OSError as e:
            raise EngineError(
                f"xtrabackup {operation} could not be started: {e}", operation=operation
            ) from e
        if exit_code != 0:
            raise EngineError(
                f"xtrabackup {operation} failed",
                operation=operation,
                exit_code=exit_code,
            )

    def _record_failure(self, report: BackupReport, error: Exception) -> None:
        message = format_exception(error)
        logger.error(f"Backup failed: {message}")
        report.errors.append(message)

    def _notify(self, report: BackupReport) -> None:
        if report.is_success():
            provider = self.remote.provider if self.remote and report.replicated else "none"
            self.notifier.backup_succeeded(report, str(report.artifact.path), provider)
        else:
            self.notifier.backup_failed(report, self.settings.paths.log_file)

    def _elapsed(self) -> float:
        return time.monotonic() - self._started
