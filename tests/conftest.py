"""Pytest configuration and fixtures."""

import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest

from octeth_backup.config import Settings, settings_from_values
from octeth_backup.engine import BackupEngine, ConnectionInfo, ServiceController
from octeth_backup.orchestrator.capacity import CapacityProbe


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_settings(temp_dir: Path) -> Callable[..., Settings]:
    """Build Settings rooted in the temporary directory."""

    def factory(**overrides: str) -> Settings:
        values = {
            "BACKUP_DIR": str(temp_dir / "backups"),
            "TEMP_DIR": str(temp_dir / "tmp"),
            "LOCK_FILE": str(temp_dir / "run" / "octeth-backup.lock"),
            "LOG_FILE": str(temp_dir / "logs" / "backup.log"),
            "MYSQL_DATA_DIR": str(temp_dir / "mysql"),
            "MYSQL_DATA_OWNER": "",
            "COMPRESSION_TOOL": "gzip",
            "PARALLEL_THREADS": "2",
            "READY_RETRIES": "3",
            "READY_INTERVAL": "0",
        }
        values.update(overrides)
        return settings_from_values(values)

    return factory


@pytest.fixture
def settings(make_settings: Callable[..., Settings], data_dir: Path) -> Settings:
    """Default settings with an existing data directory."""
    return make_settings()


@pytest.fixture
def data_dir(temp_dir: Path) -> Path:
    """Provide a live-looking MySQL data directory."""
    directory = temp_dir / "mysql"
    (directory / "oempro").mkdir(parents=True)
    (directory / "ibdata1").write_bytes(b"live-ibdata")
    (directory / "oempro" / "users.ibd").write_bytes(b"live-users")
    return directory


class FakeEngine(BackupEngine):
    """Engine that writes a small snapshot instead of running xtrabackup."""

    def __init__(
        self,
        snapshot_code: int = 0,
        prepare_code: int = 0,
        during_snapshot: Callable[[], None] | None = None,
    ):
        self.snapshot_code = snapshot_code
        self.prepare_code = prepare_code
        self.during_snapshot = during_snapshot
        self.snapshots: list[Path] = []
        self.prepared: list[Path] = []
        self.connections: list[ConnectionInfo] = []
        self.timeouts: dict[str, float | None] = {}

    def check_available(self) -> str:
        return "xtrabackup version 8.0.35 (fake)"

    def snapshot(
        self,
        source_data_dir: Path,
        target_dir: Path,
        connection: ConnectionInfo,
        parallelism: int,
        timeout: float | None = None,
    ) -> int:
        self.snapshots.append(target_dir)
        self.connections.append(connection)
        self.timeouts["snapshot"] = timeout
        (target_dir / "oempro").mkdir(parents=True)
        (target_dir / "ibdata1").write_bytes(b"snapshot-ibdata")
        (target_dir / "oempro" / "users.ibd").write_bytes(b"snapshot-users")
        if self.during_snapshot is not None:
            self.during_snapshot()
        return self.snapshot_code

    def make_consistent(self, target_dir: Path, timeout: float | None = None) -> int:
        self.prepared.append(target_dir)
        self.timeouts["prepare"] = timeout
        return self.prepare_code


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def controller() -> MagicMock:
    """Provide a service controller for a healthy container."""
    mock = MagicMock(spec=ServiceController)
    mock.is_alive.return_value = True
    mock.resolve_endpoint.return_value = ("127.0.0.1", 3306)
    mock.inspect_data_mount.return_value = None
    mock.count_tables.return_value = 42
    return mock


@pytest.fixture
def roomy_probe() -> CapacityProbe:
    return CapacityProbe(
        backup_usage_percent=40.0,
        backup_free_gb=500.0,
        temp_free_gb=500.0,
        source_size_gb=1.0,
    )
