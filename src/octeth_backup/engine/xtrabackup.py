"""
Hot-backup engine adapter.

The engine is consumed through two operations: snapshot (copy the live
data files and the redo log) and make-consistent (apply the log to the
copy). Timeouts are supplied by the caller; an expired timeout surfaces
as subprocess.TimeoutExpired.
"""

import logging
import os
import shlex
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from octeth_backup.core.exceptions import EngineUnavailableError

logger = logging.getLogger(__name__)

OUTPUT_TAIL_LINES = 20


@dataclass(frozen=True)
class ConnectionInfo:
    """Where and as whom the engine connects to the live server."""

    host: str
    port: int
    user: str = "root"
    password: str = ""


class BackupEngine(ABC):
    """Black-box physical backup engine."""

    @abstractmethod
    def check_available(self) -> str:
        """
        Verify the engine can be run.

        Returns:
            Version string

        Raises:
            EngineUnavailableError: If the engine is missing or broken
        """

    @abstractmethod
    def snapshot(
        self,
        source_data_dir: Path,
        target_dir: Path,
        connection: ConnectionInfo,
        parallelism: int,
        timeout: float | None = None,
    ) -> int:
        """Hot-copy the data directory into target_dir. Returns the exit status."""

    @abstractmethod
    def make_consistent(self, target_dir: Path, timeout: float | None = None) -> int:
        """Apply the captured transaction log. Returns the exit status."""


class XtraBackupEngine(BackupEngine):
    """Percona XtraBackup driven as a subprocess."""

    def __init__(self, binary: str = "xtrabackup", extra_opts: str = ""):
        self.binary = binary
        self.extra_opts = shlex.split(extra_opts) if extra_opts else []

    def check_available(self) -> str:
        path = shutil.which(self.binary)
        if path is None:
            raise EngineUnavailableError(
                f"{self.binary} not found. Install Percona XtraBackup first.",
                binary=self.binary,
            )
        try:
            proc = subprocess.run(
                [path, "--version"], capture_output=True, text=True, timeout=30
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise EngineUnavailableError(
                f"{self.binary} cannot be executed: {e}", binary=self.binary
            ) from e
        # xtrabackup prints its version banner on stderr
        output = (proc.stdout + proc.stderr).strip()
        version = output.splitlines()[-1] if output else "unknown version"
        if proc.returncode != 0:
            raise EngineUnavailableError(
                f"{self.binary} --version exited {proc.returncode}: {version}",
                binary=self.binary,
            )
        return version

    def snapshot(
        self,
        source_data_dir: Path,
        target_dir: Path,
        connection: ConnectionInfo,
        parallelism: int,
        timeout: float | None = None,
    ) -> int:
        command = [
            self.binary,
            "--backup",
            f"--target-dir={target_dir}",
            f"--datadir={source_data_dir}",
            f"--host={connection.host}",
            f"--port={connection.port}",
            f"--user={connection.user}",
            f"--parallel={parallelism}",
            *self.extra_opts,
        ]
        # Passed through the environment so it never shows in the process list
        env = {**os.environ, "MYSQL_PWD": connection.password} if connection.password else None
        return self._run(command, "snapshot", timeout, env)

    def make_consistent(self, target_dir: Path, timeout: float | None = None) -> int:
        return self._run(
            [self.binary, "--prepare", f"--target-dir={target_dir}"], "prepare", timeout
        )

    def _run(
        self,
        command: list[str],
        operation: str,
        timeout: float | None,
        env: dict[str, str] | None = None,
    ) -> int:
        logger.debug(f"Running {shlex.join(command)}")
        proc = subprocess.run(command, capture_output=True, text=True, timeout=timeout, env=env)
        output = (proc.stdout + proc.stderr).strip().splitlines()
        for line in output[-OUTPUT_TAIL_LINES:]:
            logger.debug(f"xtrabackup {operation}: {line}")
        if proc.returncode != 0:
            tail = " | ".join(output[-3:])
            logger.error(f"xtrabackup {operation} exited {proc.returncode}: {tail}")
        return proc.returncode
