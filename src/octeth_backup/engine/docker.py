"""
Process-control adapter for a MySQL service running in Docker.
"""

import json
import logging
import re
import shlex
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from octeth_backup.core.exceptions import ServiceControlError

logger = logging.getLogger(__name__)

MYSQL_DATA_MOUNT = "/var/lib/mysql"
MYSQL_PORT = 3306

_DATABASE_NAME = re.compile(r"^[A-Za-z0-9_$]+$")


class ServiceController(ABC):
    """Black-box control plane for the database service."""

    @abstractmethod
    def stop(self, service: str) -> None:
        ...

    @abstractmethod
    def start(self, service: str) -> None:
        ...

    @abstractmethod
    def is_alive(self, service: str) -> bool:
        """Run the in-service liveness check."""

    @abstractmethod
    def inspect_data_mount(self, service: str) -> Path | None:
        """Return the host path mounted as the MySQL data directory."""

    @abstractmethod
    def resolve_endpoint(self, service: str) -> tuple[str, int]:
        """Return a (host, port) the backup engine can connect to."""

    @abstractmethod
    def count_tables(self, service: str, database: str) -> int:
        """Count tables in a schema."""


class DockerServiceController(ServiceController):
    """
    Controls a MySQL container through the docker CLI.

    Credentials are passed to in-container clients through MYSQL_PWD so
    they never appear in the process list.
    """

    def __init__(
        self,
        docker_cmd: str = "docker",
        user: str = "root",
        password: str = "",
        timeout_seconds: int = 120,
    ):
        self.docker = shlex.split(docker_cmd)
        self.user = user
        self.password = password
        self.timeout_seconds = timeout_seconds

    def _run(self, *args: str, action: str, service: str) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                [*self.docker, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as e:
            raise ServiceControlError(
                f"{self.docker[0]} not found", service=service, action=action
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ServiceControlError(
                f"docker {action} timed out after {self.timeout_seconds}s",
                service=service,
                action=action,
            ) from e

    def _checked(self, *args: str, action: str, service: str) -> str:
        proc = self._run(*args, action=action, service=service)
        if proc.returncode != 0:
            raise ServiceControlError(
                f"docker {action} failed: {proc.stderr.strip() or proc.stdout.strip()}",
                service=service,
                action=action,
            )
        return proc.stdout

    def _exec_env(self) -> list[str]:
        return ["-e", f"MYSQL_PWD={self.password}"] if self.password else []

    def stop(self, service: str) -> None:
        logger.info(f"Stopping {service}")
        self._checked("stop", service, action="stop", service=service)

    def start(self, service: str) -> None:
        logger.info(f"Starting {service}")
        self._checked("start", service, action="start", service=service)

    def is_alive(self, service: str) -> bool:
        proc = self._run(
            "exec", *self._exec_env(), service,
            "mysqladmin", "ping", "-h", "localhost", "-u", self.user, "--silent",
            action="ping", service=service,
        )
        return proc.returncode == 0

    def inspect_data_mount(self, service: str) -> Path | None:
        output = self._checked(
            "inspect", "--format", "{{json .Mounts}}", service,
            action="inspect", service=service,
        )
        try:
            mounts = json.loads(output or "[]") or []
        except json.JSONDecodeError as e:
            raise ServiceControlError(
                f"Unreadable mount list: {e}", service=service, action="inspect"
            ) from e
        for mount in mounts:
            if mount.get("Destination") == MYSQL_DATA_MOUNT and mount.get("Source"):
                return Path(mount["Source"])
        return None

    def resolve_endpoint(self, service: str) -> tuple[str, int]:
        proc = self._run("port", service, str(MYSQL_PORT), action="port", service=service)
        if proc.returncode == 0:
            for line in proc.stdout.splitlines():
                host, _, port = line.strip().rpartition(":")
                if port.isdigit():
                    host = host.strip("[]")
                    if host in ("0.0.0.0", "::", ""):
                        host = "127.0.0.1"
                    return host, int(port)

        output = self._checked(
            "inspect", "--format",
            "{{range .NetworkSettings.Networks}}{{.IPAddress}} {{end}}", service,
            action="inspect", service=service,
        )
        addresses = output.split()
        if not addresses:
            raise ServiceControlError(
                "Container has neither a published port nor a network address",
                service=service,
                action="resolve",
            )
        return addresses[0], MYSQL_PORT

    def count_tables(self, service: str, database: str) -> int:
        if not _DATABASE_NAME.match(database):
            raise ServiceControlError(
                f"Refusing to query unusual database name {database!r}",
                service=service,
                action="count_tables",
            )
        query = (
            "SELECT COUNT(*) FROM information_schema.tables "
            f"WHERE table_schema='{database}'"
        )
        output = self._checked(
            "exec", *self._exec_env(), service,
            "mysql", "-u", self.user, "-N", "-B", "-e", query,
            action="count_tables", service=service,
        )
        try:
            return int(output.strip().splitlines()[-1])
        except (ValueError, IndexError) as e:
            raise ServiceControlError(
                f"Unexpected table count output: {output!r}",
                service=service,
                action="count_tables",
            ) from e
