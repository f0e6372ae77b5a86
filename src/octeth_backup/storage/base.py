"""
Storage backend interface.

Every location that can hold artifacts (the local backup tree or a cloud
bucket) offers the same five operations scoped by tier, plus a
connectivity self-test used by the diagnostic command only.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from octeth_backup.artifacts.naming import ArtifactNamer, is_artifact_filename, parse_name
from octeth_backup.core.exceptions import ToolMissingError, format_exception
from octeth_backup.core.models import CHECKSUM_SUFFIX, ArtifactRef, Tier

logger = logging.getLogger(__name__)

SELF_TEST_PREFIX = ".octeth-storage-test-"


class StorageError(Enum):
    """Types of storage errors."""

    NOT_FOUND = "not_found"
    IO_ERROR = "io_error"
    NETWORK_ERROR = "network_error"
    AUTH_ERROR = "auth_error"


class StorageResult(BaseModel):
    """Result of an upload, download or delete."""

    success: bool = Field(description="Whether operation succeeded")
    location: str = Field(description="Backend label")
    tier: Tier = Field(description="Tier the operation targeted")
    name: str = Field(description="Artifact name without extension")
    key: str | None = Field(default=None, description="Path or object key touched")
    error: str | None = Field(default=None, description="Error message if failed")
    error_type: StorageError | None = Field(default=None, description="Error category")
    sidecar_transferred: bool = Field(default=False, description="Whether the .sha256 moved too")


class SelfTestStatus(Enum):
    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"


@dataclass
class SelfTestCheck:
    name: str
    status: SelfTestStatus
    message: str = ""


@dataclass
class SelfTestReport:
    """Outcome of a backend connectivity self-test."""

    provider: str
    location: str
    checks: list[SelfTestCheck] = field(default_factory=list)
    tool_missing: bool = False

    @property
    def passed(self) -> bool:
        return not self.tool_missing and all(
            c.status != SelfTestStatus.FAIL for c in self.checks
        )

    @property
    def exit_code(self) -> int:
        """0 pass, 1 test failure, 3 tool missing."""
        if self.tool_missing:
            return 3
        return 0 if self.passed else 1

    def record(self, name: str, ok: bool, message: str = "") -> bool:
        status = SelfTestStatus.PASS if ok else SelfTestStatus.FAIL
        self.checks.append(SelfTestCheck(name, status, message))
        log = logger.info if ok else logger.error
        log(f"[{self.provider}] {name}: {status.value.upper()} {message}".rstrip())
        return ok

    def skip(self, name: str, message: str = "") -> None:
        self.checks.append(SelfTestCheck(name, SelfTestStatus.SKIP, message))

    def run(self, name: str, check: Callable[[], str]) -> bool:
        """Run one check; any error marks it failed."""
        try:
            message = check()
        except Exception as e:
            return self.record(name, False, format_exception(e))
        return self.record(name, True, message)


class StorageBackend(ABC):
    """
    Abstract base class for artifact locations.

    All backends must implement list, upload, download, delete and
    exists, each scoped by tier. Names may be passed with or without
    the `.tar.gz` suffix.
    """

    provider: str = "base"

    @property
    @abstractmethod
    def label(self) -> str:
        """Human-readable location, e.g. a path or s3://bucket/prefix."""

    @abstractmethod
    def list(self, tier: Tier) -> list[ArtifactRef]:
        """
        List artifacts of a tier.

        Returns:
            ArtifactRefs ordered newest first by the store's own
            modification or upload time
        """

    @abstractmethod
    def upload(self, local_path: Path, tier: Tier, name: str) -> StorageResult:
        """Copy a local artifact, and its sidecar if present, into the tier."""

    @abstractmethod
    def download(self, tier: Tier, name: str, dest_path: Path) -> StorageResult:
        """Copy an artifact, and its sidecar if present, to dest_path."""

    @abstractmethod
    def delete(self, tier: Tier, name: str) -> StorageResult:
        """Delete an artifact and then, best effort, its sidecar."""

    @abstractmethod
    def exists(self, tier: Tier, name: str) -> bool:
        """Check if an artifact is present."""

    def self_test(self) -> SelfTestReport:
        """
        Run the connectivity self-test.

        Checks tool presence, credentials, bucket reachability, a
        write/read/delete round-trip and storage-class validity.
        """
        report = SelfTestReport(provider=self.provider, location=self.label)
        try:
            report.record("tool", True, self.check_tool())
        except ToolMissingError as e:
            report.tool_missing = True
            report.record("tool", False, e.message)
            return report

        if not report.run("credentials", self.check_credentials):
            return report
        if not report.run("bucket", self.check_bucket):
            return report

        test_name = f"{SELF_TEST_PREFIX}{datetime.now(timezone.utc):%Y%m%d%H%M%S}.txt"
        payload = f"octeth storage test {test_name}\n".encode()

        if report.run("write", lambda: self.put_test_object(test_name, payload)):

            def read_back() -> str:
                data = self.get_test_object(test_name)
                if data != payload:
                    raise ValueError("content read back differs from content written")
                return f"{len(data)} bytes verified"

            report.run("read", read_back)
            report.run("delete", lambda: self.delete_test_object(test_name))
        else:
            report.skip("read", "write failed")
            report.skip("delete", "write failed")

        report.run("storage_class", self.check_storage_class)
        return report

    def check_tool(self) -> str:
        return "built in"

    def check_credentials(self) -> str:
        return "not required"

    @abstractmethod
    def check_bucket(self) -> str:
        """Verify the storage root is reachable and return a description."""

    @abstractmethod
    def put_test_object(self, name: str, data: bytes) -> str:
        ...

    @abstractmethod
    def get_test_object(self, name: str) -> bytes:
        ...

    @abstractmethod
    def delete_test_object(self, name: str) -> str:
        ...

    def check_storage_class(self) -> str:
        return "not applicable"

    def _result(self, tier: Tier, name: str, **kwargs) -> StorageResult:
        return StorageResult(location=self.label, tier=tier, name=name, **kwargs)


class ObjectStoreBackend(StorageBackend):
    """
    Shared logic for bucket-based backends.

    Objects live at `<prefix>/<tier>/<file>`; self-test objects at
    `<prefix>/test/<file>`. Subclasses provide the raw object primitives
    and the tuple of SDK exceptions they raise.
    """

    errors: tuple[type[BaseException], ...] = (OSError,)

    def __init__(self, bucket: str, prefix: str = ""):
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    def _key(self, *parts: str) -> str:
        return "/".join(p for p in (self.prefix, *parts) if p)

    def artifact_key(self, tier: Tier, name: str) -> str:
        return self._key(ArtifactNamer.path(tier, parse_name(name)))

    @abstractmethod
    def _iter_objects(self, prefix: str) -> Iterable[tuple[str, int, datetime]]:
        """Yield (key, size, modified) for every object under prefix."""

    @abstractmethod
    def _upload_file(self, path: Path, key: str) -> None:
        ...

    @abstractmethod
    def _download_file(self, key: str, path: Path) -> None:
        ...

    @abstractmethod
    def _delete_object(self, key: str) -> None:
        ...

    @abstractmethod
    def _object_exists(self, key: str) -> bool:
        ...

    def _classify_error(self, error: BaseException) -> StorageError:
        return StorageError.NETWORK_ERROR

    def list(self, tier: Tier) -> list[ArtifactRef]:
        tier_prefix = self._key(tier.value) + "/"
        objects = {}
        checksums = set()
        for key, size, modified in self._iter_objects(tier_prefix):
            relative = key[len(tier_prefix):]
            if "/" in relative:
                continue
            if relative.endswith(CHECKSUM_SUFFIX):
                checksums.add(parse_name(relative))
            elif is_artifact_filename(relative):
                objects[parse_name(relative)] = (key, size, modified)

        refs = [
            ArtifactRef(
                tier=tier,
                name=name,
                size_bytes=size,
                modified_at=modified,
                location=self.label,
                key=key,
                has_checksum=name in checksums,
            )
            for name, (key, size, modified) in objects.items()
        ]
        refs.sort(key=lambda r: (r.modified_at, r.name), reverse=True)
        return refs

    def upload(self, local_path: Path, tier: Tier, name: str) -> StorageResult:
        name = parse_name(name)
        key = self.artifact_key(tier, name)
        try:
            self._upload_file(local_path, key)
        except self.errors as e:
            logger.error(f"Upload of {name} to {self.label} failed: {e}")
            return self._result(
                tier, name, success=False, key=key,
                error=str(e), error_type=self._classify_error(e),
            )
        except OSError as e:
            return self._result(
                tier, name, success=False, key=key,
                error=str(e), error_type=StorageError.IO_ERROR,
            )

        sidecar = local_path.with_name(local_path.name + CHECKSUM_SUFFIX)
        sidecar_ok = False
        if sidecar.is_file():
            try:
                self._upload_file(sidecar, key + CHECKSUM_SUFFIX)
                sidecar_ok = True
            except (*self.errors, OSError) as e:
                logger.warning(f"Checksum upload for {name} failed: {e}")

        logger.info(f"Uploaded {name} to {self.label}/{tier.value}")
        return self._result(tier, name, success=True, key=key, sidecar_transferred=sidecar_ok)

    def download(self, tier: Tier, name: str, dest_path: Path) -> StorageResult:
        name = parse_name(name)
        key = self.artifact_key(tier, name)
        try:
            if not self._object_exists(key):
                return self._result(
                    tier, name, success=False, key=key,
                    error=f"{key} not found in {self.label}",
                    error_type=StorageError.NOT_FOUND,
                )
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            self._download_file(key, dest_path)
        except self.errors as e:
            return self._result(
                tier, name, success=False, key=key,
                error=str(e), error_type=self._classify_error(e),
            )

        sidecar_ok = False
        try:
            if self._object_exists(key + CHECKSUM_SUFFIX):
                self._download_file(
                    key + CHECKSUM_SUFFIX,
                    dest_path.with_name(dest_path.name + CHECKSUM_SUFFIX),
                )
                sidecar_ok = True
        except (*self.errors, OSError) as e:
            logger.warning(f"Checksum download for {name} failed: {e}")

        return self._result(tier, name, success=True, key=key, sidecar_transferred=sidecar_ok)

    def delete(self, tier: Tier, name: str) -> StorageResult:
        name = parse_name(name)
        key = self.artifact_key(tier, name)
        try:
            self._delete_object(key)
        except self.errors as e:
            return self._result(
                tier, name, success=False, key=key,
                error=str(e), error_type=self._classify_error(e),
            )

        sidecar_ok = False
        try:
            if self._object_exists(key + CHECKSUM_SUFFIX):
                self._delete_object(key + CHECKSUM_SUFFIX)
                sidecar_ok = True
        except self.errors as e:
            logger.warning(f"Checksum delete for {name} in {self.label} failed: {e}")

        return self._result(tier, name, success=True, key=key, sidecar_transferred=sidecar_ok)

    def exists(self, tier: Tier, name: str) -> bool:
        return self._object_exists(self.artifact_key(tier, name))
