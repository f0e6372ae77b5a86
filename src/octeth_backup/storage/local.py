"""
Local filesystem backend.

Artifacts live at `<root>/<tier>/<name>.tar.gz` next to their sidecars.
The directory tree is the catalog: listing reads file modification times.
"""

import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path

from octeth_backup.artifacts.naming import ArtifactNamer, parse_name
from octeth_backup.core.models import ARTIFACT_SUFFIX, CHECKSUM_SUFFIX, ArtifactRef, Tier
from octeth_backup.storage.base import StorageBackend, StorageError, StorageResult

logger = logging.getLogger(__name__)


class LocalBackend(StorageBackend):
    """Artifact storage on a local or mounted filesystem."""

    provider = "local"

    def __init__(self, root: Path, tier_dirs: dict[Tier, Path] | None = None):
        """
        Initialize local backend.

        Args:
            root: Backup directory
            tier_dirs: Optional per-tier directory overrides
        """
        self.root = root
        self._tier_dirs = dict(tier_dirs or {})

    @property
    def label(self) -> str:
        return str(self.root)

    def tier_dir(self, tier: Tier) -> Path:
        return self._tier_dirs.get(tier, self.root / tier.value)

    def artifact_path(self, tier: Tier, name: str) -> Path:
        return self.tier_dir(tier) / ArtifactNamer.filename(parse_name(name))

    def list(self, tier: Tier) -> list[ArtifactRef]:
        directory = self.tier_dir(tier)
        if not directory.is_dir():
            return []

        refs = []
        for path in directory.glob(f"*{ARTIFACT_SUFFIX}"):
            if not path.is_file():
                continue
            stat = path.stat()
            refs.append(
                ArtifactRef(
                    tier=tier,
                    name=parse_name(path.name),
                    size_bytes=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    location=self.label,
                    key=str(path),
                    has_checksum=path.with_name(path.name + CHECKSUM_SUFFIX).is_file(),
                )
            )
        refs.sort(key=lambda r: (r.modified_at, r.name), reverse=True)
        return refs

    def upload(self, local_path: Path, tier: Tier, name: str) -> StorageResult:
        name = parse_name(name)
        target = self.artifact_path(tier, name)
        sidecar = local_path.with_name(local_path.name + CHECKSUM_SUFFIX)
        target_sidecar = target.with_name(target.name + CHECKSUM_SUFFIX)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if local_path.resolve() != target.resolve():
                tmp = target.with_name(f".{target.name}.partial")
                shutil.copyfile(local_path, tmp)
                os.replace(tmp, target)
        except OSError as e:
            logger.error(f"Copy of {name} into {target.parent} failed: {e}")
            return self._result(
                tier, name, success=False, key=str(target),
                error=str(e), error_type=StorageError.IO_ERROR,
            )

        sidecar_ok = False
        if sidecar.is_file():
            try:
                if sidecar.resolve() != target_sidecar.resolve():
                    shutil.copyfile(sidecar, target_sidecar)
                sidecar_ok = True
            except OSError as e:
                logger.warning(f"Checksum copy for {name} failed: {e}")

        return self._result(tier, name, success=True, key=str(target), sidecar_transferred=sidecar_ok)

    def download(self, tier: Tier, name: str, dest_path: Path) -> StorageResult:
        name = parse_name(name)
        source = self.artifact_path(tier, name)
        if not source.is_file():
            return self._result(
                tier, name, success=False, key=str(source),
                error=f"{source} not found", error_type=StorageError.NOT_FOUND,
            )

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest_path)
        except OSError as e:
            return self._result(
                tier, name, success=False, key=str(source),
                error=str(e), error_type=StorageError.IO_ERROR,
            )

        sidecar_ok = False
        sidecar = source.with_name(source.name + CHECKSUM_SUFFIX)
        if sidecar.is_file():
            try:
                shutil.copyfile(sidecar, dest_path.with_name(dest_path.name + CHECKSUM_SUFFIX))
                sidecar_ok = True
            except OSError as e:
                logger.warning(f"Checksum copy for {name} failed: {e}")

        return self._result(tier, name, success=True, key=str(source), sidecar_transferred=sidecar_ok)

    def delete(self, tier: Tier, name: str) -> StorageResult:
        name = parse_name(name)
        target = self.artifact_path(tier, name)
        try:
            target.unlink()
        except FileNotFoundError:
            return self._result(
                tier, name, success=False, key=str(target),
                error=f"{target} not found", error_type=StorageError.NOT_FOUND,
            )
        except OSError as e:
            return self._result(
                tier, name, success=False, key=str(target),
                error=str(e), error_type=StorageError.IO_ERROR,
            )

        sidecar_ok = False
        try:
            target.with_name(target.name + CHECKSUM_SUFFIX).unlink(missing_ok=True)
            sidecar_ok = True
        except OSError as e:
            logger.warning(f"Checksum delete for {name} failed: {e}")

        return self._result(tier, name, success=True, key=str(target), sidecar_transferred=sidecar_ok)

    def exists(self, tier: Tier, name: str) -> bool:
        return self.artifact_path(tier, name).is_file()

    def check_bucket(self) -> str:
        if not self.root.is_dir():
            raise FileNotFoundError(f"{self.root} does not exist")
        if not os.access(self.root, os.W_OK):
            raise PermissionError(f"{self.root} is not writable")
        return "directory writable"

    def _test_path(self, name: str) -> Path:
        return self.root / "test" / name

    def put_test_object(self, name: str, data: bytes) -> str:
        path = self._test_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return str(path)

    def get_test_object(self, name: str) -> bytes:
        return self._test_path(name).read_bytes()

    def delete_test_object(self, name: str) -> str:
        self._test_path(name).unlink()
        return "removed"
