"""Tests for storage backends (local, S3, R2, GCS) and the self-test."""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from google.api_core.exceptions import NotFound

from octeth_backup.config import settings_from_values
from octeth_backup.core.exceptions import ToolMissingError
from octeth_backup.core.models import Tier
from octeth_backup.storage import (
    LocalBackend,
    SelfTestStatus,
    StorageError,
    create_local_backend,
    create_remote_backend,
)
from octeth_backup.storage.gcs import GCSBackend
from octeth_backup.storage.s3 import R2Backend, S3Backend

NAME = "octeth-backup-2025-03-01_02-00-00"


def _artifact(directory: Path, name: str = NAME, content: bytes = b"archive") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.tar.gz"
    path.write_bytes(content)
    (directory / f"{name}.tar.gz.sha256").write_text(f"abc  {path.name}\n")
    return path


def _client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


# =============================================================================
# Local backend
# =============================================================================


class TestLocalBackend:
    """Tests for LocalBackend."""

    def test_upload_copies_artifact_and_sidecar(self, temp_dir: Path) -> None:
        """Upload places the artifact and its checksum in the tier directory."""
        source = _artifact(temp_dir / "staging")
        backend = LocalBackend(temp_dir / "backups")

        result = backend.upload(source, Tier.DAILY, NAME)

        target = temp_dir / "backups" / "daily" / f"{NAME}.tar.gz"
        assert result.success
        assert result.sidecar_transferred
        assert target.read_bytes() == b"archive"
        assert target.with_name(target.name + ".sha256").is_file()

    def test_upload_is_idempotent(self, temp_dir: Path) -> None:
        """Uploading the same artifact twice leaves one copy."""
        source = _artifact(temp_dir / "staging")
        backend = LocalBackend(temp_dir / "backups")

        backend.upload(source, Tier.DAILY, NAME)
        backend.upload(source, Tier.DAILY, f"{NAME}.tar.gz")

        assert [r.name for r in backend.list(Tier.DAILY)] == [NAME]

    def test_upload_in_place(self, temp_dir: Path) -> None:
        """An artifact already at its destination is accepted as is."""
        backend = LocalBackend(temp_dir / "backups")
        path = _artifact(backend.tier_dir(Tier.WEEKLY))
        assert backend.upload(path, Tier.WEEKLY, NAME).success
        assert path.read_bytes() == b"archive"

    def test_list_newest_first(self, temp_dir: Path) -> None:
        """Listing orders by modification time, newest first."""
        backend = LocalBackend(temp_dir / "backups")
        directory = backend.tier_dir(Tier.DAILY)
        base = datetime(2025, 3, 1, tzinfo=timezone.utc).timestamp()
        for i in range(3):
            path = _artifact(directory, f"octeth-backup-2025-03-0{i + 1}_02-00-00")
            os.utime(path, (base + i * 86400, base + i * 86400))
        (directory / "notes.txt").write_text("ignored")

        refs = backend.list(Tier.DAILY)

        assert [r.name for r in refs] == [
            "octeth-backup-2025-03-03_02-00-00",
            "octeth-backup-2025-03-02_02-00-00",
            "octeth-backup-2025-03-01_02-00-00",
        ]
        assert all(r.has_checksum for r in refs)

    def test_list_missing_tier_is_empty(self, temp_dir: Path) -> None:
        """A tier directory that does not exist lists nothing."""
        assert LocalBackend(temp_dir / "backups").list(Tier.MONTHLY) == []

    def test_tier_dir_override(self, temp_dir: Path) -> None:
        """Per-tier directories can live elsewhere."""
        backend = LocalBackend(temp_dir / "backups", {Tier.MONTHLY: temp_dir / "archive"})
        assert backend.artifact_path(Tier.MONTHLY, NAME) == temp_dir / "archive" / f"{NAME}.tar.gz"
        assert backend.tier_dir(Tier.DAILY) == temp_dir / "backups" / "daily"

    def test_download(self, temp_dir: Path) -> None:
        """Download copies the artifact and sidecar to the destination."""
        backend = LocalBackend(temp_dir / "backups")
        _artifact(backend.tier_dir(Tier.DAILY))
        dest = temp_dir / "restore" / f"{NAME}.tar.gz"

        result = backend.download(Tier.DAILY, NAME, dest)

        assert result.success
        assert dest.read_bytes() == b"archive"
        assert dest.with_name(dest.name + ".sha256").is_file()

    def test_download_missing(self, temp_dir: Path) -> None:
        """Downloading an absent artifact reports NOT_FOUND."""
        result = LocalBackend(temp_dir / "backups").download(Tier.DAILY, NAME, temp_dir / "x")
        assert not result.success
        assert result.error_type == StorageError.NOT_FOUND

    def test_delete_removes_sidecar(self, temp_dir: Path) -> None:
        """Delete removes the artifact and its checksum."""
        backend = LocalBackend(temp_dir / "backups")
        path = _artifact(backend.tier_dir(Tier.DAILY))

        result = backend.delete(Tier.DAILY, NAME)

        assert result.success
        assert not path.exists()
        assert not path.with_name(path.name + ".sha256").exists()
        assert not backend.exists(Tier.DAILY, NAME)

    def test_delete_missing(self, temp_dir: Path) -> None:
        """Deleting an absent artifact reports NOT_FOUND."""
        result = LocalBackend(temp_dir / "backups").delete(Tier.DAILY, NAME)
        assert result.error_type == StorageError.NOT_FOUND

    def test_self_test_passes(self, temp_dir: Path) -> None:
        """A writable directory passes every check and leaves nothing behind."""
        root = temp_dir / "backups"
        root.mkdir()
        report = LocalBackend(root).self_test()

        assert report.passed
        assert report.exit_code == 0
        assert [c.name for c in report.checks] == [
            "tool", "credentials", "bucket", "write", "read", "delete", "storage_class",
        ]
        assert list((root / "test").iterdir()) == []

    def test_self_test_missing_root(self, temp_dir: Path) -> None:
        """A missing directory fails the reachability check."""
        report = LocalBackend(temp_dir / "nope").self_test()
        assert not report.passed
        assert report.exit_code == 1
        assert report.checks[-1].name == "bucket"
        assert report.checks[-1].status == SelfTestStatus.FAIL

    def test_self_test_tool_missing(self, temp_dir: Path) -> None:
        """A missing tool exits 3 and stops the test."""
        backend = LocalBackend(temp_dir)
        with patch.object(
            LocalBackend, "check_tool", side_effect=ToolMissingError("boto3 missing", tool="boto3")
        ):
            report = backend.self_test()
        assert report.tool_missing
        assert report.exit_code == 3
        assert len(report.checks) == 1


# =============================================================================
# S3 and R2
# =============================================================================


class TestS3Backend:
    """Tests for S3Backend with a mocked boto3 client."""

    def _backend(self, client: MagicMock, **kwargs) -> S3Backend:
        return S3Backend("bucket", "mysql-backups", client=client, **kwargs)

    def test_artifact_key(self) -> None:
        """Keys are <prefix>/<tier>/<name>.tar.gz."""
        backend = self._backend(MagicMock())
        assert backend.artifact_key(Tier.WEEKLY, NAME) == f"mysql-backups/weekly/{NAME}.tar.gz"
        assert backend.label == "s3://bucket/mysql-backups"

    def test_list_pairs_checksums_and_sorts(self) -> None:
        """Listing skips sidecars, marks checksums and orders newest first."""
        client = MagicMock()
        older = datetime(2025, 3, 1, tzinfo=timezone.utc)
        newer = older + timedelta(days=1)
        client.get_paginator.return_value.paginate.return_value = [
            {
                "Contents": [
                    {"Key": "mysql-backups/daily/a.tar.gz", "Size": 10, "LastModified": older},
                    {"Key": "mysql-backups/daily/a.tar.gz.sha256", "Size": 1, "LastModified": older},
                    {"Key": "mysql-backups/daily/b.tar.gz", "Size": 20, "LastModified": newer},
                    {"Key": "mysql-backups/daily/nested/c.tar.gz", "Size": 5, "LastModified": newer},
                ]
            }
        ]

        refs = self._backend(client).list(Tier.DAILY)

        assert [r.name for r in refs] == ["b", "a"]
        assert refs[1].has_checksum and not refs[0].has_checksum
        client.get_paginator.return_value.paginate.assert_called_once_with(
            Bucket="bucket", Prefix="mysql-backups/daily/"
        )

    def test_upload_sets_storage_class(self, temp_dir: Path) -> None:
        """Uploads carry the configured storage class and the sidecar."""
        client = MagicMock()
        source = _artifact(temp_dir)

        result = self._backend(client, storage_class="STANDARD_IA").upload(source, Tier.DAILY, NAME)

        assert result.success and result.sidecar_transferred
        key = f"mysql-backups/daily/{NAME}.tar.gz"
        client.upload_file.assert_any_call(
            str(source), "bucket", key, ExtraArgs={"StorageClass": "STANDARD_IA"}
        )
        assert client.upload_file.call_count == 2

    def test_upload_access_denied(self, temp_dir: Path) -> None:
        """Authorization failures are classified, not raised."""
        client = MagicMock()
        client.upload_file.side_effect = _client_error("AccessDenied", "PutObject")

        result = self._backend(client).upload(_artifact(temp_dir), Tier.DAILY, NAME)

        assert not result.success
        assert result.error_type == StorageError.AUTH_ERROR

    def test_download_missing_object(self, temp_dir: Path) -> None:
        """A missing key reports NOT_FOUND without downloading."""
        client = MagicMock()
        client.head_object.side_effect = _client_error("404")

        result = self._backend(client).download(Tier.DAILY, NAME, temp_dir / "x.tar.gz")

        assert result.error_type == StorageError.NOT_FOUND
        client.download_file.assert_not_called()

    def test_delete_removes_sidecar(self) -> None:
        """Delete removes the object and then its checksum."""
        client = MagicMock()
        result = self._backend(client).delete(Tier.MONTHLY, NAME)

        assert result.success and result.sidecar_transferred
        key = f"mysql-backups/monthly/{NAME}.tar.gz"
        client.delete_object.assert_any_call(Bucket="bucket", Key=key)
        client.delete_object.assert_any_call(Bucket="bucket", Key=f"{key}.sha256")

    def test_storage_class_validation(self) -> None:
        """Unknown storage classes fail the self-test check."""
        assert self._backend(MagicMock(), storage_class="GLACIER").check_storage_class() == "GLACIER"
        with pytest.raises(ValueError):
            self._backend(MagicMock(), storage_class="COLD").check_storage_class()

    def test_self_test_round_trip(self) -> None:
        """Self-test writes, reads back and deletes a test object."""
        objects: dict[str, bytes] = {}
        client = MagicMock()
        client.put_object.side_effect = lambda Bucket, Key, Body: objects.__setitem__(Key, Body)
        client.get_object.side_effect = lambda Bucket, Key: {
            "Body": MagicMock(read=MagicMock(return_value=objects[Key]))
        }
        client.delete_object.side_effect = lambda Bucket, Key: objects.pop(Key)

        with patch("octeth_backup.storage.s3.boto3.client") as sts_factory:
            sts_factory.return_value.get_caller_identity.return_value = {"Arn": "arn:aws:iam::1:user/ci"}
            report = self._backend(client).self_test()

        assert report.passed, report.checks
        assert objects == {}
        assert client.put_object.call_args.kwargs["Key"].startswith("mysql-backups/test/")


class TestR2Backend:
    """Tests for R2Backend."""

    def test_endpoint_and_label(self) -> None:
        """R2 uses the account endpoint and no storage class."""
        backend = R2Backend("acct123", "bucket", "mysql-backups", client=MagicMock())
        assert backend.endpoint_url == "https://acct123.r2.cloudflarestorage.com"
        assert backend.region == "auto"
        assert backend.storage_class is None
        assert backend.label == "r2://bucket/mysql-backups"
        assert backend.check_storage_class() == "not applicable"

    def test_credentials_required(self) -> None:
        """R2 has no default credential chain."""
        backend = R2Backend("acct123", "bucket", client=MagicMock())
        with pytest.raises(ValueError):
            backend.check_credentials()


# =============================================================================
# GCS
# =============================================================================


class _FakeBlob:
    def __init__(self, name: str, store: dict[str, bytes]):
        self.name = name
        self.store = store
        self.storage_class = None

    def upload_from_filename(self, filename: str) -> None:
        self.store[self.name] = Path(filename).read_bytes()

    def upload_from_string(self, data: bytes) -> None:
        self.store[self.name] = data

    def download_to_filename(self, filename: str) -> None:
        Path(filename).write_bytes(self.store[self.name])

    def download_as_bytes(self) -> bytes:
        return self.store[self.name]

    def delete(self) -> None:
        if self.name not in self.store:
            raise NotFound(self.name)
        del self.store[self.name]

    def exists(self) -> bool:
        return self.name in self.store


class _FakeBucket:
    def __init__(self, store: dict[str, bytes]):
        self.store = store
        self.blobs: list[_FakeBlob] = []

    def blob(self, name: str) -> _FakeBlob:
        blob = _FakeBlob(name, self.store)
        self.blobs.append(blob)
        return blob


class TestGCSBackend:
    """Tests for GCSBackend with an in-memory bucket."""

    @pytest.fixture
    def store(self) -> dict[str, bytes]:
        return {}

    @pytest.fixture
    def client(self, store: dict[str, bytes]) -> MagicMock:
        client = MagicMock()
        client.project = "octeth-prod"
        client.bucket.return_value = _FakeBucket(store)
        return client

    def test_upload_and_download(self, temp_dir: Path, store: dict[str, bytes], client: MagicMock) -> None:
        """Objects round-trip with their sidecar."""
        backend = GCSBackend("bucket", "mysql-backups", storage_class="NEARLINE", client=client)
        source = _artifact(temp_dir / "src")

        upload = backend.upload(source, Tier.WEEKLY, NAME)
        assert upload.success and upload.sidecar_transferred
        key = f"mysql-backups/weekly/{NAME}.tar.gz"
        assert set(store) == {key, f"{key}.sha256"}
        assert client.bucket.return_value.blobs[0].storage_class == "NEARLINE"

        dest = temp_dir / "dl" / f"{NAME}.tar.gz"
        download = backend.download(Tier.WEEKLY, NAME, dest)
        assert download.success and download.sidecar_transferred
        assert dest.read_bytes() == b"archive"

    def test_download_missing(self, temp_dir: Path, client: MagicMock) -> None:
        """A missing blob reports NOT_FOUND."""
        result = GCSBackend("bucket", client=client).download(Tier.DAILY, NAME, temp_dir / "x")
        assert result.error_type == StorageError.NOT_FOUND

    def test_delete_missing_is_classified(self, client: MagicMock) -> None:
        """NotFound from the SDK maps to NOT_FOUND."""
        result = GCSBackend("bucket", client=client).delete(Tier.DAILY, NAME)
        assert not result.success
        assert result.error_type == StorageError.NOT_FOUND

    def test_list(self, client: MagicMock) -> None:
        """Listing reads blob names, sizes and update times."""
        updated = datetime(2025, 3, 1, tzinfo=timezone.utc)
        artifact = MagicMock(size=10, updated=updated)
        artifact.name = f"p/daily/{NAME}.tar.gz"
        sidecar = MagicMock(size=1, updated=updated)
        sidecar.name = f"p/daily/{NAME}.tar.gz.sha256"
        client.list_blobs.return_value = [artifact, sidecar]

        refs = GCSBackend("bucket", "p", client=client).list(Tier.DAILY)

        assert len(refs) == 1
        assert refs[0].name == NAME
        assert refs[0].has_checksum
        client.list_blobs.assert_called_once_with("bucket", prefix="p/daily/")

    def test_self_test(self, store: dict[str, bytes], client: MagicMock) -> None:
        """Self-test passes against a reachable bucket."""
        report = GCSBackend("bucket", "p", client=client).self_test()
        assert report.passed, report.checks
        assert store == {}

    def test_invalid_storage_class(self, client: MagicMock) -> None:
        """An unknown storage class fails only that check."""
        report = GCSBackend("bucket", "p", storage_class="FROZEN", client=client).self_test()
        assert not report.passed
        failed = [c.name for c in report.checks if c.status == SelfTestStatus.FAIL]
        assert failed == ["storage_class"]


# =============================================================================
# Factory
# =============================================================================


class TestFactory:
    """Tests for backend construction from settings."""

    def test_none_provider(self, temp_dir: Path) -> None:
        """Cloud storage disabled yields no remote backend."""
        settings = settings_from_values({"BACKUP_DIR": str(temp_dir)})
        assert create_remote_backend(settings) is None
        assert create_local_backend(settings).root == temp_dir

    def test_s3_provider(self) -> None:
        """S3 settings flow into the adapter."""
        settings = settings_from_values(
            {"CLOUD_STORAGE_PROVIDER": "s3", "S3_BUCKET": "b", "S3_STORAGE_CLASS": "GLACIER"}
        )
        backend = create_remote_backend(settings)
        assert isinstance(backend, S3Backend)
        assert backend.storage_class == "GLACIER"

    def test_r2_provider(self) -> None:
        """R2 settings build an R2 adapter."""
        settings = settings_from_values(
            {"CLOUD_STORAGE_PROVIDER": "r2", "R2_ACCOUNT_ID": "acct", "R2_BUCKET": "b"}
        )
        backend = create_remote_backend(settings)
        assert isinstance(backend, R2Backend)
        assert backend.provider == "r2"
        assert backend.endpoint_url == "https://acct.r2.cloudflarestorage.com"

    def test_gcs_provider(self) -> None:
        """GCS settings build a GCS adapter without contacting Google."""
        settings = settings_from_values({"CLOUD_STORAGE_PROVIDER": "gcs", "GCS_BUCKET": "b"})
        backend = create_remote_backend(settings)
        assert isinstance(backend, GCSBackend)
        assert backend.label == "gs://b/mysql-backups"
