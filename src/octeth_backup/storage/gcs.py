"""
Google Cloud Storage backend.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

import requests
from google.api_core.exceptions import (
    Forbidden,
    GoogleAPIError,
    InternalServerError,
    NotFound,
    ServiceUnavailable,
    Unauthorized,
)
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from octeth_backup.storage.base import ObjectStoreBackend, StorageError

logger = logging.getLogger(__name__)

VALID_GCS_STORAGE_CLASSES = frozenset({"STANDARD", "NEARLINE", "COLDLINE", "ARCHIVE"})

_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type(
        (ServiceUnavailable, InternalServerError, requests.exceptions.ConnectionError)
    ),
    reraise=True,
)


class GCSBackend(ObjectStoreBackend):
    """Artifact storage in a Google Cloud Storage bucket."""

    provider = "gcs"
    errors = (GoogleAPIError, GoogleAuthError, requests.exceptions.RequestException)

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        project_id: str | None = None,
        storage_class: str | None = "STANDARD",
        credentials_file: Path | None = None,
        client: Any = None,
    ):
        """
        Initialize GCS backend.

        Args:
            bucket: Bucket name
            prefix: Object prefix under which tier folders live
            project_id: Project owning the bucket
            storage_class: Storage class applied to uploads
            credentials_file: Service account JSON, otherwise default credentials
            client: Pre-built storage client (mainly for tests)
        """
        super().__init__(bucket, prefix)
        self.project_id = project_id
        self.storage_class = storage_class
        self.credentials_file = credentials_file
        self._client = client
        self._bucket = None

    @property
    def label(self) -> str:
        return f"gs://{self.bucket}/{self.prefix}".rstrip("/")

    @property
    def client(self) -> Any:
        """Get or create the storage client."""
        if self._client is None:
            if self.credentials_file:
                self._client = storage.Client.from_service_account_json(
                    str(self.credentials_file), project=self.project_id
                )
            else:
                self._client = storage.Client(project=self.project_id)
        return self._client

    @property
    def bucket_handle(self) -> Any:
        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket)
        return self._bucket

    def _classify_error(self, error: BaseException) -> StorageError:
        if isinstance(error, NotFound):
            return StorageError.NOT_FOUND
        if isinstance(error, (Forbidden, Unauthorized, GoogleAuthError)):
            return StorageError.AUTH_ERROR
        return StorageError.NETWORK_ERROR

    @_transient
    def _iter_objects(self, prefix: str) -> Iterable[tuple[str, int, datetime]]:
        return [
            (blob.name, blob.size or 0, blob.updated)
            for blob in self.client.list_blobs(self.bucket, prefix=prefix)
        ]

    @_transient
    def _upload_file(self, path: Path, key: str) -> None:
        blob = self.bucket_handle.blob(key)
        if self.storage_class:
            blob.storage_class = self.storage_class
        blob.upload_from_filename(str(path))

    @_transient
    def _download_file(self, key: str, path: Path) -> None:
        self.bucket_handle.blob(key).download_to_filename(str(path))

    @_transient
    def _delete_object(self, key: str) -> None:
        self.bucket_handle.blob(key).delete()

    @_transient
    def _object_exists(self, key: str) -> bool:
        return self.bucket_handle.blob(key).exists()

    def check_tool(self) -> str:
        return f"google-cloud-storage {storage.__version__}"

    def check_credentials(self) -> str:
        if self.credentials_file and not self.credentials_file.is_file():
            raise FileNotFoundError(f"credentials file {self.credentials_file} not found")
        return f"project {self.client.project}"

    def check_bucket(self) -> str:
        self.client.get_bucket(self.bucket)
        return f"bucket {self.bucket} reachable"

    def put_test_object(self, name: str, data: bytes) -> str:
        key = self._key("test", name)
        self.bucket_handle.blob(key).upload_from_string(data)
        return key

    def get_test_object(self, name: str) -> bytes:
        return self.bucket_handle.blob(self._key("test", name)).download_as_bytes()

    def delete_test_object(self, name: str) -> str:
        key = self._key("test", name)
        self.bucket_handle.blob(key).delete()
        return key

    def check_storage_class(self) -> str:
        if not self.storage_class:
            return "not applicable"
        if self.storage_class not in VALID_GCS_STORAGE_CLASSES:
            raise ValueError(
                f"invalid storage class {self.storage_class}; expected one of "
                f"{', '.join(sorted(VALID_GCS_STORAGE_CLASSES))}"
            )
        return self.storage_class
