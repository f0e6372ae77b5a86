"""
S3-compatible backends.

Amazon S3 and Cloudflare R2 share one adapter: R2 is S3 with a custom
endpoint, region "auto" and no storage classes.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from octeth_backup.storage.base import ObjectStoreBackend, StorageError

logger = logging.getLogger(__name__)

VALID_S3_STORAGE_CLASSES = frozenset(
    {
        "STANDARD",
        "REDUCED_REDUNDANCY",
        "STANDARD_IA",
        "ONEZONE_IA",
        "INTELLIGENT_TIERING",
        "GLACIER",
        "DEEP_ARCHIVE",
        "GLACIER_IR",
    }
)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
_AUTH_CODES = {"403", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch", "ExpiredToken"}

_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type(
        (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError)
    ),
    reraise=True,
)


def _error_code(error: BaseException) -> str:
    if isinstance(error, ClientError):
        return str(error.response.get("Error", {}).get("Code", ""))
    return ""


class S3Backend(ObjectStoreBackend):
    """Artifact storage in an Amazon S3 bucket."""

    provider = "s3"
    errors = (BotoCoreError, ClientError, S3UploadFailedError)

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: str | None = "us-east-1",
        storage_class: str | None = "STANDARD",
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
    ):
        """
        Initialize S3 backend.

        Args:
            bucket: Bucket name
            prefix: Key prefix under which tier folders live
            region: Bucket region
            storage_class: Storage class applied to uploads, None for none
            access_key_id: Explicit key, otherwise the default credential chain
            secret_access_key: Explicit secret
            endpoint_url: Custom endpoint for S3-compatible stores
            client: Pre-built client (mainly for tests)
        """
        super().__init__(bucket, prefix)
        self.region = region
        self.storage_class = storage_class
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self.endpoint_url = endpoint_url
        self._client = client

    @property
    def label(self) -> str:
        return f"s3://{self.bucket}/{self.prefix}".rstrip("/")

    @property
    def client(self) -> Any:
        """Get or create the boto3 S3 client."""
        if self._client is None:
            kwargs: dict[str, Any] = {
                "config": Config(
                    signature_version="s3v4",
                    retries={"max_attempts": 3, "mode": "standard"},
                ),
            }
            if self.region:
                kwargs["region_name"] = self.region
            if self.endpoint_url:
                kwargs["endpoint_url"] = self.endpoint_url
            if self._access_key_id and self._secret_access_key:
                kwargs["aws_access_key_id"] = self._access_key_id
                kwargs["aws_secret_access_key"] = self._secret_access_key
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def _classify_error(self, error: BaseException) -> StorageError:
        if isinstance(error, NoCredentialsError):
            return StorageError.AUTH_ERROR
        code = _error_code(error)
        if code in _NOT_FOUND_CODES:
            return StorageError.NOT_FOUND
        if code in _AUTH_CODES:
            return StorageError.AUTH_ERROR
        return StorageError.NETWORK_ERROR

    def _extra_args(self) -> dict[str, str]:
        if self.storage_class:
            return {"StorageClass": self.storage_class}
        return {}

    @_transient
    def _iter_objects(self, prefix: str) -> Iterable[tuple[str, int, datetime]]:
        paginator = self.client.get_paginator("list_objects_v2")
        objects = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                objects.append((obj["Key"], obj["Size"], obj["LastModified"]))
        return objects

    @_transient
    def _upload_file(self, path: Path, key: str) -> None:
        self.client.upload_file(str(path), self.bucket, key, ExtraArgs=self._extra_args())

    @_transient
    def _download_file(self, key: str, path: Path) -> None:
        self.client.download_file(self.bucket, key, str(path))

    @_transient
    def _delete_object(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)

    @_transient
    def _object_exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return False
            raise
        return True

    def check_tool(self) -> str:
        return f"boto3 {boto3.__version__}"

    def check_credentials(self) -> str:
        sts_kwargs: dict[str, Any] = {}
        if self.region:
            sts_kwargs["region_name"] = self.region
        if self._access_key_id and self._secret_access_key:
            sts_kwargs["aws_access_key_id"] = self._access_key_id
            sts_kwargs["aws_secret_access_key"] = self._secret_access_key
        identity = boto3.client("sts", **sts_kwargs).get_caller_identity()
        return f"authenticated as {identity.get('Arn', 'unknown')}"

    def check_bucket(self) -> str:
        self.client.head_bucket(Bucket=self.bucket)
        return f"bucket {self.bucket} reachable"

    def put_test_object(self, name: str, data: bytes) -> str:
        key = self._key("test", name)
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data)
        return key

    def get_test_object(self, name: str) -> bytes:
        response = self.client.get_object(Bucket=self.bucket, Key=self._key("test", name))
        return response["Body"].read()

    def delete_test_object(self, name: str) -> str:
        key = self._key("test", name)
        self.client.delete_object(Bucket=self.bucket, Key=key)
        return key

    def check_storage_class(self) -> str:
        if not self.storage_class:
            return "not applicable"
        if self.storage_class not in VALID_S3_STORAGE_CLASSES:
            raise ValueError(
                f"invalid storage class {self.storage_class}; expected one of "
                f"{', '.join(sorted(VALID_S3_STORAGE_CLASSES))}"
            )
        return self.storage_class


class R2Backend(S3Backend):
    """Artifact storage in a Cloudflare R2 bucket through its S3 API."""

    provider = "r2"

    def __init__(
        self,
        account_id: str,
        bucket: str,
        prefix: str = "",
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client: Any = None,
    ):
        super().__init__(
            bucket,
            prefix,
            region="auto",
            storage_class=None,
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
            client=client,
        )
        self.account_id = account_id

    @property
    def label(self) -> str:
        return f"r2://{self.bucket}/{self.prefix}".rstrip("/")

    def check_credentials(self) -> str:
        if not (self._access_key_id and self._secret_access_key):
            raise ValueError("R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY must be set")
        return "access keys configured"
