"""
Octeth Backup Storage Module.

One interface, several adapters: the local backup tree and one optional
cloud object store selected by CLOUD_STORAGE_PROVIDER.

Usage:
    from octeth_backup.storage import create_local_backend, create_remote_backend

    local = create_local_backend(settings)
    remote = create_remote_backend(settings)  # None when provider is "none"
"""

from octeth_backup.config import CloudProvider, Settings
from octeth_backup.core.exceptions import ToolMissingError
from octeth_backup.storage.base import (
    ObjectStoreBackend,
    SelfTestReport,
    SelfTestStatus,
    StorageBackend,
    StorageError,
    StorageResult,
)
from octeth_backup.storage.local import LocalBackend

__all__ = [
    "LocalBackend",
    "ObjectStoreBackend",
    "SelfTestReport",
    "SelfTestStatus",
    "StorageBackend",
    "StorageError",
    "StorageResult",
    "create_local_backend",
    "create_remote_backend",
]


def create_local_backend(settings: Settings) -> LocalBackend:
    """Create the backend for the local backup directory."""
    return LocalBackend(settings.paths.backup_dir, settings.paths.tier_dirs)


def create_remote_backend(settings: Settings) -> StorageBackend | None:
    """
    Create the configured cloud backend.

    Returns:
        The backend, or None when cloud storage is disabled

    Raises:
        ToolMissingError: If the provider's SDK is not installed
    """
    cloud = settings.cloud
    match cloud.provider:
        case CloudProvider.NONE:
            return None
        case CloudProvider.S3:
            s3 = _import_adapter("s3", "boto3")
            return s3.S3Backend(
                bucket=cloud.s3.bucket,
                prefix=cloud.s3.prefix,
                region=cloud.s3.region,
                storage_class=cloud.s3.storage_class,
                access_key_id=cloud.s3.access_key_id,
                secret_access_key=cloud.s3.secret_access_key,
            )
        case CloudProvider.R2:
            s3 = _import_adapter("r2", "boto3")
            return s3.R2Backend(
                account_id=cloud.r2.account_id,
                bucket=cloud.r2.bucket,
                prefix=cloud.r2.prefix,
                access_key_id=cloud.r2.access_key_id,
                secret_access_key=cloud.r2.secret_access_key,
            )
        case CloudProvider.GCS:
            gcs = _import_adapter("gcs", "google-cloud-storage")
            return gcs.GCSBackend(
                bucket=cloud.gcs.bucket,
                prefix=cloud.gcs.prefix,
                project_id=cloud.gcs.project_id,
                storage_class=cloud.gcs.storage_class,
                credentials_file=cloud.gcs.credentials_file,
            )


def _import_adapter(provider: str, package: str):
    """Import an adapter module on demand so unused SDKs are never loaded."""
    try:
        if provider == "gcs":
            from octeth_backup.storage import gcs as module
        else:
            from octeth_backup.storage import s3 as module
    except ImportError as e:
        raise ToolMissingError(
            f"{package} is required for the {provider} provider: {e}",
            provider=provider,
            tool=package,
        ) from e
    return module
