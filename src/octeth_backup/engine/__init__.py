"""
Adapters for the external collaborators: the hot-backup engine, the
container control plane and the compressor.
"""

from octeth_backup.engine.compression import (
    CompressionResult,
    Compressor,
    compress_directory,
    resolve_compressor,
)
from octeth_backup.engine.docker import DockerServiceController, ServiceController
from octeth_backup.engine.xtrabackup import BackupEngine, ConnectionInfo, XtraBackupEngine

__all__ = [
    "BackupEngine",
    "CompressionResult",
    "Compressor",
    "ConnectionInfo",
    "DockerServiceController",
    "ServiceController",
    "XtraBackupEngine",
    "compress_directory",
    "resolve_compressor",
]
