"""
Artifact naming, tier classification and checksums.
"""

from octeth_backup.artifacts.checksum import (
    ChecksumStatus,
    compute_sha256,
    read_sidecar,
    sidecar_path,
    verify_checksum,
    write_sidecar,
)
from octeth_backup.artifacts.naming import ArtifactNamer, is_artifact_filename, parse_name
from octeth_backup.artifacts.tiers import TierClassifier, weekday_number

__all__ = [
    "ArtifactNamer",
    "ChecksumStatus",
    "TierClassifier",
    "compute_sha256",
    "is_artifact_filename",
    "parse_name",
    "read_sidecar",
    "sidecar_path",
    "verify_checksum",
    "weekday_number",
    "write_sidecar",
]
