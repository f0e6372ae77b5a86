"""
SHA-256 checksums and `.sha256` sidecars.

A sidecar holds `<hex>  <filename>\n`, the format sha256sum reads with -c.
It is written only after the artifact is complete, through a temporary
file and an atomic rename, so its presence implies a finished write.
"""

import hashlib
import os
from enum import Enum
from pathlib import Path

from octeth_backup.core.models import CHECKSUM_SUFFIX

CHUNK_SIZE = 1024 * 1024


class ChecksumStatus(Enum):
    """Outcome of comparing an artifact against its sidecar."""

    MATCH = "match"
    MISMATCH = "mismatch"
    MISSING = "missing"


def sidecar_path(artifact_path: Path) -> Path:
    return artifact_path.with_name(artifact_path.name + CHECKSUM_SUFFIX)


def compute_sha256(file_path: Path) -> str:
    """Compute SHA256 hash of a file with streaming."""
    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def write_sidecar(artifact_path: Path, digest: str) -> Path:
    """Atomically write the sidecar next to an artifact."""
    target = sidecar_path(artifact_path)
    tmp = target.with_name(f".{target.name}.tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(f"{digest}  {artifact_path.name}\n")
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, target)
    return target


def read_sidecar(path: Path) -> str | None:
    """
    Read the digest from a sidecar file.

    Returns:
        Lower-case hex digest, or None if the sidecar is absent or empty
    """
    if not path.is_file():
        return None
    content = path.read_text(encoding="utf-8").strip()
    if not content:
        return None
    return content.split()[0].lower()


def verify_checksum(artifact_path: Path) -> tuple[ChecksumStatus, str | None, str | None]:
    """
    Compare an artifact with its sidecar.

    Returns:
        (status, expected, actual); expected and actual are None when the
        sidecar is missing
    """
    expected = read_sidecar(sidecar_path(artifact_path))
    if expected is None:
        return ChecksumStatus.MISSING, None, None
    actual = compute_sha256(artifact_path)
    if actual == expected:
        return ChecksumStatus.MATCH, expected, actual
    return ChecksumStatus.MISMATCH, expected, actual
