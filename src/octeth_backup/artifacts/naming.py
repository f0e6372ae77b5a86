"""
Deterministic artifact names and tier-relative locations.

Names have one-second granularity: two runs started within the same
second produce the same name and the later one overwrites the earlier.
"""

from datetime import datetime

from octeth_backup.core.models import ARTIFACT_SUFFIX, CHECKSUM_SUFFIX, Tier

DEFAULT_PREFIX = "octeth-backup"
DEFAULT_DATE_FORMAT = "%Y-%m-%d_%H-%M-%S"


class ArtifactNamer:
    """Derives backup names and storage paths from a timestamp and tier."""

    def __init__(self, prefix: str = DEFAULT_PREFIX, date_format: str = DEFAULT_DATE_FORMAT):
        self.prefix = prefix
        self.date_format = date_format

    def name(self, prefix: str | None, timestamp: datetime) -> str:
        """
        Return `<prefix>-<timestamp>` for a run started at timestamp.

        A None prefix uses the one this namer was built with.
        """
        return f"{prefix or self.prefix}-{timestamp.strftime(self.date_format)}"

    @staticmethod
    def filename(name: str) -> str:
        return f"{name}{ARTIFACT_SUFFIX}"

    @staticmethod
    def checksum_filename(name: str) -> str:
        return f"{name}{ARTIFACT_SUFFIX}{CHECKSUM_SUFFIX}"

    @classmethod
    def path(cls, tier: Tier, name: str) -> str:
        """Return the tier-relative location `<tier>/<name>.tar.gz`."""
        return f"{tier.value}/{cls.filename(name)}"


def parse_name(filename: str) -> str:
    """
    Strip artifact and checksum suffixes from a file or object name.

    >>> parse_name("octeth-backup-2025-03-01_02-00-00.tar.gz.sha256")
    'octeth-backup-2025-03-01_02-00-00'
    """
    base = filename.rsplit("/", 1)[-1]
    if base.endswith(CHECKSUM_SUFFIX):
        base = base[: -len(CHECKSUM_SUFFIX)]
    if base.endswith(ARTIFACT_SUFFIX):
        base = base[: -len(ARTIFACT_SUFFIX)]
    return base


def is_artifact_filename(filename: str) -> bool:
    return filename.endswith(ARTIFACT_SUFFIX)
