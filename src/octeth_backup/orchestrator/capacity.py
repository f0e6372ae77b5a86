"""
Disk capacity pre-flight check.

Two independent thresholds: the backup volume must stay under a usage
percentage (and keep a minimum of free space), and the temporary volume
must fit the uncompressed snapshot with a 20% margin plus a fixed 5 GB.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from octeth_backup.core.exceptions import InsufficientCapacityError

logger = logging.getLogger(__name__)

GB = 1024**3
TEMP_SAFETY_FACTOR = 1.2
TEMP_FIXED_GB = 5.0


@dataclass(frozen=True)
class CapacityProbe:
    """Measured disk state before a run."""

    backup_usage_percent: float
    backup_free_gb: float
    temp_free_gb: float
    source_size_gb: float


def required_temp_gb(source_size_gb: float) -> float:
    return source_size_gb * TEMP_SAFETY_FACTOR + TEMP_FIXED_GB


def directory_size(path: Path) -> int:
    """Total size of regular files under path, not following symlinks."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                st = os.lstat(os.path.join(root, name))
            except OSError:
                continue
            total += st.st_size
    return total


def probe_capacity(backup_dir: Path, temp_dir: Path, source_dir: Path) -> CapacityProbe:
    backup_dir.mkdir(parents=True, exist_ok=True)
    temp_dir.mkdir(parents=True, exist_ok=True)
    backup_usage = shutil.disk_usage(backup_dir)
    temp_usage = shutil.disk_usage(temp_dir)
    return CapacityProbe(
        backup_usage_percent=backup_usage.used * 100 / backup_usage.total if backup_usage.total else 100.0,
        backup_free_gb=backup_usage.free / GB,
        temp_free_gb=temp_usage.free / GB,
        source_size_gb=directory_size(source_dir) / GB,
    )


def evaluate_capacity(probe: CapacityProbe, max_usage_percent: float, min_free_gb: float) -> str:
    """
    Check a probe against the thresholds.

    Returns:
        Summary line for the log

    Raises:
        InsufficientCapacityError: On the first threshold that is not met
    """
    if probe.backup_usage_percent > max_usage_percent:
        raise InsufficientCapacityError(
            f"Backup volume is {probe.backup_usage_percent:.0f}% full "
            f"(limit {max_usage_percent:.0f}%)",
            volume="backup",
            required=max_usage_percent,
            available=round(probe.backup_usage_percent, 1),
        )
    if probe.backup_free_gb < min_free_gb:
        raise InsufficientCapacityError(
            f"Backup volume has {probe.backup_free_gb:.1f} GB free, "
            f"{min_free_gb:.1f} GB required",
            volume="backup",
            required=min_free_gb,
            available=round(probe.backup_free_gb, 1),
        )
    needed = required_temp_gb(probe.source_size_gb)
    if probe.temp_free_gb < needed:
        raise InsufficientCapacityError(
            f"Temporary volume has {probe.temp_free_gb:.1f} GB free, {needed:.1f} GB "
            f"required for {probe.source_size_gb:.1f} GB of data",
            volume="temp",
            required=round(needed, 1),
            available=round(probe.temp_free_gb, 1),
        )
    return (
        f"backup volume {probe.backup_usage_percent:.0f}% used, "
        f"{probe.temp_free_gb:.1f} GB free for {needed:.1f} GB needed"
    )
