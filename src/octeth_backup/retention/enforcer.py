"""
Retention enforcement.

Artifacts are aged by rank, not by calendar: within each tier of each
location the newest `keep` artifacts survive and the rest are deleted,
oldest first. The decision is a pure function of the listing so a dry run
and a real run always agree on what goes.

Log retention is separate and age-based: operational `*.log` files older
than N days are removed whatever their number.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, Field

from octeth_backup.core.exceptions import format_exception
from octeth_backup.core.models import ArtifactRef, RetentionPolicy, StorageStats, Tier, TierStats
from octeth_backup.storage import StorageBackend

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def plan_deletions(refs: list[ArtifactRef], keep: int) -> list[ArtifactRef]:
    """
    Select the artifacts a keep-count retires.

    Args:
        refs: Artifacts of one tier in one location, newest first
        keep: Number of newest artifacts to keep

    Returns:
        Artifacts at rank >= keep, oldest first
    """
    if keep < 0:
        raise ValueError(f"keep must be >= 0, got {keep}")
    return list(reversed(refs[keep:]))


@dataclass
class RetentionDecision:
    """What retention decided, and did, for one tier in one location."""

    location: str
    tier: Tier
    keep: int
    found: int
    excess: list[ArtifactRef] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def kept(self) -> int:
        return self.found - len(self.excess)


class RetentionReport(BaseModel):
    """Result of a retention pass across all tiers and locations."""

    dry_run: bool = Field(default=False, description="Whether deletions were only planned")
    decisions: list[RetentionDecision] = Field(default_factory=list, description="Per tier and location")
    deleted_count: int = Field(default=0, description="Artifacts deleted (or planned)")
    freed_bytes: int = Field(default=0, description="Bytes freed (or that would be)")
    errors: list[str] = Field(default_factory=list, description="Errors encountered")

    @property
    def success(self) -> bool:
        return not self.errors

    def planned(self) -> list[tuple[str, Tier, str]]:
        """Return (location, tier, name) for every artifact selected for deletion."""
        return [(d.location, d.tier, ref.name) for d in self.decisions for ref in d.excess]


class RetentionEnforcer:
    """
    Applies a RetentionPolicy to every configured location.

    Deletion failures are recorded per artifact and never abort the pass.
    """

    def __init__(
        self,
        backends: list[StorageBackend],
        policy: RetentionPolicy,
        dry_run: bool = False,
    ):
        """
        Initialize enforcer.

        Args:
            backends: Locations to enforce, typically local then cloud
            policy: Per-tier keep-counts
            dry_run: Record decisions without deleting anything
        """
        self.backends = backends
        self.policy = policy
        self.dry_run = dry_run

    def enforce(self) -> RetentionReport:
        report = RetentionReport(dry_run=self.dry_run)
        for tier in Tier:
            keep = self.policy.keep_count(tier)
            for backend in self.backends:
                decision = self._enforce_one(backend, tier, keep)
                report.decisions.append(decision)
                report.errors.extend(decision.errors)
                if self.dry_run:
                    report.deleted_count += len(decision.excess)
                    report.freed_bytes += sum(r.size_bytes for r in decision.excess)
                else:
                    deleted = set(decision.deleted)
                    report.deleted_count += len(deleted)
                    report.freed_bytes += sum(
                        r.size_bytes for r in decision.excess if r.name in deleted
                    )

        verb = "Would delete" if self.dry_run else "Deleted"
        logger.info(
            f"Retention complete: {verb.lower()} {report.deleted_count} artifact(s), "
            f"{len(report.errors)} error(s)"
        )
        return report

    def _enforce_one(self, backend: StorageBackend, tier: Tier, keep: int) -> RetentionDecision:
        try:
            refs = backend.list(tier)
        except Exception as e:
            message = f"Cannot list {tier.value} artifacts in {backend.label}: {format_exception(e)}"
            logger.error(message)
            return RetentionDecision(
                location=backend.label, tier=tier, keep=keep, found=0, errors=[message]
            )

        decision = RetentionDecision(
            location=backend.label,
            tier=tier,
            keep=keep,
            found=len(refs),
            excess=plan_deletions(refs, keep),
        )
        logger.info(
            f"{backend.label} {tier.value}: {decision.found} found, keeping {keep}, "
            f"{len(decision.excess)} to remove"
        )

        for ref in decision.excess:
            if self.dry_run:
                logger.info(f"[dry-run] Would delete {tier.value}/{ref.filename} from {backend.label}")
                continue
            result = backend.delete(tier, ref.name)
            if result.success:
                decision.deleted.append(ref.name)
                logger.info(f"Deleted {tier.value}/{ref.filename} from {backend.label}")
            else:
                message = f"Failed to delete {tier.value}/{ref.filename} from {backend.label}: {result.error}"
                logger.error(message)
                decision.errors.append(message)
        return decision


@dataclass
class LogPruneResult:
    """Result of pruning old operational log files."""

    directory: Path
    removed: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def prune_logs(
    log_dir: Path,
    max_age_days: int,
    dry_run: bool = False,
    now: float | None = None,
) -> LogPruneResult:
    """
    Delete `*.log` files in log_dir older than max_age_days.

    Failures are logged and collected; they never raise.
    """
    result = LogPruneResult(directory=log_dir)
    if not log_dir.is_dir():
        return result

    cutoff = (now if now is not None else time.time()) - max_age_days * SECONDS_PER_DAY
    for path in sorted(log_dir.glob("*.log")):
        try:
            if not path.is_file() or path.stat().st_mtime >= cutoff:
                continue
            if not dry_run:
                path.unlink()
            result.removed.append(path)
            logger.info(f"{'[dry-run] Would remove' if dry_run else 'Removed'} old log {path}")
        except OSError as e:
            logger.warning(f"Could not remove log {path}: {e}")
            result.errors.append(f"{path}: {e}")
    return result


def collect_stats(backend: StorageBackend) -> StorageStats:
    """Count artifacts and bytes per tier in one location."""
    stats = StorageStats(location=backend.label)
    for tier in Tier:
        refs = backend.list(tier)
        stats.tiers.append(
            TierStats(tier=tier, count=len(refs), size_bytes=sum(r.size_bytes for r in refs))
        )
    return stats
