"""
Rank-based artifact retention and age-based log pruning.
"""

from octeth_backup.retention.enforcer import (
    LogPruneResult,
    RetentionDecision,
    RetentionEnforcer,
    RetentionReport,
    collect_stats,
    plan_deletions,
    prune_logs,
)

__all__ = [
    "LogPruneResult",
    "RetentionDecision",
    "RetentionEnforcer",
    "RetentionReport",
    "collect_stats",
    "plan_deletions",
    "prune_logs",
]
