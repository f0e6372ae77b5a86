"""
Restore of backup artifacts into the live database service.
"""

from octeth_backup.restore.coordinator import (
    SAFETY_COPY_PREFIX,
    ConfirmCallback,
    RestoreCoordinator,
    parse_owner,
)

__all__ = [
    "SAFETY_COPY_PREFIX",
    "ConfirmCallback",
    "RestoreCoordinator",
    "parse_owner",
]
