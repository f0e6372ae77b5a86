"""
Octeth Backup Orchestrator Module.

The backup state machine, its run lock and the capacity pre-flight check.
"""

from octeth_backup.orchestrator.backup import BackupOrchestrator
from octeth_backup.orchestrator.capacity import (
    CapacityProbe,
    evaluate_capacity,
    probe_capacity,
    required_temp_gb,
)
from octeth_backup.orchestrator.lock import RunLock, terminate_on_signal

__all__ = [
    "BackupOrchestrator",
    "CapacityProbe",
    "RunLock",
    "evaluate_capacity",
    "probe_capacity",
    "required_temp_gb",
    "terminate_on_signal",
]
