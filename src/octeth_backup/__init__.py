"""
Octeth Backup - Hot MySQL backups with tiered retention.

Drives Percona XtraBackup against a containerised MySQL service, keeps
daily/weekly/monthly artifacts locally and optionally in one cloud object
store, and restores them with a safety copy of the current data.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
