"""
Octeth Backup Notifications Module.

Fire-and-forget reporting of backup and restore outcomes.

Usage:
    from octeth_backup.notifications import NotificationSink

    sink = NotificationSink.from_settings(settings.notifications)
    sink.backup_failed(report, settings.paths.log_file)
"""

from octeth_backup.notifications.models import (
    DeliveryResult,
    Notification,
    NotificationSeverity,
    NotificationType,
    human_size,
)
from octeth_backup.notifications.sink import NotificationSink

__all__ = [
    "DeliveryResult",
    "Notification",
    "NotificationSeverity",
    "NotificationSink",
    "NotificationType",
    "human_size",
]
