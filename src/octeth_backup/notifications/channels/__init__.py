"""
Notification channels for Octeth Backup.

Available channels:
- EmailChannel: SMTP email delivery
- WebhookChannel: HTTP webhook delivery
"""

from octeth_backup.notifications.channels.base import BaseChannel
from octeth_backup.notifications.channels.email import EmailChannel, EmailChannelConfig
from octeth_backup.notifications.channels.webhook import WebhookChannel, WebhookChannelConfig

__all__ = [
    "BaseChannel",
    "EmailChannel",
    "EmailChannelConfig",
    "WebhookChannel",
    "WebhookChannelConfig",
]
