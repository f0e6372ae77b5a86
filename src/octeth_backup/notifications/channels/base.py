"""
Base channel class for notification delivery.

All notification channels must inherit from BaseChannel and implement
the deliver() method.
"""

import logging
from abc import ABC, abstractmethod

from octeth_backup.notifications.models import DeliveryResult, Notification

logger = logging.getLogger(__name__)


class BaseChannel(ABC):
    """
    Abstract base class for notification channels.

    All channels must implement:
    - deliver(): Send the notification
    - validate_config(): Check configuration validity
    """

    channel_type: str = "base"

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    @abstractmethod
    def validate_config(self) -> bool:
        """
        Validate channel configuration.

        Returns:
            True if configuration is valid
        """

    @abstractmethod
    def deliver(self, notification: Notification) -> DeliveryResult:
        """
        Deliver a notification through this channel.

        Args:
            notification: Notification to deliver

        Returns:
            DeliveryResult with delivery status
        """

    def is_enabled(self) -> bool:
        """Check if channel is enabled."""
        return self.enabled

    def close(self) -> None:
        """Release any held connection."""

    def _failure(
        self,
        notification: Notification,
        error: str,
        *,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> DeliveryResult:
        self._log_delivery(notification, False, error)
        return DeliveryResult(
            success=False,
            channel=self.channel_type,
            notification_id=notification.notification_id,
            error_message=error,
            status_code=status_code,
            retryable=retryable,
        )

    def _log_delivery(
        self,
        notification: Notification,
        success: bool,
        error: str | None = None,
    ) -> None:
        if success:
            logger.info(f"{self.channel_type} notification delivered: {notification.title}")
        else:
            logger.warning(f"{self.channel_type} notification failed: {error}")
