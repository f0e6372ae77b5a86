"""
Email notification channel.

Sends a plain-text report over SMTP, one message per notification.
"""

import smtplib
from email.message import EmailMessage
from email.utils import formataddr, formatdate

from pydantic import BaseModel

from octeth_backup.notifications.channels.base import BaseChannel
from octeth_backup.notifications.models import DeliveryResult, Notification


class EmailChannelConfig(BaseModel):
    """Configuration for email channel."""

    enabled: bool = True
    timeout_seconds: int = 30

    # SMTP settings
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_use_tls: bool = False
    smtp_username: str | None = None
    smtp_password: str | None = None

    # Email settings
    from_address: str = "octeth-backup@localhost"
    from_name: str = "Octeth Backup"
    to_addresses: list[str] = []
    subject_success: str = "Octeth Backup Success"
    subject_failure: str = "Octeth Backup FAILED"


class EmailChannel(BaseChannel):
    """
    Notification delivery via email.

    Features:
    - SMTP delivery with optional STARTTLS
    - Authentication
    - Separate subjects for success and failure
    """

    channel_type = "email"

    def __init__(self, config: EmailChannelConfig):
        super().__init__(enabled=config.enabled)
        self.email_config = config

    def validate_config(self) -> bool:
        """Validate email configuration."""
        if not self.email_config.smtp_host or not self.email_config.from_address:
            return False
        if not self.email_config.to_addresses:
            return False
        return all("@" in addr for addr in self.email_config.to_addresses)

    def _prepare_message(self, notification: Notification) -> EmailMessage:
        """Prepare email message from notification."""
        config = self.email_config

        msg = EmailMessage()
        msg["To"] = ", ".join(config.to_addresses)
        msg["From"] = formataddr((config.from_name, config.from_address))
        msg["Subject"] = (
            config.subject_failure if notification.is_failure else config.subject_success
        )
        msg["Date"] = formatdate(localtime=True)
        msg["X-Notification-ID"] = notification.notification_id
        msg.set_content(notification.message)
        return msg

    def deliver(self, notification: Notification) -> DeliveryResult:
        """
        Deliver notification via email.

        Args:
            notification: Notification to deliver

        Returns:
            DeliveryResult with delivery status
        """
        if not self.validate_config():
            return self._failure(notification, "Invalid email configuration")

        config = self.email_config
        message = self._prepare_message(notification)

        try:
            with smtplib.SMTP(
                config.smtp_host, config.smtp_port, timeout=config.timeout_seconds
            ) as connection:
                if config.smtp_use_tls:
                    connection.starttls()
                if config.smtp_username and config.smtp_password:
                    connection.login(config.smtp_username, config.smtp_password)
                connection.send_message(message, to_addrs=config.to_addresses)

        except smtplib.SMTPAuthenticationError as e:
            return self._failure(notification, f"SMTP authentication failed: {e}")
        except smtplib.SMTPRecipientsRefused as e:
            return self._failure(notification, f"Recipients refused: {e}")
        except smtplib.SMTPException as e:
            return self._failure(notification, f"SMTP error: {e}", retryable=True)
        except OSError as e:
            return self._failure(notification, f"Connection error: {e}", retryable=True)

        self._log_delivery(notification, True)
        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            notification_id=notification.notification_id,
        )
