"""
Notification sink.

Fire-and-forget fan-out of run outcomes to the enabled channels. Delivery
problems are logged and returned, never raised: a failed notification
must not change the outcome of the run it reports on.
"""

import logging
from pathlib import Path

from octeth_backup.config import NotificationSettings
from octeth_backup.core.models import BackupReport, RestoreReport
from octeth_backup.notifications.channels import (
    BaseChannel,
    EmailChannel,
    EmailChannelConfig,
    WebhookChannel,
    WebhookChannelConfig,
)
from octeth_backup.notifications.models import (
    DeliveryResult,
    Notification,
    NotificationSeverity,
    NotificationType,
    human_size,
)

logger = logging.getLogger(__name__)


class NotificationSink:
    """Delivers success and failure reports to email and webhook channels."""

    def __init__(self, channels: list[BaseChannel] | None = None, failure_only: bool = False):
        """
        Initialize sink.

        Args:
            channels: Delivery channels
            failure_only: Suppress success notifications
        """
        self.channels = channels or []
        self.failure_only = failure_only

    @classmethod
    def from_settings(cls, settings: NotificationSettings) -> "NotificationSink":
        channels: list[BaseChannel] = []
        if settings.email_enabled:
            channels.append(
                EmailChannel(
                    EmailChannelConfig(
                        smtp_host=settings.smtp_host,
                        smtp_port=settings.smtp_port,
                        smtp_use_tls=settings.smtp_use_tls,
                        smtp_username=settings.smtp_username,
                        smtp_password=settings.smtp_password,
                        from_address=settings.email_from,
                        to_addresses=settings.email_to,
                        subject_success=settings.subject_success,
                        subject_failure=settings.subject_failure,
                    )
                )
            )
        if settings.webhook_enabled:
            channels.append(
                WebhookChannel(
                    WebhookChannelConfig(
                        url=settings.webhook_url,
                        success_template=settings.payload_success,
                        failure_template=settings.payload_failure,
                    )
                )
            )
        return cls(channels, failure_only=settings.failure_only)

    def send(self, notification: Notification) -> list[DeliveryResult]:
        """
        Deliver a notification to every enabled channel.

        Returns:
            One DeliveryResult per attempted channel; empty when suppressed
        """
        if self.failure_only and not notification.is_failure:
            logger.info("Skipping success notification (failure-only mode)")
            return []

        results = []
        for channel in self.channels:
            if not channel.is_enabled():
                continue
            try:
                results.append(channel.deliver(notification))
            except Exception as e:
                logger.warning(f"{channel.channel_type} channel raised during delivery: {e}")
                results.append(
                    DeliveryResult(
                        success=False,
                        channel=channel.channel_type,
                        notification_id=notification.notification_id,
                        error_message=str(e),
                        retryable=False,
                    )
                )
        return results

    def backup_succeeded(
        self, report: BackupReport, location: str, provider: str
    ) -> list[DeliveryResult]:
        size = human_size(report.artifact.size_bytes if report.artifact else None)
        tier = report.tier.value if report.tier else "unknown"
        lines = [
            "Octeth MySQL backup completed successfully",
            "",
            "Backup Details:",
            f"- Name: {report.name}",
            f"- Type: {tier}",
            f"- Size: {size}",
            f"- Duration: {report.duration_seconds:.0f}s",
            f"- Location: {location}",
            f"- Cloud Storage: {provider}",
        ]
        if report.warnings:
            lines += ["", "Warnings:", *(f"- {w}" for w in report.warnings)]
        return self.send(
            Notification(
                title="Backup succeeded",
                message="\n".join(lines) + "\n",
                notification_type=NotificationType.SUCCESS,
                severity=NotificationSeverity.HIGH if report.warnings else NotificationSeverity.INFO,
                name=report.name,
                tier=tier,
                size=size,
            )
        )

    def backup_failed(self, report: BackupReport, log_file: Path | None) -> list[DeliveryResult]:
        tier = report.tier.value if report.tier else "unknown"
        errors = "; ".join(report.errors) or "unknown error"
        message = "\n".join(
            [
                "Octeth MySQL backup FAILED",
                "",
                "Error Details:",
                f"- Name: {report.name or 'not generated'}",
                f"- Type: {tier}",
                f"- Duration: {report.duration_seconds:.0f}s",
                f"- Errors: {errors}",
                "",
                f"Please check the log file: {log_file or 'not configured'}",
            ]
        )
        return self.send(
            Notification(
                title="Backup failed",
                message=message + "\n",
                notification_type=NotificationType.FAILURE,
                severity=NotificationSeverity.CRITICAL,
                name=report.name,
                tier=tier,
                error=errors,
            )
        )

    def restore_finished(self, report: RestoreReport) -> list[DeliveryResult]:
        lines = [
            "Octeth MySQL restore completed",
            "",
            f"- Artifact: {report.artifact}",
            f"- Data directory: {report.data_dir}",
            f"- Safety copy: {report.safety_copy or 'none'}",
            f"- Tables: {report.table_count if report.table_count is not None else 'unknown'}",
        ]
        if report.warnings:
            lines += ["", "Warnings:", *(f"- {w}" for w in report.warnings)]
        return self.send(
            Notification(
                title="Restore completed",
                message="\n".join(lines) + "\n",
                notification_type=NotificationType.SUCCESS,
                name=report.artifact,
            )
        )

    def restore_failed(self, artifact: str, error: str) -> list[DeliveryResult]:
        return self.send(
            Notification(
                title="Restore failed",
                message=f"Octeth MySQL restore FAILED\n\n- Artifact: {artifact}\n- Error: {error}\n",
                notification_type=NotificationType.FAILURE,
                severity=NotificationSeverity.CRITICAL,
                name=artifact,
                error=error,
            )
        )

    def close(self) -> None:
        for channel in self.channels:
            channel.close()
