"""
Notification data models for Octeth Backup.

Defines the structures passed from the backup and restore flows to the
delivery channels.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class NotificationType(Enum):
    """What the notification reports."""

    SUCCESS = "success"
    FAILURE = "failure"
    WARNING = "warning"


class NotificationSeverity(Enum):
    """Severity levels for notifications."""

    CRITICAL = "critical"
    HIGH = "high"
    INFO = "info"


@dataclass
class DeliveryResult:
    """Result of a notification delivery attempt."""

    success: bool
    channel: str
    notification_id: str
    error_message: str | None = None
    status_code: int | None = None
    delivered_at: str = field(default_factory=lambda: _iso_timestamp())
    retryable: bool = True


class Notification(BaseModel):
    """A notification to be delivered."""

    notification_id: str = Field(
        default_factory=lambda: f"notif-{uuid.uuid4().hex[:16]}",
        description="Unique notification identifier",
    )
    title: str = Field(description="Notification title")
    message: str = Field(description="Notification body/message")
    notification_type: NotificationType = Field(default=NotificationType.SUCCESS)
    severity: NotificationSeverity = Field(default=NotificationSeverity.INFO)

    # Run context, also used as webhook placeholders
    name: str | None = Field(default=None, description="Artifact name")
    tier: str | None = Field(default=None, description="Artifact tier")
    size: str | None = Field(default=None, description="Human-readable artifact size")
    error: str | None = Field(default=None, description="Accumulated error text")

    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(default_factory=lambda: _iso_timestamp())

    @property
    def is_failure(self) -> bool:
        return self.notification_type == NotificationType.FAILURE

    def placeholders(self) -> dict[str, str]:
        """Values substituted into %NAME%-style templates."""
        return {
            "TIMESTAMP": self.created_at,
            "NAME": self.name or "",
            "TIER": self.tier or "",
            "SIZE": self.size or "",
            "ERROR": self.error or "",
        }


def human_size(size_bytes: int | None) -> str:
    """Format a byte count the way `du -h` does."""
    if size_bytes is None:
        return "unknown"
    size = float(size_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}T"


def _iso_timestamp() -> str:
    """Return current ISO8601 timestamp in UTC."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
