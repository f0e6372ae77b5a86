"""
Webhook notification channel.

POSTs a JSON payload built from an operator-supplied template. The
template may contain %TIMESTAMP%, %NAME%, %TIER%, %SIZE% and %ERROR%
placeholders; substituted values are JSON-escaped so multi-line error
text keeps the payload valid.
"""

import json

import requests
from pydantic import BaseModel
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from octeth_backup.notifications.channels.base import BaseChannel
from octeth_backup.notifications.models import DeliveryResult, Notification

MAX_BACKOFF_SECONDS = 30


class WebhookChannelConfig(BaseModel):
    """Configuration for webhook channel."""

    url: str
    method: str = "POST"
    headers: dict[str, str] = {}
    success_template: str = '{"status": "success", "timestamp": "%TIMESTAMP%"}'
    failure_template: str = '{"status": "failure", "error": "%ERROR%", "timestamp": "%TIMESTAMP%"}'
    verify_ssl: bool = True
    enabled: bool = True
    timeout_seconds: int = 30
    max_retries: int = 3
    retry_backoff_ms: int = 1000


class _ServerError(Exception):
    """A 5xx answer from the receiver, worth another attempt."""

    def __init__(self, response: requests.Response):
        super().__init__(f"HTTP {response.status_code}: {response.text[:200]}")
        self.status_code = response.status_code


def _is_transient(error: BaseException) -> bool:
    # SSLError subclasses ConnectionError but will not heal on retry
    if isinstance(error, requests.exceptions.SSLError):
        return False
    return isinstance(
        error,
        (_ServerError, requests.exceptions.ConnectionError, requests.exceptions.Timeout),
    )


class WebhookChannel(BaseChannel):
    """
    Notification delivery via HTTP webhooks.

    Server errors, timeouts and refused connections are retried with
    exponential backoff; client errors and TLS failures are not.
    """

    channel_type = "webhook"

    def __init__(self, config: WebhookChannelConfig):
        super().__init__(enabled=config.enabled)
        self.webhook_config = config
        self._session: requests.Session | None = None

    def validate_config(self) -> bool:
        """Validate webhook configuration."""
        url = self.webhook_config.url
        if not url or not url.startswith(("http://", "https://")):
            return False
        return self.webhook_config.method in ("POST", "PUT", "PATCH")

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def render_payload(self, notification: Notification) -> str:
        """Fill the template matching the notification type."""
        payload = (
            self.webhook_config.failure_template
            if notification.is_failure
            else self.webhook_config.success_template
        )
        for key, value in notification.placeholders().items():
            payload = payload.replace(f"%{key}%", json.dumps(value)[1:-1])
        return payload

    def _send(self, payload: bytes, headers: dict[str, str]) -> requests.Response:
        config = self.webhook_config
        response = self._get_session().request(
            method=config.method,
            url=config.url,
            data=payload,
            headers=headers,
            verify=config.verify_ssl,
            timeout=config.timeout_seconds,
        )
        if response.status_code >= 500:
            raise _ServerError(response)
        return response

    def deliver(self, notification: Notification) -> DeliveryResult:
        """
        Deliver notification via webhook.

        Returns:
            DeliveryResult; never raises for transport problems
        """
        if not self.validate_config():
            return self._failure(notification, "Invalid webhook configuration")

        config = self.webhook_config
        headers = {"Content-Type": "application/json", **config.headers}
        payload = self.render_payload(notification).encode("utf-8")
        retrying = Retrying(
            stop=stop_after_attempt(max(1, config.max_retries)),
            wait=wait_exponential(
                multiplier=config.retry_backoff_ms / 1000, max=MAX_BACKOFF_SECONDS
            ),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )

        try:
            response = retrying(self._send, payload, headers)
        except _ServerError as e:
            return self._failure(notification, str(e), retryable=True, status_code=e.status_code)
        except requests.exceptions.SSLError as e:
            return self._failure(notification, f"SSL error: {e}")
        except requests.exceptions.Timeout:
            return self._failure(
                notification,
                f"Request timeout after {config.timeout_seconds}s",
                retryable=True,
            )
        except requests.exceptions.ConnectionError as e:
            return self._failure(notification, f"Connection error: {e}", retryable=True)
        except requests.exceptions.RequestException as e:
            return self._failure(notification, f"Request error: {e}")

        if response.status_code >= 400:
            return self._failure(
                notification,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        self._log_delivery(notification, True)
        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            notification_id=notification.notification_id,
            status_code=response.status_code,
        )

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None
