"""Alert notifications with bounded retries.

A notification is created PENDING and delivered straight away when an address
is known. Failures are rescheduled from a fixed delay table until
`max_attempts` is reached; terminal notifications have no `next_retry_at`.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any

from emergency_connect.core.settings import settings
from emergency_connect.db.time import utcnow
from emergency_connect.models import Notification
from emergency_connect.models.notification import (
    CHANNEL_SMS,
    STATUS_FAILED,
    STATUS_SENT,
)
from emergency_connect.repositories.emergency_repo import EmergencyRepository
from emergency_connect.services.sms import SmsChannel, SmsDeliveryError

logger = logging.getLogger(__name__)

RETRY_DELAYS: tuple[int, ...] = (60, 300, 900)
MAX_ATTEMPTS = 3
ERROR_RETRY_SECONDS = 60
NO_ADDRESS_ERROR = "No phone number found for recipient"


def message_text(payload: dict[str, Any]) -> str:
    """Return the text to send for a notification payload."""
    message = payload.get("message")
    if isinstance(message, str):
        return message
    return json.dumps(payload, ensure_ascii=False)


class NotificationDispatcher:
    """Creates notification records and attempts their delivery."""

    def __init__(
        self,
        repository: EmergencyRepository,
        channel: SmsChannel,
        *,
        clock: Callable[[], datetime] = utcnow,
        send_timeout: float | None = None,
        retry_delays: Sequence[int] | None = None,
        max_attempts: int | None = None,
        error_retry_seconds: int | None = None,
    ) -> None:
        self.repository = repository
        self.channel = channel
        self._clock = clock
        self.send_timeout = send_timeout or settings.sms_timeout_seconds
        self.retry_delays = tuple(retry_delays or settings.notification_retry_delays or RETRY_DELAYS)
        self.max_attempts = max_attempts or settings.notification_max_attempts or MAX_ATTEMPTS
        self.error_retry_seconds = (
            error_retry_seconds or settings.notification_error_retry_seconds or ERROR_RETRY_SECONDS
        )

    def retry_delay(self, previous_attempts: int) -> int:
        """Delay before the next attempt, given the attempts made so far."""
        index = min(max(previous_attempts, 0), len(self.retry_delays) - 1)
        return self.retry_delays[index]

    async def deliver(self, address: str, message: str) -> str | None:
        """Send one message; return an error description, or None on success."""
        try:
            result = await asyncio.wait_for(
                self.channel.send(address, message), timeout=self.send_timeout
            )
        except TimeoutError:
            return f"SMS send timed out after {self.send_timeout:.0f}s"
        except SmsDeliveryError as exc:
            return str(exc)
        if result.success:
            return None
        return result.error or "SMS send failed"

    async def create_and_send(
        self,
        recipient_id: str,
        incident_id: str | None,
        channel: str,
        payload: dict[str, Any],
        destination_address: str | None,
    ) -> Notification:
        """Persist a notification and try to deliver it immediately.

        Without a destination address the notification stays PENDING for the
        retry worker. Delivery problems are recorded, never raised.
        """
        now = self._clock()
        notification = self.repository.create_notification(
            recipient_id=recipient_id,
            incident_id=incident_id,
            channel=channel or CHANNEL_SMS,
            payload=payload,
            now=now,
        )
        if destination_address is None:
            return notification

        try:
            error = await self.deliver(destination_address, message_text(payload))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Unexpected error sending notification %s", notification.id, exc_info=True)
            error = str(exc) or type(exc).__name__

        if error is None:
            return self.repository.update_notification(
                notification,
                status=STATUS_SENT,
                sent_at=self._clock(),
                attempts=1,
                next_retry_at=None,
            )

        logger.warning("Notification %s failed on first attempt: %s", notification.id, error)
        return self.repository.update_notification(
            notification,
            status=STATUS_FAILED,
            attempts=1,
            last_error=error,
            next_retry_at=now + timedelta(seconds=self.retry_delay(0)),
        )

    async def retry(self, notification: Notification, destination_address: str | None) -> Notification:
        """Make one more delivery attempt for a due notification."""
        previous = notification.attempts
        attempts = previous + 1
        now = self._clock()

        if destination_address is None:
            logger.warning("No destination for notification %s; giving up", notification.id)
            return self.repository.update_notification(
                notification,
                status=STATUS_FAILED,
                attempts=attempts,
                last_error=NO_ADDRESS_ERROR,
                next_retry_at=None,
            )

        error = await self.deliver(destination_address, message_text(notification.payload))
        if error is None:
            logger.info("Notification %s sent on attempt %d", notification.id, attempts)
            return self.repository.update_notification(
                notification,
                status=STATUS_SENT,
                sent_at=now,
                attempts=attempts,
                next_retry_at=None,
            )

        if attempts >= self.max_attempts:
            logger.warning(
                "Notification %s permanently failed after %d attempts: %s",
                notification.id,
                attempts,
                error,
            )
            return self.repository.update_notification(
                notification,
                status=STATUS_FAILED,
                attempts=attempts,
                last_error=error,
                next_retry_at=None,
            )

        delay = self.retry_delay(previous)
        logger.info("Notification %s failed, retrying in %ds: %s", notification.id, delay, error)
        return self.repository.update_notification(
            notification,
            status=STATUS_FAILED,
            attempts=attempts,
            last_error=error,
            next_retry_at=now + timedelta(seconds=delay),
        )

    def record_error(self, notification: Notification, exc: BaseException) -> Notification:
        """Count an unexpected processing error as an attempt."""
        attempts = notification.attempts + 1
        fields: dict[str, Any] = {
            "attempts": attempts,
            "last_error": str(exc) or type(exc).__name__,
        }
        if attempts >= self.max_attempts:
            fields.update(status=STATUS_FAILED, next_retry_at=None)
        else:
            fields["next_retry_at"] = self._clock() + timedelta(seconds=self.error_retry_seconds)
        return self.repository.update_notification(notification, **fields)
