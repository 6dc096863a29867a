"""Background delivery of notifications that are pending or due for a retry.

The RetryWorker polls the notification table on a fixed interval. Each cycle
runs to completion before the next sleep, so cycles never overlap. A failure
while handling one notification is recorded on that notification and the
rest of the batch is still processed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from emergency_connect.core.security import FieldCipher, get_field_cipher
from emergency_connect.core.settings import settings
from emergency_connect.db.session import SessionLocal
from emergency_connect.db.time import utcnow
from emergency_connect.models import Notification
from emergency_connect.repositories.emergency_repo import SqlAlchemyEmergencyRepository
from emergency_connect.services.notifications import NotificationDispatcher
from emergency_connect.services.sms import SmsChannel, get_sms_channel

logger = logging.getLogger(__name__)


class RetryWorker:
    """Periodically retries notification delivery."""

    def __init__(
        self,
        channel: SmsChannel | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        cipher: FieldCipher | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the worker.

        Args:
            channel: SMS channel to deliver through. Defaults to the configured one.
            session_factory: Callable returning a new database session per cycle.
            cipher: Cipher used to decrypt contact phone numbers.
            clock: Source of the current UTC time.
        """
        self.channel = channel or get_sms_channel()
        self._session_factory = session_factory
        self._cipher = cipher
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def cipher(self) -> FieldCipher:
        if self._cipher is None:
            self._cipher = get_field_cipher()
        return self._cipher

    async def start(self) -> None:
        """Start the background polling loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the polling loop after the current cycle."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def run_forever(self) -> None:
        """Poll until `stop` is called; used by the standalone worker."""
        self._stopping.clear()
        await self._run()

    async def _run(self) -> None:
        interval = max(0.1, float(settings.notification_poll_interval_seconds))
        logger.info(
            "Notification worker started (interval %.1fs, max attempts %d)",
            interval,
            settings.notification_max_attempts,
        )

        while not self._stopping.is_set():
            try:
                await self.process_batch()
            except SQLAlchemyError as e:
                logger.error("Notification worker database error: %s", e, exc_info=True)
            except (OSError, ConnectionError) as e:
                logger.warning("Notification worker encountered network error: %s", e)
            except Exception:  # noqa: BLE001
                logger.error("Notification worker polling failed", exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                continue

    async def process_batch(self) -> int:
        """Handle one batch of due notifications and return its size."""
        with self._session_factory() as db:
            repository = SqlAlchemyEmergencyRepository(db)
            dispatcher = NotificationDispatcher(repository, self.channel, clock=self._clock)
            due = repository.due_notifications(
                self._clock(),
                dispatcher.max_attempts,
                settings.notification_batch_size,
            )
            if not due:
                return 0

            logger.info("Found %d notification(s) to process", len(due))
            for notification in due:
                notification_id = notification.id
                try:
                    address = self._resolve_address(repository, notification)
                    await dispatcher.retry(notification, address)
                    repository.commit()
                except Exception as e:  # noqa: BLE001
                    logger.error(
                        "Error processing notification %s: %s", notification_id, e, exc_info=True
                    )
                    self._record_failure(repository, dispatcher, notification, e)
            return len(due)

    def _record_failure(
        self,
        repository: SqlAlchemyEmergencyRepository,
        dispatcher: NotificationDispatcher,
        notification: Notification,
        error: Exception,
    ) -> None:
        notification_id = notification.id
        try:
            repository.rollback()
            dispatcher.record_error(notification, error)
            repository.commit()
        except Exception:  # noqa: BLE001
            logger.error(
                "Could not record failure of notification %s", notification_id, exc_info=True
            )
            repository.rollback()

    def _resolve_address(
        self, repository: SqlAlchemyEmergencyRepository, notification: Notification
    ) -> str | None:
        link = repository.active_link_for_contact(notification.recipient_id)
        if link is None:
            return None
        return self.cipher.decrypt(link.phone_encrypted)
