from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from emergency_connect.core.security import FieldCipher
from emergency_connect.models import Account, ContactLink, Notification
from emergency_connect.models.account import LINK_STATUS_ACTIVE, ROLE_CONTACT
from emergency_connect.models.notification import (
    CHANNEL_SMS,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SENT,
)
from emergency_connect.repositories.emergency_repo import SqlAlchemyEmergencyRepository
from emergency_connect.services.notifications import (
    NO_ADDRESS_ERROR,
    NotificationDispatcher,
    message_text,
)
from emergency_connect.services.retry_worker import RetryWorker
from emergency_connect.services.sms import SmsChannel, SmsResult
from tests.helpers import CONTACT_PHONE, RecordingSmsChannel, failing, unreachable

PAYLOAD = {"type": "EMERGENCY", "message": "긴급 상황입니다", "incident_id": None}


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 5, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class SlowSmsChannel(SmsChannel):
    async def send(self, address: str, message: str) -> SmsResult:
        await asyncio.sleep(1)
        return SmsResult(success=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _dispatcher(
    repository: SqlAlchemyEmergencyRepository,
    channel: SmsChannel,
    clock: FakeClock,
    **kwargs,
) -> NotificationDispatcher:
    return NotificationDispatcher(
        repository,
        channel,
        clock=clock,
        retry_delays=(60, 300, 900),
        max_attempts=3,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_and_send_success(
    repository: SqlAlchemyEmergencyRepository,
    contact_account: Account,
    clock: FakeClock,
) -> None:
    channel = RecordingSmsChannel()
    dispatcher = _dispatcher(repository, channel, clock)

    notification = await dispatcher.create_and_send(
        contact_account.id, None, CHANNEL_SMS, PAYLOAD, CONTACT_PHONE
    )

    assert channel.sent == [(CONTACT_PHONE, "긴급 상황입니다")]
    assert notification.status == STATUS_SENT
    assert notification.attempts == 1
    assert notification.sent_at == clock.now
    assert notification.next_retry_at is None
    assert notification.last_error is None


@pytest.mark.asyncio
async def test_create_and_send_failure_schedules_retry(
    repository: SqlAlchemyEmergencyRepository,
    contact_account: Account,
    clock: FakeClock,
) -> None:
    dispatcher = _dispatcher(repository, RecordingSmsChannel([failing("rejected")]), clock)

    notification = await dispatcher.create_and_send(
        contact_account.id, None, CHANNEL_SMS, PAYLOAD, CONTACT_PHONE
    )

    assert notification.status == STATUS_FAILED
    assert notification.attempts == 1
    assert notification.last_error == "rejected"
    assert notification.next_retry_at == clock.now + timedelta(seconds=60)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("outcome", "expected_error"),
    [
        (unreachable(), "SMS gateway request failed: connection refused"),
        (RuntimeError("socket closed"), "socket closed"),
    ],
)
async def test_create_and_send_never_raises(
    repository: SqlAlchemyEmergencyRepository,
    contact_account: Account,
    clock: FakeClock,
    outcome: Exception,
    expected_error: str,
) -> None:
    dispatcher = _dispatcher(repository, RecordingSmsChannel([outcome]), clock)

    notification = await dispatcher.create_and_send(
        contact_account.id, None, CHANNEL_SMS, PAYLOAD, CONTACT_PHONE
    )

    assert notification.status == STATUS_FAILED
    assert notification.attempts == 1
    assert notification.last_error == expected_error


@pytest.mark.asyncio
async def test_create_without_address_stays_pending(
    repository: SqlAlchemyEmergencyRepository,
    contact_account: Account,
    clock: FakeClock,
) -> None:
    channel = RecordingSmsChannel()
    dispatcher = _dispatcher(repository, channel, clock)

    notification = await dispatcher.create_and_send(
        contact_account.id, None, CHANNEL_SMS, PAYLOAD, None
    )

    assert channel.sent == []
    assert notification.status == STATUS_PENDING
    assert notification.attempts == 0
    assert notification.next_retry_at == clock.now


@pytest.mark.asyncio
async def test_send_timeout_counts_as_failure(
    repository: SqlAlchemyEmergencyRepository,
    contact_account: Account,
    clock: FakeClock,
) -> None:
    dispatcher = _dispatcher(repository, SlowSmsChannel(), clock, send_timeout=0.01)

    notification = await dispatcher.create_and_send(
        contact_account.id, None, CHANNEL_SMS, PAYLOAD, CONTACT_PHONE
    )

    assert notification.status == STATUS_FAILED
    assert notification.last_error.startswith("SMS send timed out")


@pytest.mark.asyncio
async def test_three_failures_make_the_notification_terminal(
    repository: SqlAlchemyEmergencyRepository,
    contact_account: Account,
    clock: FakeClock,
) -> None:
    channel = RecordingSmsChannel([failing("one"), failing("two"), failing("three")])
    dispatcher = _dispatcher(repository, channel, clock)
    notification = await dispatcher.create_and_send(
        contact_account.id, None, CHANNEL_SMS, PAYLOAD, CONTACT_PHONE
    )
    assert notification.next_retry_at == clock.now + timedelta(seconds=60)

    clock.advance(60)
    await dispatcher.retry(notification, CONTACT_PHONE)
    assert notification.status == STATUS_FAILED
    assert notification.attempts == 2
    assert notification.last_error == "two"
    assert notification.next_retry_at == clock.now + timedelta(seconds=300)

    clock.advance(300)
    await dispatcher.retry(notification, CONTACT_PHONE)
    assert notification.status == STATUS_FAILED
    assert notification.attempts == 3
    assert notification.last_error == "three"
    assert notification.next_retry_at is None
    assert len(channel.sent) == 3


@pytest.mark.asyncio
async def test_retry_success_marks_sent(
    repository: SqlAlchemyEmergencyRepository,
    contact_account: Account,
    clock: FakeClock,
) -> None:
    channel = RecordingSmsChannel([failing()])
    dispatcher = _dispatcher(repository, channel, clock)
    notification = await dispatcher.create_and_send(
        contact_account.id, None, CHANNEL_SMS, PAYLOAD, CONTACT_PHONE
    )

    clock.advance(60)
    await dispatcher.retry(notification, CONTACT_PHONE)

    assert notification.status == STATUS_SENT
    assert notification.attempts == 2
    assert notification.sent_at == clock.now
    assert notification.next_retry_at is None


@pytest.mark.asyncio
async def test_retry_without_address_is_terminal(
    repository: SqlAlchemyEmergencyRepository,
    contact_account: Account,
    clock: FakeClock,
) -> None:
    dispatcher = _dispatcher(repository, RecordingSmsChannel(), clock)
    notification = await dispatcher.create_and_send(
        contact_account.id, None, CHANNEL_SMS, PAYLOAD, None
    )

    await dispatcher.retry(notification, None)

    assert notification.status == STATUS_FAILED
    assert notification.attempts == 1
    assert notification.last_error == NO_ADDRESS_ERROR
    assert notification.next_retry_at is None


def test_retry_delay_clamps_to_last_entry(
    repository: SqlAlchemyEmergencyRepository, clock: FakeClock
) -> None:
    dispatcher = _dispatcher(repository, RecordingSmsChannel(), clock)

    assert [dispatcher.retry_delay(n) for n in range(5)] == [60, 300, 900, 900, 900]


def test_message_text_falls_back_to_json() -> None:
    assert message_text({"message": "안녕"}) == "안녕"
    assert message_text({"type": "EMERGENCY"}) == '{"type": "EMERGENCY"}'


def test_due_notifications_skips_terminal_and_future(
    repository: SqlAlchemyEmergencyRepository,
    contact_account: Account,
    clock: FakeClock,
) -> None:
    due = repository.create_notification(
        recipient_id=contact_account.id,
        incident_id=None,
        channel=CHANNEL_SMS,
        payload=PAYLOAD,
        now=clock.now,
    )
    future = repository.create_notification(
        recipient_id=contact_account.id,
        incident_id=None,
        channel=CHANNEL_SMS,
        payload=PAYLOAD,
        now=clock.now + timedelta(minutes=5),
    )
    terminal = repository.create_notification(
        recipient_id=contact_account.id,
        incident_id=None,
        channel=CHANNEL_SMS,
        payload=PAYLOAD,
        now=clock.now,
    )
    repository.update_notification(terminal, status=STATUS_FAILED, attempts=3, next_retry_at=None)
    repository.commit()

    found = repository.due_notifications(clock.now + timedelta(seconds=1), 3, 10)

    assert [n.id for n in found] == [due.id]
    assert future.id not in {n.id for n in found}


def _add_contact(db_session: Session, protected_id: str, phone_encrypted: str) -> Account:
    account = Account(role=ROLE_CONTACT, display_name="Another Contact")
    db_session.add(account)
    db_session.flush()
    db_session.add(
        ContactLink(
            protected_id=protected_id,
            contact_id=account.id,
            phone_encrypted=phone_encrypted,
            status=LINK_STATUS_ACTIVE,
        )
    )
    db_session.commit()
    return account


@pytest.mark.asyncio
async def test_worker_delivers_pending_notifications(
    repository: SqlAlchemyEmergencyRepository,
    session_factory: sessionmaker[Session],
    contact_account: Account,
    cipher: FieldCipher,
    db_session: Session,
    clock: FakeClock,
) -> None:
    pending = repository.create_notification(
        recipient_id=contact_account.id,
        incident_id=None,
        channel=CHANNEL_SMS,
        payload=PAYLOAD,
        now=clock.now,
    )
    repository.commit()
    channel = RecordingSmsChannel()
    clock.advance(1)
    worker = RetryWorker(channel, session_factory, cipher, clock=clock)

    processed = await worker.process_batch()

    assert processed == 1
    assert channel.sent == [(CONTACT_PHONE, "긴급 상황입니다")]
    db_session.expire_all()
    stored = db_session.get(Notification, pending.id)
    assert stored.status == STATUS_SENT
    assert stored.attempts == 1
    assert stored.next_retry_at is None

    assert await worker.process_batch() == 0


@pytest.mark.asyncio
async def test_worker_isolates_failures_per_notification(
    repository: SqlAlchemyEmergencyRepository,
    session_factory: sessionmaker[Session],
    protected_account: Account,
    contact_account: Account,
    cipher: FieldCipher,
    db_session: Session,
    clock: FakeClock,
) -> None:
    broken_contact = _add_contact(db_session, protected_account.id, "not-a-ciphertext")
    broken = repository.create_notification(
        recipient_id=broken_contact.id,
        incident_id=None,
        channel=CHANNEL_SMS,
        payload=PAYLOAD,
        now=clock.now,
    )
    healthy = repository.create_notification(
        recipient_id=contact_account.id,
        incident_id=None,
        channel=CHANNEL_SMS,
        payload=PAYLOAD,
        now=clock.now,
    )
    repository.commit()
    channel = RecordingSmsChannel()
    clock.advance(1)
    worker = RetryWorker(channel, session_factory, cipher, clock=clock)

    assert await worker.process_batch() == 2

    db_session.expire_all()
    failed = db_session.get(Notification, broken.id)
    assert failed.status == STATUS_PENDING
    assert failed.attempts == 1
    assert failed.last_error == "Invalid ciphertext format"
    assert failed.next_retry_at is not None

    delivered = db_session.get(Notification, healthy.id)
    assert delivered.status == STATUS_SENT
    assert channel.sent == [(CONTACT_PHONE, "긴급 상황입니다")]


@pytest.mark.asyncio
async def test_worker_gives_up_on_recipient_without_link(
    repository: SqlAlchemyEmergencyRepository,
    session_factory: sessionmaker[Session],
    protected_account: Account,
    cipher: FieldCipher,
    db_session: Session,
    clock: FakeClock,
) -> None:
    orphan = repository.create_notification(
        recipient_id=protected_account.id,
        incident_id=None,
        channel=CHANNEL_SMS,
        payload=PAYLOAD,
        now=clock.now,
    )
    repository.commit()
    clock.advance(1)
    channel = RecordingSmsChannel()

    await RetryWorker(channel, session_factory, cipher, clock=clock).process_batch()

    db_session.expire_all()
    stored = db_session.get(Notification, orphan.id)
    assert stored.status == STATUS_FAILED
    assert stored.last_error == NO_ADDRESS_ERROR
    assert stored.next_retry_at is None
    assert channel.sent == []


@pytest.mark.asyncio
async def test_worker_start_and_stop(
    session_factory: sessionmaker[Session], cipher: FieldCipher, mocker
) -> None:
    worker = RetryWorker(RecordingSmsChannel(), session_factory, cipher)
    process = mocker.patch.object(worker, "process_batch", return_value=0)

    await worker.start()
    await asyncio.sleep(0)
    await worker.stop()

    assert process.await_count >= 1
    assert worker._task is None


@pytest.mark.asyncio
async def test_worker_continues_batch_when_failure_cannot_be_recorded(
    repository: SqlAlchemyEmergencyRepository,
    session_factory: sessionmaker[Session],
    protected_account: Account,
    contact_account: Account,
    cipher: FieldCipher,
    db_session: Session,
    clock: FakeClock,
    mocker,
) -> None:
    broken_contact = _add_contact(db_session, protected_account.id, "not-a-ciphertext")
    for recipient_id in (broken_contact.id, contact_account.id):
        repository.create_notification(
            recipient_id=recipient_id,
            incident_id=None,
            channel=CHANNEL_SMS,
            payload=PAYLOAD,
            now=clock.now,
        )
    repository.commit()
    mocker.patch.object(
        NotificationDispatcher,
        "record_error",
        side_effect=OperationalError("UPDATE", {}, Exception("database is locked")),
    )
    channel = RecordingSmsChannel()
    clock.advance(1)
    worker = RetryWorker(channel, session_factory, cipher, clock=clock)

    assert await worker.process_batch() == 2
    assert channel.sent == [(CONTACT_PHONE, "긴급 상황입니다")]


@pytest.mark.asyncio
async def test_worker_loop_survives_unexpected_errors(
    session_factory: sessionmaker[Session], cipher: FieldCipher, mocker
) -> None:
    worker = RetryWorker(RecordingSmsChannel(), session_factory, cipher)
    process = mocker.patch.object(worker, "process_batch", side_effect=RuntimeError("boom"))

    await worker.start()
    await asyncio.sleep(0)
    await worker.stop()

    assert process.await_count >= 1
    assert worker._task is None
