"""Shared test doubles and constants."""
from __future__ import annotations

from emergency_connect.core.security import CredentialService
from emergency_connect.core.settings import settings
from emergency_connect.models import Account
from emergency_connect.services.sms import SmsChannel, SmsDeliveryError, SmsResult

PRIMARY_PHRASE = "오늘 날씨 좋다"
DURESS_PHRASE = "비가 올 것 같아"
QUESTION = "우리 강아지 이름은?"
ANSWER = "초코"
CONTACT_PHONE = "010-1234-5678"


class RecordingSmsChannel(SmsChannel):
    """SMS channel that records messages and replays scripted outcomes.

    A scripted outcome is either an `SmsResult` or an exception to raise.
    """

    def __init__(self, results: list[SmsResult | Exception] | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.results = list(results or [])

    async def send(self, address: str, message: str) -> SmsResult:
        self.sent.append((address, message))
        if self.results:
            outcome = self.results.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return SmsResult(success=True, message_id=f"msg-{len(self.sent)}")


def failing(error: str = "gateway rejected") -> SmsResult:
    return SmsResult(success=False, error=error)


def unreachable() -> SmsDeliveryError:
    return SmsDeliveryError("SMS gateway request failed: connection refused")


def session_cookie(credential_service: CredentialService, account: Account) -> dict[str, str]:
    """Return a Cookie header carrying a primary session for `account`."""
    token = credential_service.issue_session(account.id, account.role)
    return {"Cookie": f"{settings.session_cookie_name}={token}"}


def set_cookie_value(set_cookie_header: str, name: str) -> str | None:
    """Extract a cookie value from a Set-Cookie header."""
    for part in set_cookie_header.split(";"):
        key, _, value = part.strip().partition("=")
        if key == name:
            return value
    return None
