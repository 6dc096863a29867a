"""SMS delivery channels.

`send` reports provider rejections through `SmsResult`; transport problems may
raise `SmsDeliveryError`. Callers treat both the same way.
"""
from __future__ import annotations

import logging
import random
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from emergency_connect.core.settings import settings

logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400


class SmsDeliveryError(RuntimeError):
    """Raised when a message could not be handed to the provider."""


@dataclass(frozen=True)
class SmsResult:
    """Outcome of one send attempt."""

    success: bool
    message_id: str | None = None
    error: str | None = None


class SmsChannel(ABC):
    """Delivers a text message to a phone number."""

    @abstractmethod
    async def send(self, address: str, message: str) -> SmsResult:
        """Send `message` to `address`."""


def _mask(address: str) -> str:
    return f"***{address[-4:]}" if len(address) > 4 else "***"


class DevSmsChannel(SmsChannel):
    """Logs messages instead of sending them.

    A non-zero `failure_rate` makes a share of sends fail so that retry
    behaviour can be exercised locally.
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.failure_rate = failure_rate
        self._rng = rng

    async def send(self, address: str, message: str) -> SmsResult:
        message_id = str(uuid.uuid4())
        logger.info("[DEV SMS] to=%s id=%s message=%s", _mask(address), message_id, message)
        if self.failure_rate and self._rng() < self.failure_rate:
            return SmsResult(success=False, error="DEV: Simulated random failure")
        return SmsResult(success=True, message_id=message_id)


class WebhookSmsChannel(SmsChannel):
    """Posts messages to an HTTP gateway that forwards them as SMS."""

    def __init__(
        self,
        url: str,
        token: str | None = None,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._token = token
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def send(self, address: str, message: str) -> SmsResult:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            response = await self._client.post(
                self.url,
                json={"to": address, "message": message},
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise SmsDeliveryError(f"SMS gateway request failed: {exc}") from exc

        if response.status_code >= HTTP_BAD_REQUEST:
            return SmsResult(success=False, error=f"SMS gateway responded with {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        message_id = body.get("id") if isinstance(body, dict) else None
        return SmsResult(success=True, message_id=message_id)

    async def aclose(self) -> None:
        await self._client.aclose()


_CHANNEL: SmsChannel | None = None


def build_sms_channel(provider: str) -> SmsChannel:
    """Create the channel named by SMS_PROVIDER."""
    if provider == "dev":
        return DevSmsChannel(settings.dev_sms_failure_rate)
    if provider == "webhook":
        if not settings.sms_webhook_url:
            raise ValueError("SMS_PROVIDER=webhook requires SMS_WEBHOOK_URL")
        return WebhookSmsChannel(
            settings.sms_webhook_url,
            settings.sms_webhook_token,
            timeout=settings.sms_timeout_seconds,
        )
    raise ValueError(f"Unknown SMS provider: {provider}")


def get_sms_channel() -> SmsChannel:
    """Return the process-wide SMS channel."""
    global _CHANNEL
    if _CHANNEL is None:
        _CHANNEL = build_sms_channel(settings.sms_provider)
    return _CHANNEL
