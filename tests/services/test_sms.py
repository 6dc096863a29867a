from __future__ import annotations

import json

import httpx
import pytest

from emergency_connect.services.sms import (
    DevSmsChannel,
    SmsDeliveryError,
    WebhookSmsChannel,
    build_sms_channel,
)


@pytest.mark.asyncio
async def test_dev_channel_succeeds_by_default() -> None:
    result = await DevSmsChannel().send("010-1234-5678", "테스트")

    assert result.success
    assert result.message_id


@pytest.mark.asyncio
async def test_dev_channel_simulated_failure() -> None:
    channel = DevSmsChannel(failure_rate=0.5, rng=lambda: 0.1)

    result = await channel.send("010-1234-5678", "테스트")

    assert not result.success
    assert result.error == "DEV: Simulated random failure"


@pytest.mark.asyncio
async def test_webhook_channel_posts_message() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "gw-1"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    channel = WebhookSmsChannel("https://sms.test/send", "gw-token", client=client)

    result = await channel.send("010-1234-5678", "긴급")

    assert result.success
    assert result.message_id == "gw-1"
    assert json.loads(seen[0].content) == {"to": "010-1234-5678", "message": "긴급"}
    assert seen[0].headers["Authorization"] == "Bearer gw-token"
    await channel.aclose()


@pytest.mark.asyncio
async def test_webhook_rejection_is_a_result() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
    channel = WebhookSmsChannel("https://sms.test/send", client=client)

    result = await channel.send("010-1234-5678", "긴급")

    assert not result.success
    assert result.error == "SMS gateway responded with 503"
    await channel.aclose()


@pytest.mark.asyncio
async def test_webhook_transport_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    channel = WebhookSmsChannel("https://sms.test/send", client=client)

    with pytest.raises(SmsDeliveryError):
        await channel.send("010-1234-5678", "긴급")
    await channel.aclose()


def test_build_sms_channel() -> None:
    assert isinstance(build_sms_channel("dev"), DevSmsChannel)
    with pytest.raises(ValueError):
        build_sms_channel("carrier-pigeon")
