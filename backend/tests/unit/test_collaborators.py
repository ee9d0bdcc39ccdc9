# Outbound collaborators: AI responder, token usage service, human notifications.
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from chathub.services.ai_service import AIService, contains_handoff_sentinel
from chathub.services.notification_service import (
    NotificationKind,
    NotificationService,
    build_notification,
)
from chathub.services.usage_service import UsageService
from chathub.utils.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from chathub.utils.errors import UpstreamFailure


def http_error(status_code=503):
    return httpx.HTTPStatusError(
        f"status {status_code}",
        request=httpx.Request("POST", "http://upstream.test"),
        response=httpx.Response(status_code),
    )


# --- AIService ---

@pytest.mark.asyncio
async def test_ai_service_returns_reply_text(mocker):
    mock_call = mocker.patch(
        "chathub.services.ai_service.AIService.resilient_api_call",
        new_callable=AsyncMock,
        return_value=MagicMock(status_code=200, json=lambda: {"response": "Hello there"}),
    )
    service = AIService("http://ai.test/", timeout=5)

    assert await service.generate_reply("acme-bot", "chat1", "hi") == "Hello there"
    _, url = mock_call.await_args.args
    assert url == "http://ai.test/chat"
    assert mock_call.await_args.kwargs["json"] == {"chatbotCode": "acme-bot", "chatId": "chat1", "prompt": "hi"}
    await service.cleanup()


@pytest.mark.asyncio
async def test_ai_service_non_2xx_raises_upstream_failure(mocker):
    response = MagicMock()
    response.raise_for_status.side_effect = http_error(500)
    mocker.patch("chathub.services.ai_service.AIService.resilient_api_call", new_callable=AsyncMock, return_value=response)
    service = AIService("http://ai.test", timeout=5)

    with pytest.raises(UpstreamFailure):
        await service.generate_reply("acme-bot", "chat1", "hi")
    await service.cleanup()


@pytest.mark.asyncio
async def test_ai_service_empty_reply_raises_upstream_failure(mocker):
    mocker.patch(
        "chathub.services.ai_service.AIService.resilient_api_call",
        new_callable=AsyncMock,
        return_value=MagicMock(json=lambda: {"response": "   "}),
    )
    service = AIService("http://ai.test", timeout=5)

    with pytest.raises(UpstreamFailure):
        await service.generate_reply("acme-bot", "chat1", "hi")
    await service.cleanup()


def test_handoff_sentinel_matching_is_case_insensitive():
    assert contains_handoff_sentinel("Transferring you now Code:Human007", "code:human007")
    assert not contains_handoff_sentinel("All good here", "code:human007")
    assert not contains_handoff_sentinel("", "code:human007")


# --- UsageService ---

@pytest.mark.asyncio
@pytest.mark.parametrize("body, expected", [(42, 42), ({"totalTokens": 7}, 7)])
async def test_daily_usage_accepts_bare_number_or_envelope(mocker, body, expected):
    cache = mocker.patch("chathub.services.usage_service.cache_service")
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock()
    mocker.patch(
        "chathub.services.usage_service.UsageService.resilient_api_call",
        new_callable=AsyncMock,
        return_value=MagicMock(json=lambda: body),
    )
    service = UsageService("http://tokens.test")

    assert await service.get_daily_usage("t1") == expected
    cache.set.assert_awaited_once()
    await service.cleanup()


@pytest.mark.asyncio
async def test_daily_usage_served_from_cache(mocker):
    cache = mocker.patch("chathub.services.usage_service.cache_service")
    cache.get = AsyncMock(return_value="12")
    mock_call = mocker.patch("chathub.services.usage_service.UsageService.resilient_api_call", new_callable=AsyncMock)
    service = UsageService("http://tokens.test")

    assert await service.get_daily_usage("t1") == 12
    mock_call.assert_not_awaited()
    await service.cleanup()


@pytest.mark.asyncio
async def test_daily_usage_unknown_when_service_fails(mocker):
    cache = mocker.patch("chathub.services.usage_service.cache_service")
    cache.get = AsyncMock(return_value=None)
    mocker.patch(
        "chathub.services.usage_service.UsageService.resilient_api_call",
        new_callable=AsyncMock,
        side_effect=httpx.ConnectError("refused"),
    )
    service = UsageService("http://tokens.test")

    assert await service.get_daily_usage("t1") is None
    await service.cleanup()


@pytest.mark.asyncio
async def test_record_usage_failure_raises_upstream_failure(mocker):
    response = MagicMock()
    response.raise_for_status.side_effect = http_error(502)
    mocker.patch(
        "chathub.services.usage_service.UsageService.resilient_api_call",
        new_callable=AsyncMock,
        return_value=response,
    )
    service = UsageService("http://tokens.test")

    with pytest.raises(UpstreamFailure):
        await service.record_usage("t1", 1)
    await service.cleanup()


# --- Notifications ---

def test_notification_payload_shape(make_tenant, make_chat):
    tenant = make_tenant(owner_notify_telegram=False)
    notification = build_notification(NotificationKind.UNHANDLED_MESSAGE, tenant, make_chat(), visitor_text="help")

    payload = notification.to_payload()

    assert payload["websiteId"] == "t1"
    assert payload["notifyOwner"] is False
    assert payload["ownerId"] == "owner1"
    assert payload["notifyAllStaff"] is True
    assert payload["chatId"] == "chat1"
    assert '"help"' in payload["message"]


@pytest.mark.asyncio
async def test_notification_failure_is_logged_not_raised(make_tenant, make_chat):
    service = NotificationService("http://telegram.test/notify")
    service.client = MagicMock()
    service.client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
    service.client.aclose = AsyncMock()
    notification = build_notification(NotificationKind.AI_HANDOFF, make_tenant(), make_chat())

    task = service.notify_humans(notification)
    assert await task is False
    await service.cleanup()


@pytest.mark.asyncio
async def test_notifications_dropped_without_webhook(make_tenant, make_chat):
    service = NotificationService(None)
    notification = build_notification(NotificationKind.WORKFLOW_COMPLETED, make_tenant(), make_chat())
    assert await service.send(notification) is False
    await service.cleanup()


# --- Circuit breaker ---

@pytest.mark.asyncio
async def test_circuit_opens_after_threshold_and_short_circuits():
    breaker = CircuitBreaker("test", failure_threshold=2, timeout=60)
    failing = AsyncMock(side_effect=RuntimeError("down"))

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await breaker.call(failing)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await breaker.call(failing)
    assert failing.await_count == 2
