import asyncio
import logging

import httpx
import pytest

from connection_logs.schemas.event import PlayerIdentity
from connection_logs.services.telegram_service import NotificationDispatcher

ALICE = PlayerIdentity(steam_id="76561198000000001", display_name="Alice")
BOB = PlayerIdentity(steam_id="76561198000000002", display_name="Bob")


def _dispatcher(handler, **kwargs) -> NotificationDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("clock", lambda: 1700000000.5)
    return NotificationDispatcher(client, "123:token", "-10042", **kwargs)


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"ok": True, "result": {}})


def test_format_connect_message_without_ip():
    dispatcher = _dispatcher(_ok)

    message = dispatcher.format_message(True, ALICE)

    assert message == (
        "1700000000: Alice (https://steamcommunity.com/profiles/76561198000000001) "
        "76561198000000001 connected"
    )


def test_format_disconnect_message_with_ip():
    dispatcher = _dispatcher(_ok)

    message = dispatcher.format_message(False, BOB, "203.0.113.7")

    assert message.endswith("76561198000000002 disconnected with ip 203.0.113.7")


def test_format_message_ignores_empty_ip():
    dispatcher = _dispatcher(_ok)

    assert dispatcher.format_message(True, ALICE, "").endswith("76561198000000001 connected")


@pytest.mark.asyncio
async def test_send_builds_telegram_request():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _ok(request)

    dispatcher = _dispatcher(handler, base_url="https://telegram.test/")
    task = dispatcher.send(False, BOB, "203.0.113.7")

    assert await task is True
    request = seen[0]
    assert request.method == "GET"
    assert request.url.host == "telegram.test"
    assert request.url.path == "/bot123:token/sendMessage"
    assert request.url.params["chat_id"] == "-10042"
    assert request.url.params["text"] == dispatcher.format_message(False, BOB, "203.0.113.7")
    assert " " not in request.url.query.decode()


@pytest.mark.asyncio
async def test_network_failure_is_absorbed(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    dispatcher = _dispatcher(handler)
    with caplog.at_level(logging.ERROR):
        task = dispatcher.send(True, ALICE)
        assert await task is False

    assert "Exception when trying to send message to Telegram" in caplog.text


@pytest.mark.asyncio
async def test_timeout_is_absorbed():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    dispatcher = _dispatcher(handler, timeout=0.01)

    assert await dispatcher.deliver(True, ALICE) is False


@pytest.mark.asyncio
async def test_error_description_is_logged_verbatim(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"ok": False, "error_code": 400, "description": "Bad Request: chat not found"}
        )

    dispatcher = _dispatcher(handler)
    with caplog.at_level(logging.ERROR):
        assert await dispatcher.send(True, ALICE) is False

    assert "Failed to send message to Telegram. Error: Bad Request: chat not found" in caplog.text


@pytest.mark.asyncio
async def test_malformed_error_body_is_absorbed(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    dispatcher = _dispatcher(handler)
    with caplog.at_level(logging.ERROR):
        assert await dispatcher.send(True, ALICE) is False

    assert "HTTP 502" in caplog.text


@pytest.mark.asyncio
async def test_api_error_on_success_status_is_absorbed(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "description": "Forbidden: bot was kicked"})

    dispatcher = _dispatcher(handler)
    with caplog.at_level(logging.ERROR):
        assert await dispatcher.send(False, BOB) is False

    assert "Forbidden: bot was kicked" in caplog.text


@pytest.mark.asyncio
async def test_unconfigured_dispatcher_skips_sending():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return _ok(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = NotificationDispatcher(client, "", "")

    assert dispatcher.enabled is False
    assert dispatcher.send(True, ALICE) is None
    await dispatcher.aclose()
    assert calls == []


@pytest.mark.asyncio
async def test_in_flight_requests_are_bounded():
    release = asyncio.Event()
    active = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await release.wait()
        active -= 1
        return _ok(request)

    dispatcher = _dispatcher(handler, max_in_flight=2)
    tasks = [dispatcher.send(True, ALICE) for _ in range(5)]
    for _ in range(10):
        await asyncio.sleep(0)

    assert peak == 2
    release.set()
    assert await asyncio.gather(*tasks) == [True] * 5
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_notifications_beyond_pending_cap_are_dropped(caplog):
    release = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return _ok(request)

    dispatcher = _dispatcher(handler, max_pending=1)
    first = dispatcher.send(True, ALICE)
    with caplog.at_level(logging.WARNING):
        second = dispatcher.send(True, BOB)

    assert first is not None
    assert second is None
    assert "Dropping notification for 76561198000000002" in caplog.text
    release.set()
    await dispatcher.aclose()
    assert first.done()


def test_max_in_flight_must_be_positive():
    with pytest.raises(ValueError):
        _dispatcher(_ok, max_in_flight=0)
