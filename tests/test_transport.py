from __future__ import annotations

from typing import Any

import aiohttp
import pytest
from aiohttp import test_utils, web

from sensorrelay._transport import (
    LineChatTransport,
    OpenAICompletionTransport,
    extract_completion_text,
    raise_for_completion_status,
    retry_after_from_headers,
    truncate_message,
)
from sensorrelay.exceptions import ChatTransportError, UpstreamThrottledError, UpstreamUnavailableError


def _base_url(server: test_utils.TestServer) -> str:
    return str(server.make_url("")).rstrip("/")


# ------------------------------------------------------------------
# Pure helpers
# ------------------------------------------------------------------


def test_truncate_message_keeps_short_text() -> None:
    assert truncate_message("hello", 10) == "hello"


def test_truncate_message_appends_marker() -> None:
    truncated = truncate_message("x" * 50, 10)

    assert truncated.startswith("x" * 10)
    assert truncated.endswith("...(ตัดข้อความ)")
    assert "x" * 11 not in truncated


def test_retry_after_ms_header_wins() -> None:
    assert retry_after_from_headers({"Retry-After-Ms": "150", "Retry-After": "9"}) == 150.0
    assert retry_after_from_headers({"Retry-After": "2"}) == 2000.0
    assert retry_after_from_headers({}) is None


def test_success_status_does_not_raise() -> None:
    raise_for_completion_status(200, {}, "{}")


def test_429_is_throttling_with_hint() -> None:
    with pytest.raises(UpstreamThrottledError) as exc_info:
        raise_for_completion_status(429, {"retry-after": "1"}, '{"error": {"code": "rate_limit_exceeded"}}')

    assert exc_info.value.retry_after_ms == 1000.0
    assert exc_info.value.status_code == 429


def test_429_quota_exhaustion_is_not_retryable() -> None:
    with pytest.raises(UpstreamUnavailableError) as exc_info:
        raise_for_completion_status(429, {}, '{"error": {"code": "insufficient_quota"}}')

    assert not isinstance(exc_info.value, UpstreamThrottledError)
    assert exc_info.value.status_code == 429


def test_server_error_is_unavailable() -> None:
    with pytest.raises(UpstreamUnavailableError) as exc_info:
        raise_for_completion_status(503, {}, "overloaded")

    assert exc_info.value.status_code == 503


def test_extract_completion_text() -> None:
    body = {"choices": [{"message": {"role": "assistant", "content": "ตากได้"}}]}

    assert extract_completion_text(body) == "ตากได้"
    assert extract_completion_text({"choices": [{"message": {"content": None}}]}) == ""
    with pytest.raises(UpstreamUnavailableError):
        extract_completion_text({"choices": []})


# ------------------------------------------------------------------
# LINE transport
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_line_reply_posts_truncated_text_with_bearer_token() -> None:
    received: list[tuple[str, str, dict[str, Any]]] = []

    async def _handler(request: web.Request) -> web.Response:
        received.append((request.path, request.headers["Authorization"], await request.json()))
        return web.json_response({})

    app = web.Application()
    app.router.add_post("/reply", _handler)
    app.router.add_post("/push", _handler)

    async with test_utils.TestServer(app) as server, aiohttp.ClientSession() as session:
        transport = LineChatTransport("line-token", session, max_length=5, base_url=_base_url(server))
        await transport.reply("reply-tok", "abcdefgh")
        await transport.push("U1", "hi")

    assert received[0][0] == "/reply"
    assert received[0][1] == "Bearer line-token"
    assert received[0][2]["replyToken"] == "reply-tok"
    assert received[0][2]["messages"][0]["text"] == "abcde\n...(ตัดข้อความ)"
    assert received[1][0] == "/push"
    assert received[1][2] == {"to": "U1", "messages": [{"type": "text", "text": "hi"}]}


@pytest.mark.asyncio
async def test_line_non_200_raises_chat_transport_error() -> None:
    async def _handler(_request: web.Request) -> web.Response:
        return web.json_response({"message": "Invalid reply token"}, status=400)

    app = web.Application()
    app.router.add_post("/reply", _handler)

    async with test_utils.TestServer(app) as server, aiohttp.ClientSession() as session:
        transport = LineChatTransport("line-token", session, base_url=_base_url(server))
        with pytest.raises(ChatTransportError) as exc_info:
            await transport.reply("expired", "hi")

    assert exc_info.value.status_code == 400
    assert exc_info.value.endpoint == "/reply"


@pytest.mark.asyncio
async def test_line_missing_token_fails_without_request() -> None:
    async with aiohttp.ClientSession() as session:
        transport = LineChatTransport("", session)
        with pytest.raises(ChatTransportError, match="LINE_ACCESS_TOKEN"):
            await transport.push("U1", "hi")


# ------------------------------------------------------------------
# Completion transport
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_completion_round_trip() -> None:
    seen: list[dict[str, Any]] = []

    async def _handler(request: web.Request) -> web.Response:
        seen.append(await request.json())
        return web.json_response({"choices": [{"message": {"role": "assistant", "content": "ควรพกร่ม"}}]})

    app = web.Application()
    app.router.add_post("/v1/chat/completions", _handler)

    async with test_utils.TestServer(app) as server, aiohttp.ClientSession() as session:
        transport = OpenAICompletionTransport("sk-test", session, model="test-model", base_url=f"{_base_url(server)}/v1/")
        assert await transport.complete("จะฝนตกไหม") == "ควรพกร่ม"

    assert seen == [{"model": "test-model", "messages": [{"role": "user", "content": "จะฝนตกไหม"}]}]


@pytest.mark.asyncio
async def test_completion_429_carries_retry_hint() -> None:
    async def _handler(_request: web.Request) -> web.Response:
        return web.json_response(
            {"error": {"code": "rate_limit_exceeded"}},
            status=429,
            headers={"retry-after-ms": "750"},
        )

    app = web.Application()
    app.router.add_post("/chat/completions", _handler)

    async with test_utils.TestServer(app) as server, aiohttp.ClientSession() as session:
        transport = OpenAICompletionTransport("sk-test", session, base_url=_base_url(server))
        with pytest.raises(UpstreamThrottledError) as exc_info:
            await transport.complete("hi")

    assert exc_info.value.retry_after_ms == 750.0


@pytest.mark.asyncio
async def test_completion_without_api_key_is_unavailable() -> None:
    async with aiohttp.ClientSession() as session:
        transport = OpenAICompletionTransport("", session)
        with pytest.raises(UpstreamUnavailableError, match="OPENAI_API_KEY"):
            await transport.complete("hi")
