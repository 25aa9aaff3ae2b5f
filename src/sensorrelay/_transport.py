"""HTTP transports for the LINE Messaging API and the completion service."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from sensorrelay._constants import (
    DEFAULT_MAX_MESSAGE_LENGTH,
    LINE_API_URL,
    LINE_PUSH_ENDPOINT,
    LINE_REPLY_ENDPOINT,
    OPENAI_BASE_URL,
    OPENAI_COMPLETIONS_ENDPOINT,
    TRUNCATION_MARKER,
)
from sensorrelay._redact import mask_token, redact_for_log
from sensorrelay._retry import parse_retry_after
from sensorrelay.exceptions import (
    ChatTransportError,
    UpstreamThrottledError,
    UpstreamUnavailableError,
)

_logger = logging.getLogger(__name__)

# 429 codes that no amount of waiting will fix.
_NON_RETRYABLE_429_CODES: frozenset[str] = frozenset({"insufficient_quota"})


class ChatTransport(Protocol):
    """Structural chat interface used by the processor and reporter.

    `LineChatTransport` is the production implementation.
    """

    async def reply(self, reply_token: str, text: str) -> None:
        ...

    async def push(self, user_id: str, text: str) -> None:
        ...


class CompletionTransport(Protocol):
    """Structural completion interface used by the orchestrator."""

    async def complete(self, prompt: str) -> str:
        ...


def truncate_message(text: str, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> str:
    """Cut *text* to ``max_length`` characters and append a marker."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + TRUNCATION_MARKER


class LineChatTransport:
    """Reply/push text messages through the LINE Messaging API."""

    def __init__(
        self,
        access_token: str,
        http_session: aiohttp.ClientSession,
        *,
        max_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        base_url: str = LINE_API_URL,
    ) -> None:
        self._access_token = access_token
        self._http = http_session
        self._max_length = max_length
        self._base_url = base_url

    async def reply(self, reply_token: str, text: str) -> None:
        """Answer an inbound event using its one-time reply token."""
        _logger.debug("LINE reply token=%s len=%d", mask_token(reply_token), len(text))
        await self._post(
            LINE_REPLY_ENDPOINT,
            {"replyToken": reply_token, "messages": [{"type": "text", "text": truncate_message(text, self._max_length)}]},
        )

    async def push(self, user_id: str, text: str) -> None:
        """Send an unsolicited message to a user."""
        _logger.debug("LINE push user=%s len=%d", mask_token(user_id), len(text))
        await self._post(
            LINE_PUSH_ENDPOINT,
            {"to": user_id, "messages": [{"type": "text", "text": truncate_message(text, self._max_length)}]},
        )

    async def _post(self, endpoint: str, payload: Mapping[str, Any]) -> None:
        if not self._access_token:
            raise ChatTransportError("LINE_ACCESS_TOKEN is missing", endpoint=endpoint)

        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}{endpoint}"
        try:
            async with self._http.post(url, json=dict(payload), headers=headers) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise ChatTransportError(
                        f"HTTP {resp.status} from LINE {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except ChatTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise ChatTransportError(
                f"Request to LINE {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc


def retry_after_from_headers(headers: Mapping[str, str]) -> float | None:
    """Server retry hint in milliseconds (``retry-after-ms`` wins over ``retry-after``)."""
    lowered = {str(k).lower(): v for k, v in headers.items()}
    hint = parse_retry_after(lowered.get("retry-after-ms"), unit="ms")
    if hint is not None:
        return hint
    return parse_retry_after(lowered.get("retry-after"), unit="s")


def _error_code(body_text: str) -> str:
    try:
        body = json.loads(body_text)
    except json.JSONDecodeError:
        return ""
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("code") or error.get("type") or "")
    return ""


def raise_for_completion_status(status: int, headers: Mapping[str, str], body_text: str) -> None:
    """Translate a non-200 completion response into the error taxonomy.

    Raises
    ------
    UpstreamThrottledError
        On HTTP 429 rate limiting.
    UpstreamUnavailableError
        On any other non-200 status (including quota exhaustion).
    """
    if status == 200:
        return
    if status == 429 and _error_code(body_text) not in _NON_RETRYABLE_429_CODES:
        raise UpstreamThrottledError(
            f"Completion service throttled: {body_text[:200]}",
            retry_after_ms=retry_after_from_headers(headers),
        )
    raise UpstreamUnavailableError(
        f"HTTP {status} from completion service: {body_text[:200]}",
        status_code=status,
    )


def extract_completion_text(body: Any) -> str:
    """Pull the assistant text out of a chat-completions body."""
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise UpstreamUnavailableError(f"Malformed completion body: {str(body)[:200]}") from exc
    return content if isinstance(content, str) else ""


class OpenAICompletionTransport:
    """Chat-completions client for OpenAI-compatible APIs."""

    def __init__(
        self,
        api_key: str,
        http_session: aiohttp.ClientSession,
        *,
        model: str = "gpt-4o-mini",
        base_url: str = OPENAI_BASE_URL,
    ) -> None:
        self._api_key = api_key
        self._http = http_session
        self._model = model
        self._base_url = base_url.rstrip("/")

    async def complete(self, prompt: str) -> str:
        """Send *prompt* as a single user message and return the reply text."""
        if not self._api_key:
            raise UpstreamUnavailableError("OPENAI_API_KEY is not configured")

        url = f"{self._base_url}{OPENAI_COMPLETIONS_ENDPOINT}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        payload = {"model": self._model, "messages": [{"role": "user", "content": prompt}]}
        _logger.debug("POST %s headers=%s", url, redact_for_log(headers))

        try:
            async with self._http.post(url, json=payload, headers=headers) as resp:
                text = await resp.text()
                raise_for_completion_status(resp.status, resp.headers, text)
        except (UpstreamThrottledError, UpstreamUnavailableError):
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise UpstreamUnavailableError(f"Request to completion service failed: {exc}") from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise UpstreamUnavailableError(f"Invalid JSON from completion service: {text[:200]}") from exc
        return extract_completion_text(body)
