"""Answer questions about current conditions with the completion model.

Cache first; on a miss the call goes through the shared rate limiter and
the throttling retry policy.  Failures propagate: building a fallback
answer is the caller's job, so only real model answers are ever cached.
"""

from __future__ import annotations

import asyncio
import logging
import re

from sensorrelay._cache import ResponseCache, build_fingerprint
from sensorrelay._ratelimit import RateLimiter
from sensorrelay._retry import RetryPolicy
from sensorrelay._transport import CompletionTransport
from sensorrelay.exceptions import UpstreamThrottledError, UpstreamUnavailableError
from sensorrelay.models.events import normalize_text
from sensorrelay.models.sensor import SensorReading

_logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")

MAX_QUESTION_LENGTH = 500


def clean_model_text(text: str) -> str:
    """Strip reasoning blocks and stray markup from model output."""
    return _TAG_RE.sub("", _THINK_RE.sub("", text or "")).strip()


def build_prompt(question: str, reading: SensorReading) -> str:
    question = normalize_text(question)[:MAX_QUESTION_LENGTH]
    return "\n".join(
        [
            "ข้อมูลเซ็นเซอร์:",
            f"- ค่าแสง: {reading.light} lux",
            f"- อุณหภูมิ: {reading.temperature} °C",
            f"- ความชื้น: {reading.humidity} %",
            f'คำถาม: "{question}"',
            "โปรดตอบเป็นภาษาไทยแบบสั้น กระชับ ชัดเจน",
        ]
    )


class CompletionOrchestrator:
    """Cache + rate limiter + retry policy around one completion transport.

    Concurrent misses for the same fingerprint share one in-flight call.
    """

    def __init__(
        self,
        transport: CompletionTransport,
        limiter: RateLimiter,
        retry: RetryPolicy,
        cache: ResponseCache,
        *,
        max_retries: int | None = None,
        timeout: float | None = 30.0,
    ) -> None:
        self._transport = transport
        self._limiter = limiter
        self._retry = retry
        self._cache = cache
        self._max_retries = max_retries
        self._timeout = timeout
        self._inflight: dict[str, asyncio.Future[str]] = {}

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    async def answer(self, question: str, reading: SensorReading) -> str:
        """Model answer for *question* under *reading*.

        Returns the cleaned answer, which may be empty if the model said
        nothing.

        Raises
        ------
        UpstreamUnavailableError
            If the model could not be reached or stayed throttled.
        RateLimiterClosedError
            If the relay is shutting down.
        """
        fingerprint = build_fingerprint(question, reading)
        cached = self._cache.get(fingerprint)
        if cached is not None:
            _logger.debug("Cache hit fingerprint=%s", fingerprint)
            return cached

        task = self._inflight.get(fingerprint)
        if task is None:
            _logger.debug("Cache miss fingerprint=%s", fingerprint)
            task = asyncio.ensure_future(self._answer_uncached(fingerprint, question, reading))
            self._inflight[fingerprint] = task
            task.add_done_callback(lambda t, fp=fingerprint: self._forget(fp, t))
        else:
            _logger.debug("Joining in-flight call fingerprint=%s", fingerprint)
        return await asyncio.shield(task)

    def _forget(self, fingerprint: str, task: asyncio.Future[str]) -> None:
        if self._inflight.get(fingerprint) is task:
            del self._inflight[fingerprint]
        if not task.cancelled():
            # Mark retrieved; every waiter re-raises it on its own.
            task.exception()

    async def _answer_uncached(self, fingerprint: str, question: str, reading: SensorReading) -> str:
        text = await self.complete(build_prompt(question, reading))
        if text:
            self._cache.put(fingerprint, text)
        return text

    async def complete(self, prompt: str) -> str:
        """Send *prompt* through the rate-limited, retrying path (uncached)."""
        try:
            raw = await self._limiter.schedule(
                lambda: self._retry.execute(lambda: self._call(prompt), self._max_retries)
            )
        except UpstreamThrottledError as exc:
            raise UpstreamUnavailableError(
                "Completion service still throttling after retries",
                status_code=exc.status_code,
            ) from exc
        return clean_model_text(raw)

    async def _call(self, prompt: str) -> str:
        self._limiter.record_call()
        if self._timeout is None:
            return await self._transport.complete(prompt)
        try:
            return await asyncio.wait_for(self._transport.complete(prompt), timeout=self._timeout)
        except TimeoutError as exc:
            raise UpstreamUnavailableError(f"Completion timed out after {self._timeout}s") from exc
