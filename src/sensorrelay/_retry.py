"""Bounded retry of completion calls on throttling responses."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from sensorrelay._constants import BACKOFF_BASE_MS, BACKOFF_CAP_MS, BACKOFF_JITTER_MS
from sensorrelay.exceptions import UpstreamThrottledError

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_retry_after(value: Any, *, unit: str = "s") -> float | None:
    """Normalise a retry-after hint to milliseconds.

    Parameters
    ----------
    value : Any
        Header or body value (``"2"``, ``"1.5"``, ``250``).
    unit : str
        ``"s"`` for seconds, ``"ms"`` for milliseconds.

    Returns
    -------
    float or None
        Milliseconds, or ``None`` when the value is missing, negative or
        not numeric (HTTP-date hints are ignored).
    """
    if value is None or value == "":
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if amount != amount or amount < 0:  # NaN check
        return None
    if unit == "ms":
        return amount
    if unit == "s":
        return amount * 1000.0
    raise ValueError(f"unit must be 's' or 'ms', got {unit!r}")


class RetryPolicy:
    """Retry a call only when the remote service signals throttling.

    Any other error propagates on the first attempt.  When retries are
    exhausted the last :class:`UpstreamThrottledError` is re-raised.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_ms: float = BACKOFF_BASE_MS,
        cap_ms: float = BACKOFF_CAP_MS,
        jitter_ms: float = BACKOFF_JITTER_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self._base_ms = base_ms
        self._cap_ms = cap_ms
        self._jitter_ms = jitter_ms
        self._sleep = sleep
        self._rng = rng

    def backoff_ms(self, attempt: int, retry_after_ms: float | None = None) -> float:
        """Delay before retry number ``attempt + 1``.

        A server hint wins; otherwise ``min(cap, 2**attempt * base + jitter)``.
        """
        if retry_after_ms is not None:
            return retry_after_ms
        return min(self._cap_ms, (2**attempt) * self._base_ms + self._rng() * self._jitter_ms)

    async def execute(self, thunk: Callable[[], Awaitable[T]], max_retries: int | None = None) -> T:
        """Run *thunk*, retrying throttled attempts up to ``max_retries`` times."""
        retries = self.max_retries if max_retries is None else max_retries
        attempt = 0
        while True:
            try:
                return await thunk()
            except UpstreamThrottledError as exc:
                if attempt >= retries:
                    _logger.warning("Completion still throttled after %d retries, giving up", retries)
                    raise
                delay_ms = self.backoff_ms(attempt, exc.retry_after_ms)
                attempt += 1
                _logger.info(
                    "Completion throttled, retry %d/%d in %.0fms (server hint: %s)",
                    attempt,
                    retries,
                    delay_ms,
                    "yes" if exc.retry_after_ms is not None else "no",
                )
                await self._sleep(delay_ms / 1000.0)
