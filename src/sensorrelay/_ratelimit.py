"""Serialized, rate-limited execution of completion calls.

Every completion call, whichever chat event or report triggered it, is
submitted to one :class:`RateLimiter`.  A single worker task consumes the
queue in submission order and starts each call no sooner than
``min_gap_ms`` after the previous remote request started, which caps
throughput at ``requests_per_minute`` calls per 60-second window.  A job
that sends more than one request (a retried call) reports each attempt
through :meth:`RateLimiter.record_call`, so the next job is spaced from the
last attempt rather than from the start of the job.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sensorrelay.exceptions import RateLimiterClosedError

_logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class _Job:
    thunk: Callable[[], Awaitable[Any]]
    future: asyncio.Future[Any]
    enqueued_at: float = field(default_factory=time.monotonic)


def min_gap_ms(requests_per_minute: int) -> int:
    """Minimum spacing between call starts for a per-minute budget."""
    if requests_per_minute <= 0:
        raise ValueError(f"requests_per_minute must be positive, got {requests_per_minute}")
    return math.ceil(60000 / requests_per_minute)


class RateLimiter:
    """One ordered queue with a dedicated worker (one concurrent consumer).

    Usage::

        limiter = RateLimiter(requests_per_minute=20)
        text = await limiter.schedule(lambda: transport.complete(prompt))
        ...
        await limiter.aclose()

    A failing call surfaces its exception to its own caller only; the
    worker keeps consuming the queue.
    """

    def __init__(
        self,
        requests_per_minute: int,
        *,
        max_queue_size: int = 0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._min_gap_ms = min_gap_ms(requests_per_minute)
        self._clock = clock
        self._sleep = sleep
        self._queue: asyncio.Queue[_Job | None] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: asyncio.Task[None] | None = None
        self._last_call: float | None = None
        self._closed = False

    async def __aenter__(self) -> RateLimiter:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    @property
    def min_gap_ms(self) -> int:
        return self._min_gap_ms

    @property
    def last_call_timestamp(self) -> float | None:
        """Clock value at which the most recent remote request started."""
        return self._last_call

    @property
    def pending(self) -> int:
        """Calls waiting in the queue (excluding the one running)."""
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def record_call(self) -> None:
        """Mark a remote request starting now inside the running job."""
        self._last_call = self._clock()

    def start(self) -> None:
        """Start the worker task on the running loop (idempotent)."""
        if self._closed:
            raise RateLimiterClosedError("Rate limiter is closed")
        if self.is_running:
            return
        self._worker = asyncio.get_running_loop().create_task(
            self._run(),
            name="sensorrelay-rate-limiter",
        )

    async def schedule(self, thunk: Callable[[], Awaitable[T]]) -> T:
        """Queue *thunk* and wait for its result.

        Blocks on enqueue when the queue is bounded and full.

        Raises
        ------
        RateLimiterClosedError
            If the limiter was closed before the call could run.
        """
        if self._closed:
            raise RateLimiterClosedError("Rate limiter is closed")
        self.start()
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        await self._queue.put(_Job(thunk=thunk, future=future, enqueued_at=self._clock()))
        _logger.debug("Call queued pending=%d", self._queue.qsize())
        return await future

    async def aclose(self, *, drain: bool = True) -> None:
        """Stop accepting calls and shut the worker down.

        With ``drain=True`` calls already queued still run (at the
        configured spacing) before the worker exits.  Otherwise the worker
        is cancelled and queued calls fail with
        :class:`RateLimiterClosedError`.
        """
        self._closed = True
        worker = self._worker
        if worker is None or worker.done():
            self._fail_pending()
            return
        if drain:
            await self._queue.put(None)
            await worker
        else:
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker
            self._fail_pending()

    def _fail_pending(self) -> None:
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()
            if job is not None and not job.future.done():
                job.future.set_exception(RateLimiterClosedError("Rate limiter closed before call ran"))

    async def _wait_for_slot(self) -> None:
        if self._last_call is None:
            return
        delay = self._last_call + self._min_gap_ms / 1000.0 - self._clock()
        if delay > 0:
            _logger.debug("Rate limit spacing: waiting %.3fs", delay)
            await self._sleep(delay)

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    _logger.debug("Rate limiter drained, worker exiting")
                    return
                if job.future.done():
                    # Caller gave up (cancelled) before its turn.
                    continue
                await self._wait_for_slot()
                if job.future.done():
                    continue

                self._last_call = self._clock()
                _logger.debug("Call started after %.3fs in queue", self._last_call - job.enqueued_at)
                try:
                    result = await job.thunk()
                except asyncio.CancelledError:
                    if not job.future.done():
                        job.future.cancel()
                    raise
                except Exception as exc:  # noqa: BLE001
                    if not job.future.done():
                        job.future.set_exception(exc)
                else:
                    if not job.future.done():
                        job.future.set_result(result)
            finally:
                self._queue.task_done()
