"""Application state constructed once at startup and passed to every handler."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from sensorrelay._cache import ResponseCache
from sensorrelay._ratelimit import RateLimiter
from sensorrelay._retry import RetryPolicy
from sensorrelay._transport import (
    ChatTransport,
    CompletionTransport,
    LineChatTransport,
    OpenAICompletionTransport,
)
from sensorrelay.config import RelayConfig
from sensorrelay.dedup import DedupGuard
from sensorrelay.exceptions import RelayError
from sensorrelay.orchestrator import CompletionOrchestrator
from sensorrelay.processor import EventProcessor
from sensorrelay.reporter import StatusReporter
from sensorrelay.state import SensorState
from sensorrelay.store import SQLiteStore, Store

_logger = logging.getLogger(__name__)


class RelayContext:
    """Owns the reading, the cache, the call queue and the collaborators.

    Usage::

        async with RelayContext(RelayConfig.from_env()) as ctx:
            ctx.state.ingest({"light": 20000, "temp": 32, "humidity": 55})
            text = await ctx.orchestrator.answer("ตอนนี้ควรตากผ้าไหม", ctx.state.latest)

    Collaborators passed in (store, transports, HTTP session) are used as
    is and left open on exit; the ones created here are closed.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        store: Store | None = None,
        chat: ChatTransport | None = None,
        completion: CompletionTransport | None = None,
        http_session: aiohttp.ClientSession | None = None,
        state: SensorState | None = None,
        retry: RetryPolicy | None = None,
        cache: ResponseCache | None = None,
    ) -> None:
        self.config = config
        self.state = state or SensorState()
        self._owns_store = store is None
        self.store: Store = store or SQLiteStore(config.database_path, timeout=config.persistence_timeout)
        self._chat = chat
        self._completion = completion
        self._external_session = http_session is not None
        self._http_session = http_session
        self.retry = retry or RetryPolicy(max_retries=config.max_retries)
        self.cache = cache or ResponseCache(ttl=config.cache_ttl, max_entries=config.cache_max_entries)
        self.limiter = RateLimiter(config.requests_per_minute, max_queue_size=config.max_queue_size)
        self.guard = DedupGuard(self.store, handled_ttl=config.handled_token_ttl)
        self._orchestrator: CompletionOrchestrator | None = None
        self._processor: EventProcessor | None = None
        self._reporter: StatusReporter | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RelayContext:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def start(self) -> None:
        """Open the HTTP session, wire the components and start the call queue."""
        if self._orchestrator is not None:
            return
        if self._http_session is None and (self._chat is None or self._completion is None):
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.completion_timeout + 5.0),
            )
        if self._chat is None:
            assert self._http_session is not None  # noqa: S101
            self._chat = LineChatTransport(
                self.config.line_access_token,
                self._http_session,
                max_length=self.config.max_message_length,
            )
        if self._completion is None:
            assert self._http_session is not None  # noqa: S101
            self._completion = OpenAICompletionTransport(
                self.config.openai_api_key,
                self._http_session,
                model=self.config.openai_model,
                base_url=self.config.openai_base_url,
            )

        self._orchestrator = CompletionOrchestrator(
            self._completion,
            self.limiter,
            self.retry,
            self.cache,
            max_retries=self.config.max_retries,
            timeout=self.config.completion_timeout,
        )
        self._processor = EventProcessor(
            state=self.state,
            store=self.store,
            guard=self.guard,
            chat=self._chat,
            orchestrator=self._orchestrator,
        )
        self._reporter = StatusReporter(
            state=self.state,
            store=self.store,
            chat=self._chat,
            orchestrator=self._orchestrator,
            time_zone=self.config.time_zone,
        )
        if isinstance(self.store, SQLiteStore):
            await self.store.initialize()
        self.limiter.start()
        _logger.info(
            "Relay started rpm=%d min_gap_ms=%d cache_ttl=%.0fs",
            self.config.requests_per_minute,
            self.limiter.min_gap_ms,
            self.config.cache_ttl,
        )

    async def aclose(self) -> None:
        """Finish in-flight events, drain the call queue, release resources."""
        if self._processor is not None:
            await self._processor.drain()
        await self.limiter.aclose(drain=True)
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if self._owns_store and isinstance(self.store, SQLiteStore):
            await self.store.close()
        _logger.info("Relay stopped")

    # ------------------------------------------------------------------
    # Wired components
    # ------------------------------------------------------------------

    def _require_started(self) -> None:
        if self._orchestrator is None:
            raise RelayError("Relay not started. Use 'async with RelayContext(...) as ctx:'")

    @property
    def orchestrator(self) -> CompletionOrchestrator:
        self._require_started()
        assert self._orchestrator is not None  # noqa: S101
        return self._orchestrator

    @property
    def processor(self) -> EventProcessor:
        self._require_started()
        assert self._processor is not None  # noqa: S101
        return self._processor

    @property
    def reporter(self) -> StatusReporter:
        self._require_started()
        assert self._reporter is not None  # noqa: S101
        return self._reporter
