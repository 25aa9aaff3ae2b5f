"""Process inbound chat events.

Per event::

    received -> [duplicate]
    received -> admitted -> classified -> {status reply | model reply}
             -> delivered -> pending record cleared

The pending record is cleared exactly once, whichever branch ran.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from enum import StrEnum

from sensorrelay._constants import (
    ANSWER_TEMPLATE,
    MSG_AI_UNAVAILABLE,
    MSG_EMPTY_ANSWER,
    MSG_NO_SENSOR_DATA,
    MSG_PLEASE_WAIT,
    SUPPORTED_QUESTIONS,
)
from sensorrelay._redact import mask_token
from sensorrelay._transport import ChatTransport
from sensorrelay.dedup import DedupGuard
from sensorrelay.exceptions import (
    ChatTransportError,
    PersistenceError,
    RateLimiterClosedError,
    UpstreamError,
)
from sensorrelay.formatting import status_summary
from sensorrelay.models.events import ChatEvent, TextMessage
from sensorrelay.orchestrator import CompletionOrchestrator
from sensorrelay.state import SensorState
from sensorrelay.store import Store

_logger = logging.getLogger(__name__)


class Outcome(StrEnum):
    DUPLICATE = "duplicate"
    NOT_ADMITTED = "not_admitted"
    NO_DATA = "no_data"
    STATUS = "status"
    ANSWERED = "answered"
    FAILED = "failed"


class EventProcessor:
    """Drive one reply per admitted chat event."""

    def __init__(
        self,
        *,
        state: SensorState,
        store: Store,
        guard: DedupGuard,
        chat: ChatTransport,
        orchestrator: CompletionOrchestrator,
    ) -> None:
        self._state = state
        self._store = store
        self._guard = guard
        self._chat = chat
        self._orchestrator = orchestrator
        self._tasks: set[asyncio.Task[Outcome]] = set()

    # ------------------------------------------------------------------
    # Fire-and-forget dispatch
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def spawn(self, events: Iterable[ChatEvent]) -> list[asyncio.Task[Outcome]]:
        """Start processing *events* in the background and return at once."""
        loop = asyncio.get_running_loop()
        spawned: list[asyncio.Task[Outcome]] = []
        for event in events:
            task = loop.create_task(self.process(event), name=f"chat-event-{mask_token(event.reply_token)}")
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
            spawned.append(task)
        return spawned

    def _on_task_done(self, task: asyncio.Task[Outcome]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            _logger.debug("Chat event task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("Chat event task %s failed", task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        """Wait for every spawned event to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Per-event state machine
    # ------------------------------------------------------------------

    async def process(self, event: ChatEvent) -> Outcome:
        try:
            await self._store.ensure_user(event.user_id)
        except PersistenceError:
            _logger.warning("Could not register user=%s", mask_token(event.user_id), exc_info=True)

        try:
            admission = await self._guard.admit(event)
        except PersistenceError:
            _logger.error("Dedup check failed for token=%s; event dropped", mask_token(event.reply_token), exc_info=True)
            return Outcome.NOT_ADMITTED
        if not admission.admitted or admission.record is None:
            return Outcome.DUPLICATE

        try:
            outcome = await self._respond(event)
        finally:
            await self._guard.release(admission.record)
        _logger.debug("Event token=%s finished outcome=%s", mask_token(event.reply_token), outcome)
        return outcome

    async def _respond(self, event: ChatEvent) -> Outcome:
        reading = self._state.latest
        if reading is None:
            await self._reply(event, MSG_NO_SENSOR_DATA)
            return Outcome.NO_DATA

        question = event.normalized_text if isinstance(event, TextMessage) else None
        if question is None or question not in SUPPORTED_QUESTIONS:
            await self._reply(event, status_summary(reading))
            return Outcome.STATUS

        await self._reply(event, MSG_PLEASE_WAIT)
        try:
            answer = await self._orchestrator.answer(question, reading)
        except (UpstreamError, RateLimiterClosedError):
            _logger.warning("Model answer failed for token=%s", mask_token(event.reply_token), exc_info=True)
            await self._push(event.user_id, MSG_AI_UNAVAILABLE)
            return Outcome.FAILED

        if not answer.strip():
            await self._push(event.user_id, MSG_EMPTY_ANSWER)
            return Outcome.FAILED

        # The reply token was spent on the wait notice; the answer is pushed.
        await self._push(event.user_id, ANSWER_TEMPLATE.format(question=question, answer=answer.strip()))
        return Outcome.ANSWERED

    async def _reply(self, event: ChatEvent, text: str) -> bool:
        try:
            await self._chat.reply(event.reply_token, text)
        except ChatTransportError:
            _logger.warning("LINE reply failed token=%s", mask_token(event.reply_token), exc_info=True)
            return False
        return True

    async def _push(self, user_id: str, text: str) -> bool:
        try:
            await self._chat.push(user_id, text)
        except ChatTransportError:
            _logger.warning("LINE push failed user=%s", mask_token(user_id), exc_info=True)
            return False
        return True
