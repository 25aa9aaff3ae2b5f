from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass

import pytest
import pytest_asyncio

from sensorrelay._cache import ResponseCache
from sensorrelay._constants import MSG_AI_UNAVAILABLE, MSG_EMPTY_ANSWER, MSG_NO_SENSOR_DATA, MSG_PLEASE_WAIT
from sensorrelay._ratelimit import RateLimiter
from sensorrelay._retry import RetryPolicy
from sensorrelay.dedup import DedupGuard
from sensorrelay.exceptions import ChatTransportError, UpstreamUnavailableError
from sensorrelay.formatting import status_summary
from sensorrelay.models.events import OtherMessage, TextMessage
from sensorrelay.orchestrator import CompletionOrchestrator
from sensorrelay.processor import EventProcessor, Outcome
from sensorrelay.state import SensorState
from sensorrelay.store import SQLiteStore

QUESTION = "ตอนนี้ควรตากผ้าไหม"


async def _no_sleep(_delay: float) -> None:
    return None


class _FakeChat:
    def __init__(self, *, fail_reply: bool = False) -> None:
        self.replies: list[tuple[str, str]] = []
        self.pushes: list[tuple[str, str]] = []
        self._fail_reply = fail_reply

    async def reply(self, reply_token: str, text: str) -> None:
        if self._fail_reply:
            raise ChatTransportError("HTTP 400 from LINE /reply", status_code=400, endpoint="/reply")
        self.replies.append((reply_token, text))

    async def push(self, user_id: str, text: str) -> None:
        self.pushes.append((user_id, text))


class _FakeCompletion:
    def __init__(self, replies: list[str | Exception]) -> None:
        self._replies = list(replies)
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@dataclass
class _Harness:
    state: SensorState
    store: SQLiteStore
    chat: _FakeChat
    completion: _FakeCompletion
    limiter: RateLimiter
    processor: EventProcessor

    def feed(self) -> None:
        self.state.ingest({"light": 20000, "temp": 32, "humidity": 55})


@pytest_asyncio.fixture
async def make_harness() -> AsyncIterator:
    created: list[_Harness] = []

    def _make(replies: list[str | Exception] | None = None, *, fail_reply: bool = False) -> _Harness:
        state = SensorState()
        store = SQLiteStore()
        chat = _FakeChat(fail_reply=fail_reply)
        completion = _FakeCompletion(replies or [])
        limiter = RateLimiter(600, sleep=_no_sleep)
        orchestrator = CompletionOrchestrator(
            completion,
            limiter,
            RetryPolicy(sleep=_no_sleep),
            ResponseCache(),
        )
        processor = EventProcessor(
            state=state,
            store=store,
            guard=DedupGuard(store),
            chat=chat,
            orchestrator=orchestrator,
        )
        harness = _Harness(state, store, chat, completion, limiter, processor)
        created.append(harness)
        return harness

    yield _make

    for harness in created:
        await harness.limiter.aclose(drain=False)
        await harness.store.close()


def _text(text: str, token: str = "reply-token-1") -> TextMessage:
    return TextMessage(reply_token=token, user_id="U1", text=text)


@pytest.mark.asyncio
async def test_no_sensor_data_replies_without_calling_model(make_harness) -> None:
    h = make_harness(["unused"])

    outcome = await h.processor.process(_text(QUESTION))

    assert outcome is Outcome.NO_DATA
    assert h.chat.replies == [("reply-token-1", MSG_NO_SENSOR_DATA)]
    assert h.chat.pushes == []
    assert h.completion.prompts == []
    assert await h.store.count_pending() == 0
    assert [u.user_id for u in await h.store.list_users()] == ["U1"]


@pytest.mark.asyncio
async def test_unsupported_text_gets_status_summary(make_harness) -> None:
    h = make_harness()
    h.feed()

    outcome = await h.processor.process(_text("hello"))

    assert outcome is Outcome.STATUS
    assert h.chat.replies == [("reply-token-1", status_summary(h.state.latest))]
    assert h.completion.prompts == []


@pytest.mark.asyncio
async def test_non_text_message_gets_status_summary(make_harness) -> None:
    h = make_harness()
    h.feed()

    outcome = await h.processor.process(OtherMessage(reply_token="tok-s", user_id="U1", message_type="sticker"))

    assert outcome is Outcome.STATUS
    assert h.chat.replies[0][1].startswith("📊 สภาพอากาศล่าสุด :")


@pytest.mark.asyncio
async def test_supported_question_gets_wait_notice_then_pushed_answer(make_harness) -> None:
    h = make_harness(["<think>sunny</think>ควรตากผ้าครับ แดดดี"])
    h.feed()

    outcome = await h.processor.process(_text(f"  {QUESTION} "))

    assert outcome is Outcome.ANSWERED
    assert h.chat.replies == [("reply-token-1", MSG_PLEASE_WAIT)]
    assert h.chat.pushes == [("U1", f"{QUESTION}?\n- คำตอบ จาก AI : ควรตากผ้าครับ แดดดี")]
    assert await h.store.count_pending() == 0


@pytest.mark.asyncio
async def test_same_token_processed_concurrently_replies_once(make_harness) -> None:
    h = make_harness(["ตากได้"])
    h.feed()

    outcomes = await asyncio.gather(h.processor.process(_text(QUESTION)), h.processor.process(_text(QUESTION)))

    assert sorted(outcomes) == sorted([Outcome.ANSWERED, Outcome.DUPLICATE])
    assert len(h.chat.replies) == 1
    assert len(h.chat.pushes) == 1
    assert len(h.completion.prompts) == 1


@pytest.mark.asyncio
async def test_redelivery_after_completion_is_ignored(make_harness) -> None:
    h = make_harness()
    h.feed()

    assert await h.processor.process(_text("hello")) is Outcome.STATUS
    assert await h.processor.process(_text("hello")) is Outcome.DUPLICATE
    assert len(h.chat.replies) == 1


@pytest.mark.asyncio
async def test_model_failure_pushes_unavailable_notice(make_harness) -> None:
    h = make_harness([UpstreamUnavailableError("HTTP 503", status_code=503)])
    h.feed()

    outcome = await h.processor.process(_text(QUESTION))

    assert outcome is Outcome.FAILED
    assert h.chat.pushes == [("U1", MSG_AI_UNAVAILABLE)]
    assert await h.store.count_pending() == 0


@pytest.mark.asyncio
async def test_empty_model_answer_pushes_empty_notice(make_harness) -> None:
    h = make_harness(["   "])
    h.feed()

    outcome = await h.processor.process(_text(QUESTION))

    assert outcome is Outcome.FAILED
    assert h.chat.pushes == [("U1", MSG_EMPTY_ANSWER)]


@pytest.mark.asyncio
async def test_chat_failure_still_clears_pending_record(make_harness) -> None:
    h = make_harness(fail_reply=True)
    h.feed()

    outcome = await h.processor.process(_text("hello"))

    assert outcome is Outcome.STATUS
    assert h.chat.replies == []
    assert await h.store.count_pending() == 0


@pytest.mark.asyncio
async def test_spawn_runs_events_in_background(make_harness) -> None:
    h = make_harness()
    h.feed()

    tasks = h.processor.spawn([_text("a", "tok-a"), _text("b", "tok-b"), _text("a", "tok-a")])
    assert len(tasks) == 3

    await h.processor.drain()

    assert h.processor.in_flight == 0
    assert sorted(t.result() for t in tasks) == sorted([Outcome.STATUS, Outcome.STATUS, Outcome.DUPLICATE])
    assert {token for token, _ in h.chat.replies} == {"tok-a", "tok-b"}
