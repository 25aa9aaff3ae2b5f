from __future__ import annotations

import pytest

from sensorrelay._retry import RetryPolicy, parse_retry_after
from sensorrelay.exceptions import UpstreamThrottledError, UpstreamUnavailableError


class _Sleeper:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class _FlakyCall:
    def __init__(self, failures: list[Exception], result: str = "ok") -> None:
        self._failures = list(failures)
        self._result = result
        self.attempts = 0

    async def __call__(self) -> str:
        self.attempts += 1
        if self._failures:
            raise self._failures.pop(0)
        return self._result


@pytest.mark.asyncio
async def test_two_throttles_then_success_takes_three_attempts() -> None:
    sleeper = _Sleeper()
    policy = RetryPolicy(max_retries=3, sleep=sleeper, rng=lambda: 0.0)
    call = _FlakyCall([UpstreamThrottledError("429"), UpstreamThrottledError("429")])

    assert await policy.execute(call) == "ok"
    assert call.attempts == 3
    assert sleeper.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_throttling_error_fails_after_one_attempt() -> None:
    sleeper = _Sleeper()
    policy = RetryPolicy(max_retries=3, sleep=sleeper)
    call = _FlakyCall([UpstreamUnavailableError("HTTP 500", status_code=500)])

    with pytest.raises(UpstreamUnavailableError):
        await policy.execute(call)
    assert call.attempts == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_exhausted_retries_reraise_throttled_error() -> None:
    sleeper = _Sleeper()
    policy = RetryPolicy(max_retries=2, sleep=sleeper, rng=lambda: 0.0)
    call = _FlakyCall([UpstreamThrottledError("429")] * 5)

    with pytest.raises(UpstreamThrottledError):
        await policy.execute(call)
    assert call.attempts == 3
    assert len(sleeper.delays) == 2


@pytest.mark.asyncio
async def test_server_hint_wins_over_computed_backoff() -> None:
    sleeper = _Sleeper()
    policy = RetryPolicy(max_retries=1, sleep=sleeper, rng=lambda: 1.0)
    call = _FlakyCall([UpstreamThrottledError("429", retry_after_ms=250.0)])

    assert await policy.execute(call) == "ok"
    assert sleeper.delays == [0.25]


@pytest.mark.asyncio
async def test_per_call_retry_override() -> None:
    sleeper = _Sleeper()
    policy = RetryPolicy(max_retries=5, sleep=sleeper)
    call = _FlakyCall([UpstreamThrottledError("429")] * 5)

    with pytest.raises(UpstreamThrottledError):
        await policy.execute(call, max_retries=0)
    assert call.attempts == 1


def test_backoff_is_exponential_with_jitter_and_capped() -> None:
    policy = RetryPolicy(rng=lambda: 1.0)

    assert policy.backoff_ms(0) == 1800.0
    assert policy.backoff_ms(2) == 4800.0
    assert policy.backoff_ms(10) == 30000.0


def test_negative_max_retries_rejected() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)


@pytest.mark.parametrize(
    ("value", "unit", "expected"),
    [
        ("2", "s", 2000.0),
        ("1.5", "s", 1500.0),
        ("250", "ms", 250.0),
        (0, "s", 0.0),
        (None, "s", None),
        ("", "s", None),
        ("soon", "s", None),
        ("-1", "s", None),
        ("Wed, 21 Oct 2015 07:28:00 GMT", "s", None),
    ],
)
def test_parse_retry_after(value: object, unit: str, expected: float | None) -> None:
    assert parse_retry_after(value, unit=unit) == expected
