"""
Tests for the bounded retry loop.

Transient failures (429, 5xx, transport errors) are retried with exponential
backoff; anything else fails immediately. Sleep and clock are injected so no
test waits on real time.
"""

import pytest

from paperrank.services.paper_ranking.config import RankingConfig
from paperrank.services.paper_ranking.retry import (
    INITIAL_BACKOFF_SECONDS,
    MAX_RETRIES,
    RETRYABLE_STATUS_CODES,
    RetryableError,
    RetryPolicy,
    parse_retry_after,
    retry_async,
)


class _RecordingSleep:
    def __init__(self, clock=None):
        self.delays = []
        self.clock = clock

    async def __call__(self, delay):
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)


def test_defaults():
    assert RETRYABLE_STATUS_CODES == {429, 500, 502, 503, 504}
    assert MAX_RETRIES == 3
    assert INITIAL_BACKOFF_SECONDS == 1.0


def test_policy_from_config():
    policy = RetryPolicy.from_config(RankingConfig(max_retries=5, initial_backoff_seconds=0.5, max_backoff_seconds=4.0))
    assert (policy.max_retries, policy.initial_backoff, policy.max_backoff) == (5, 0.5, 4.0)


def test_delay_grows_exponentially_and_is_capped():
    policy = RetryPolicy(initial_backoff=1.0, max_backoff=5.0)
    assert [policy.compute_delay(a) for a in range(4)] == [1.0, 2.0, 4.0, 5.0]


def test_retry_after_overrides_backoff_within_cap():
    policy = RetryPolicy(initial_backoff=1.0, max_backoff=8.0)
    assert policy.compute_delay(0, retry_after=3.0) == 3.0
    assert policy.compute_delay(0, retry_after=120.0) == 8.0

    ignoring = RetryPolicy(respect_retry_after=False)
    assert ignoring.compute_delay(0, retry_after=3.0) == 1.0


@pytest.mark.parametrize("status", [429, 500, 502, 503, 504, None])
def test_transient_statuses_are_retried(status):
    assert RetryPolicy().should_retry(status, 0) is True


@pytest.mark.parametrize("status", [400, 401, 403, 404])
def test_client_errors_are_not_retried(status):
    assert RetryPolicy().should_retry(status, 0) is False


def test_should_retry_stops_at_max_retries():
    policy = RetryPolicy(max_retries=2)
    assert policy.should_retry(503, 1) is True
    assert policy.should_retry(503, 2) is False


@pytest.mark.parametrize("raw,expected", [("5", 5.0), (" 2.5 ", 2.5), ("-1", None), ("Wed, 21 Oct 2015 07:28:00 GMT", None), (None, None)])
def test_parse_retry_after(raw, expected):
    assert parse_retry_after(raw) == expected


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures():
    sleep = _RecordingSleep()
    attempts = []

    async def operation(attempt):
        attempts.append(attempt)
        if attempt < 2:
            raise RetryableError(status=503)
        return "ok"

    result = await retry_async(operation, RetryPolicy(), sleep=sleep)

    assert result == "ok"
    assert attempts == [0, 1, 2]
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    sleep = _RecordingSleep()
    calls = []

    async def operation(attempt):
        calls.append(attempt)
        raise RetryableError(status=429)

    with pytest.raises(RetryableError) as exc_info:
        await retry_async(operation, RetryPolicy(max_retries=3), sleep=sleep)

    assert exc_info.value.status == 429
    assert len(calls) == 4
    assert sleep.delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_honours_retry_after_header_value():
    sleep = _RecordingSleep()

    async def operation(attempt):
        if attempt == 0:
            raise RetryableError(status=429, retry_after=2.0)
        return attempt

    assert await retry_async(operation, RetryPolicy(), sleep=sleep) == 1
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_non_retryable_errors_propagate_immediately():
    sleep = _RecordingSleep()

    async def operation(attempt):
        raise ValueError("bad payload")

    with pytest.raises(ValueError):
        await retry_async(operation, RetryPolicy(), sleep=sleep)
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_non_retryable_status_is_not_retried():
    sleep = _RecordingSleep()

    async def operation(attempt):
        raise RetryableError(status=404)

    with pytest.raises(RetryableError):
        await retry_async(operation, RetryPolicy(), sleep=sleep)
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_time_budget_stops_retrying_early(fake_clock):
    sleep = _RecordingSleep(clock=fake_clock)
    calls = []

    async def operation(attempt):
        calls.append(attempt)
        raise RetryableError(status=500)

    with pytest.raises(RetryableError):
        await retry_async(
            operation,
            RetryPolicy(max_retries=10),
            sleep=sleep,
            clock=fake_clock,
            budget_seconds=3.5,
        )

    # 1s + 2s fit in the budget, the next 4s wait would not
    assert sleep.delays == [1.0, 2.0]
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_absolute_deadline_overrides_the_relative_budget(fake_clock):
    sleep = _RecordingSleep(clock=fake_clock)

    async def operation(attempt):
        raise RetryableError(status=503)

    with pytest.raises(RetryableError):
        await retry_async(
            operation,
            RetryPolicy(max_retries=10),
            sleep=sleep,
            clock=fake_clock,
            budget_seconds=100.0,
            deadline=fake_clock() + 1.5,
        )

    assert sleep.delays == [1.0]
