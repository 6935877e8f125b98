import asyncio

import pytest

from sitegen.retry import retry_on_rate_limit, retry_on_timeout, retry_on_transient, with_retry


class Flaky:
    def __init__(self, failures: int, error: Exception | None = None):
        self.failures = failures
        self.error = error or RuntimeError("boom")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


async def test_succeeds_after_two_failures_with_two_delays():
    delays: list[float] = []

    async def sleep(d: float) -> None:
        delays.append(d)

    fn = Flaky(failures=2)
    assert await with_retry(fn, max_attempts=3, sleep=sleep) == "ok"
    assert fn.calls == 3
    assert delays == [1.0, 2.0]


async def test_exhaustion_reraises_last_error_without_trailing_sleep():
    delays: list[float] = []

    async def sleep(d: float) -> None:
        delays.append(d)

    fn = Flaky(failures=5, error=ValueError("still broken"))
    with pytest.raises(ValueError, match="still broken"):
        await with_retry(fn, max_attempts=3, sleep=sleep)
    assert fn.calls == 3
    assert delays == [1.0, 2.0]


async def test_delay_is_capped():
    delays: list[float] = []

    async def sleep(d: float) -> None:
        delays.append(d)

    fn = Flaky(failures=4)
    await with_retry(fn, max_attempts=5, initial_delay=4.0, max_delay=10.0, sleep=sleep)
    assert delays == [4.0, 8.0, 10.0, 10.0]


async def test_non_retryable_error_stops_immediately():
    delays: list[float] = []

    async def sleep(d: float) -> None:
        delays.append(d)

    fn = Flaky(failures=3, error=RuntimeError("invalid api key"))
    with pytest.raises(RuntimeError):
        await with_retry(fn, max_attempts=3, retry_if=retry_on_transient, sleep=sleep)
    assert fn.calls == 1
    assert delays == []


def test_predicates():
    assert retry_on_rate_limit(RuntimeError("429 Too Many Requests"))
    assert retry_on_timeout(asyncio.TimeoutError())
    assert retry_on_timeout(RuntimeError("ETIMEDOUT"))
    assert retry_on_transient(RuntimeError("upstream returned 503"))
    assert not retry_on_transient(RuntimeError("bad request"))
