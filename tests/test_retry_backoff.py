from __future__ import annotations

import pytest

from scripts.backoff import exponential_backoff, retry_async


def test_exponential_backoff_caps_delay_and_counts_attempts():
    schedule = list(exponential_backoff(max_attempts=4, base_delay=1.0, max_delay=3.0, jitter=0))
    assert schedule == [(1, 1.0), (2, 2.0), (3, 3.0), (4, 3.0)]


def test_exponential_backoff_validates_arguments():
    with pytest.raises(ValueError):
        list(exponential_backoff(max_attempts=0))


@pytest.mark.asyncio
async def test_retry_async_retries_listed_errors_then_succeeds():
    attempts = 0
    sleeps: list[float] = []

    async def flaky() -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise ConnectionError("reset")
        return "ok"

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    result = await retry_async(flaky, retry_on=(ConnectionError,), max_attempts=3, jitter=0, sleep=fake_sleep)

    assert result == "ok"
    assert attempts == 3
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retry_async_reraises_last_error_after_budget():
    async def always_fails() -> None:
        raise TimeoutError("slow")

    async def fake_sleep(seconds: float) -> None:
        return None

    with pytest.raises(TimeoutError):
        await retry_async(always_fails, retry_on=(TimeoutError,), max_attempts=2, sleep=fake_sleep)


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_unlisted_errors():
    attempts = 0

    async def broken() -> None:
        nonlocal attempts
        attempts += 1
        raise KeyError("nope")

    with pytest.raises(KeyError):
        await retry_async(broken, retry_on=(ConnectionError,), max_attempts=3)
    assert attempts == 1
