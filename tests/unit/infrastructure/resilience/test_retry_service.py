import pytest

from rescoord.domain.models.errors import MaxRetryError
from rescoord.domain.models.resilience import RateLimiterOptions
from rescoord.infrastructure.cache.cache_store import CacheStore
from rescoord.infrastructure.resilience.rate_limiter import SlidingWindowRateLimiter
from rescoord.infrastructure.resilience.retry_service import RetryService


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class Flaky:
    """Raises the given errors in order, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0
        self.__name__ = "flaky"

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def sleep():
    return FakeSleep()

@pytest.fixture
def service(sleep):
    return RetryService(max_retries=3, initial_backoff_s=1.0, backoff_factor=2.0, max_backoff_s=3.0, sleep=sleep)


def test_compute_backoff_is_capped(service):
    assert [service.compute_backoff(n) for n in range(4)] == [1.0, 2.0, 3.0, 3.0]

def test_from_policy():
    service = RetryService.from_policy(
        {"max_retries": 5, "initial_delay": 0.5, "factor": 3.0, "max_delay": 10.0}
    )
    assert service.max_retries == 5
    assert service.compute_backoff(1) == 1.5

@pytest.mark.asyncio
async def test_success_without_retry(service, sleep):
    action = Flaky([])
    assert await service.execute_with_retry(action) == "ok"
    assert action.calls == 1
    assert sleep.delays == []

@pytest.mark.asyncio
async def test_retryable_errors_are_retried_with_backoff(service, sleep):
    action = Flaky([ConnectionError("reset"), TimeoutError("slow")])
    assert await service.execute_with_retry(action, context="news") == "ok"
    assert action.calls == 3
    assert sleep.delays == [1.0, 2.0]
    assert service.get_retry_count("news") == 0

@pytest.mark.asyncio
async def test_arguments_are_passed_through(service):
    async def add(a, b=0):
        return a + b

    assert await service.execute_with_retry(add, 1, b=2) == 3

@pytest.mark.asyncio
async def test_non_retryable_error_is_raised_immediately(service, sleep):
    action = Flaky([ValueError("bad input")])
    with pytest.raises(ValueError, match="bad input"):
        await service.execute_with_retry(action)
    assert action.calls == 1
    assert sleep.delays == []

@pytest.mark.asyncio
async def test_max_retries_raises_max_retry_error(service, sleep):
    error = ConnectionError("down")
    action = Flaky([error] * 10)

    with pytest.raises(MaxRetryError) as exc_info:
        await service.execute_with_retry(action, context="feed")

    assert exc_info.value.original_exception is error
    assert exc_info.value.attempts == 4
    assert action.calls == 4
    assert sleep.delays == [1.0, 2.0, 3.0]
    assert service.get_retry_count("feed") == 3

@pytest.mark.asyncio
async def test_retry_budget_is_shared_per_context(service, sleep):
    exhausted = Flaky([ConnectionError("down")] * 10)
    with pytest.raises(MaxRetryError):
        await service.execute_with_retry(exhausted, context="feed")

    # The exhausted context fails after a single attempt
    second = Flaky([ConnectionError("still down")] * 10)
    with pytest.raises(MaxRetryError) as exc_info:
        await service.execute_with_retry(second, context="feed")
    assert second.calls == 1
    assert exc_info.value.attempts == 1

    service.clear_retry_count("feed")
    third = Flaky([ConnectionError("down")])
    assert await service.execute_with_retry(third, context="feed") == "ok"

@pytest.mark.asyncio
async def test_cache_fallback_after_exhausted_retries(sleep, fake_clock):
    cache = CacheStore(clock=fake_clock, auto_cleanup=False)
    cache.set("news:latest", ["stale headline"])
    service = RetryService(cache_service=cache, max_retries=1, sleep=sleep)

    action = Flaky([ConnectionError("down")] * 5)
    result = await service.execute_with_retry(action, cache_key="news:latest")

    assert result == ["stale headline"]
    assert action.calls == 2

@pytest.mark.asyncio
async def test_cache_fallback_can_be_disabled(sleep, fake_clock):
    cache = CacheStore(clock=fake_clock, auto_cleanup=False)
    cache.set("k", "cached")
    service = RetryService(cache_service=cache, max_retries=0, sleep=sleep)

    with pytest.raises(MaxRetryError):
        await service.execute_with_retry(
            Flaky([ConnectionError("down")]), cache_key="k", use_cache_fallback=False
        )

@pytest.mark.asyncio
async def test_failed_attempts_do_not_consume_rate_limit(sleep, fake_clock):
    limiter = SlidingWindowRateLimiter(RateLimiterOptions(max_requests=2, window_seconds=60), clock=fake_clock)
    service = RetryService(rate_limiter=limiter, max_retries=3, sleep=sleep)

    action = Flaky([ConnectionError("a"), ConnectionError("b"), ConnectionError("c")])
    assert await service.execute_with_retry(action) == "ok"
    assert limiter.get_remaining_requests() == 1
