"""Tests for the per-provider circuit breaker."""
import pytest

from staywatch.errors import ErrorKind
from staywatch.scrapers.circuit_breaker import (
    CircuitBreakerRegistry,
    CircuitConfig,
    CircuitState,
    ProviderCircuitBreaker,
)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    config = CircuitConfig(failure_threshold=5, cooldown_seconds=600, rate_limit_cooldown_seconds=3600)
    return ProviderCircuitBreaker("haven", config=config, clock=clock)


async def _fail(breaker, times, kind=ErrorKind.TRANSIENT_NETWORK):
    for _ in range(times):
        assert await breaker.allow()
        await breaker.record_failure(kind)


class TestCircuitBreaker:
    async def test_opens_after_threshold(self, breaker):
        await _fail(breaker, 4)
        assert breaker.state == CircuitState.CLOSED

        await _fail(breaker, 1)

        assert breaker.state == CircuitState.OPEN
        assert await breaker.allow() is False

    async def test_success_resets_failure_count(self, breaker):
        await _fail(breaker, 4)
        await breaker.record_success()
        await _fail(breaker, 4)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 4

    async def test_half_open_admits_single_trial(self, breaker, clock):
        await _fail(breaker, 5)
        clock.advance(601)

        assert await breaker.allow() is True
        assert breaker.state == CircuitState.HALF_OPEN
        assert await breaker.allow() is False

    async def test_trial_success_closes(self, breaker, clock):
        await _fail(breaker, 5)
        clock.advance(601)
        await breaker.allow()

        await breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0
        assert await breaker.allow() is True

    async def test_trial_failure_reopens(self, breaker, clock):
        await _fail(breaker, 5)
        clock.advance(601)
        await breaker.allow()

        await breaker.record_failure(ErrorKind.CHALLENGE_UNRESOLVED)

        assert breaker.state == CircuitState.OPEN
        assert await breaker.allow() is False
        assert breaker.snapshot()["retry_in_seconds"] == 600.0

    async def test_released_trial_can_be_retried(self, breaker, clock):
        await _fail(breaker, 5)
        clock.advance(601)
        await breaker.allow()

        await breaker.release_trial()

        assert await breaker.allow() is True

    async def test_rate_limit_blocks_for_its_own_window(self, breaker, clock):
        await _fail(breaker, 1, kind=ErrorKind.RATE_LIMITED)

        assert breaker.state == CircuitState.CLOSED
        assert await breaker.allow() is False
        assert breaker.snapshot()["rate_limited_for_seconds"] == 3600.0

        clock.advance(3601)
        assert await breaker.allow() is True


class TestRegistry:
    async def test_breakers_are_per_provider(self, clock):
        registry = CircuitBreakerRegistry(
            CircuitConfig(failure_threshold=1, cooldown_seconds=60), clock=clock
        )
        await registry.get("haven").record_failure(ErrorKind.TRANSIENT_NETWORK)

        assert await registry.get("haven").allow() is False
        assert await registry.get("butlins").allow() is True
        assert registry.get("haven") is registry.get("haven")

        snapshot = registry.snapshot()
        assert [entry["provider"] for entry in snapshot] == ["butlins", "haven"]
        assert snapshot[1]["state"] == "OPEN"
        assert snapshot[1]["last_error_kind"] == "TransientNetworkError"
