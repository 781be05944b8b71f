"""
Per-provider circuit breaker.

After repeated failed jobs a provider is short-circuited for a cooldown so that no
browser session is spent on it, then a single trial job is let through (half-open).
An explicit rate-limit signal blocks the provider for a longer, separate window.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from staywatch.config import get_settings
from staywatch.errors import ErrorKind

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"        # normal operation
    OPEN = "OPEN"            # failing fast
    HALF_OPEN = "HALF_OPEN"  # one trial job in flight


@dataclass
class CircuitConfig:
    failure_threshold: int = 5
    cooldown_seconds: float = 1800.0
    rate_limit_cooldown_seconds: float = 7200.0

    @classmethod
    def from_settings(cls) -> "CircuitConfig":
        settings = get_settings()
        return cls(
            failure_threshold=settings.circuit_failure_threshold,
            cooldown_seconds=settings.circuit_cooldown_minutes * 60,
            rate_limit_cooldown_seconds=settings.rate_limit_cooldown_minutes * 60,
        )


class ProviderCircuitBreaker:
    def __init__(
        self,
        provider_code: str,
        config: Optional[CircuitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider_code = provider_code
        self.config = config or CircuitConfig.from_settings()
        self._clock = clock
        self._lock = asyncio.Lock()

        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.opened_at: Optional[float] = None
        self.rate_limited_until: Optional[float] = None
        self.last_error_kind: Optional[ErrorKind] = None
        self._trial_in_flight = False

    async def allow(self) -> bool:
        """Whether a job may run now. Moves OPEN to HALF_OPEN once the cooldown elapsed."""
        async with self._lock:
            now = self._clock()
            if self.rate_limited_until is not None:
                if now < self.rate_limited_until:
                    return False
                self.rate_limited_until = None

            if self.state == CircuitState.CLOSED:
                return True

            if self.state == CircuitState.OPEN:
                if self.opened_at is not None and now - self.opened_at >= self.config.cooldown_seconds:
                    self.state = CircuitState.HALF_OPEN
                    self._trial_in_flight = True
                    logger.info(f"[{self.provider_code}] Circuit half-open, admitting one trial job")
                    return True
                return False

            # HALF_OPEN: only the single trial job
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    async def record_success(self) -> None:
        async with self._lock:
            if self.state != CircuitState.CLOSED:
                logger.info(f"[{self.provider_code}] Circuit closed after successful job")
            self._reset()

    async def record_failure(self, kind: ErrorKind) -> None:
        async with self._lock:
            now = self._clock()
            self.consecutive_failures += 1
            self.last_error_kind = kind

            if kind == ErrorKind.RATE_LIMITED:
                self.rate_limited_until = now + self.config.rate_limit_cooldown_seconds
                logger.warning(
                    f"[{self.provider_code}] Rate limited, pausing for "
                    f"{self.config.rate_limit_cooldown_seconds / 60:.0f} minutes"
                )

            if self.state == CircuitState.HALF_OPEN:
                self._trip(now)
            elif self.state == CircuitState.CLOSED and self.consecutive_failures >= self.config.failure_threshold:
                self._trip(now)

    async def release_trial(self) -> None:
        """Give back an admitted trial slot when the job never ran (e.g. cancelled)."""
        async with self._lock:
            self._trial_in_flight = False

    def _trip(self, now: float) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = now
        self._trial_in_flight = False
        logger.warning(
            f"🔌 [{self.provider_code}] Circuit open after {self.consecutive_failures} consecutive failures "
            f"(last: {self.last_error_kind.value if self.last_error_kind else 'unknown'})"
        )

    def _reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.opened_at = None
        self._trial_in_flight = False

    def snapshot(self) -> dict:
        now = self._clock()
        reopen_in = None
        if self.state == CircuitState.OPEN and self.opened_at is not None:
            reopen_in = max(0.0, self.config.cooldown_seconds - (now - self.opened_at))
        rate_limited_for = None
        if self.rate_limited_until is not None and self.rate_limited_until > now:
            rate_limited_for = self.rate_limited_until - now
        return {
            "provider": self.provider_code,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "last_error_kind": self.last_error_kind.value if self.last_error_kind else None,
            "retry_in_seconds": round(reopen_in, 1) if reopen_in is not None else None,
            "rate_limited_for_seconds": round(rate_limited_for, 1) if rate_limited_for is not None else None,
        }


class CircuitBreakerRegistry:
    """One breaker per provider code, created on first use."""

    def __init__(self, config: Optional[CircuitConfig] = None, clock: Callable[[], float] = time.monotonic):
        self._config = config
        self._clock = clock
        self._breakers: dict[str, ProviderCircuitBreaker] = {}

    def get(self, provider_code: str) -> ProviderCircuitBreaker:
        if provider_code not in self._breakers:
            self._breakers[provider_code] = ProviderCircuitBreaker(
                provider_code, config=self._config, clock=self._clock
            )
        return self._breakers[provider_code]

    def snapshot(self) -> list[dict]:
        return [breaker.snapshot() for _, breaker in sorted(self._breakers.items())]
