"""
Extraction pipeline.

One job = one provider search. The job moves through
PENDING -> SESSION_ACQUIRED -> STRATEGY_ATTEMPT (one per strategy) -> SUCCEEDED | FAILED.

- The provider's circuit breaker is consulted before the session pool is touched
- Strategies run in the adapter's order, except that the last strategy that worked
  for the provider goes first
- TransientNetworkError and StructuralExtractionMismatch fall through to the next
  strategy; ChallengeUnresolved and RateLimited end the job immediately
- The whole job runs under a hard wall-clock timeout
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError

from staywatch.config import get_settings
from staywatch.errors import (
    ErrorKind,
    ExtractionError,
    StructuralExtractionMismatch,
    TransientNetworkError,
)
from staywatch.providers.base import ProviderAdapter
from staywatch.providers.registry import get_adapter
from staywatch.scrapers.circuit_breaker import CircuitBreakerRegistry
from staywatch.scrapers.records import RawRecord, SearchRequest, StrategyKind
from staywatch.scrapers.session_pool import BrowserSessionPool, ProviderSessionState
from staywatch.services.normalization import PricePoint, normalize_records
from staywatch.utils.clock import utcnow

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    PENDING = "PENDING"
    SESSION_ACQUIRED = "SESSION_ACQUIRED"
    STRATEGY_ATTEMPT = "STRATEGY_ATTEMPT"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass
class StrategyAttempt:
    strategy: StrategyKind
    succeeded: bool
    record_count: int = 0
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "strategy": self.strategy.value,
            "succeeded": self.succeeded,
            "recordCount": self.record_count,
            "errorKind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
            "durationMs": self.duration_ms,
        }


@dataclass
class JobOutcome:
    """Result of one extraction job, successful or not."""
    provider_code: str
    state: JobState = JobState.PENDING
    records: list[RawRecord] = field(default_factory=list)
    prices: list[PricePoint] = field(default_factory=list)
    strategy: Optional[StrategyKind] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    attempts: list[StrategyAttempt] = field(default_factory=list)
    snapshot_path: Optional[str] = None
    duration_ms: int = 0
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def is_success(self) -> bool:
        return self.state == JobState.SUCCEEDED

    @property
    def has_prices(self) -> bool:
        return len(self.prices) > 0

    def fail(self, kind: ErrorKind, message: str) -> None:
        self.state = JobState.FAILED
        self.error_kind = kind
        self.error_message = message


class ExtractionPipeline:
    def __init__(
        self,
        pool: BrowserSessionPool,
        adapter_lookup: Callable[[str], ProviderAdapter] = get_adapter,
        breakers: Optional[CircuitBreakerRegistry] = None,
        job_timeout: Optional[float] = None,
    ):
        self.pool = pool
        self._adapter_lookup = adapter_lookup
        self.breakers = breakers or CircuitBreakerRegistry()
        self.job_timeout = job_timeout if job_timeout is not None else get_settings().job_timeout_seconds

    async def run(self, request: SearchRequest) -> JobOutcome:
        code = request.provider_code
        outcome = JobOutcome(provider_code=code)
        started = time.monotonic()
        breaker = self.breakers.get(code)

        if not await breaker.allow():
            outcome.fail(
                ErrorKind.PROVIDER_UNAVAILABLE,
                f"Circuit open for {code}, job skipped without a browser session",
            )
            self._finish(outcome, started)
            logger.info(f"[{code}] Short-circuited: provider unavailable")
            return outcome

        try:
            await asyncio.wait_for(self._execute(request, outcome), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            outcome.fail(ErrorKind.TRANSIENT_NETWORK, f"Job exceeded {self.job_timeout:.0f}s wall-clock limit")
        except ExtractionError as e:
            outcome.fail(e.kind, str(e))
            outcome.snapshot_path = outcome.snapshot_path or e.snapshot_path
        except PlaywrightError as e:
            outcome.fail(ErrorKind.TRANSIENT_NETWORK, f"Browser error: {e}")
        except asyncio.CancelledError:
            await breaker.release_trial()
            raise
        except Exception as e:
            logger.exception(f"[{code}] Unexpected error during extraction")
            outcome.fail(ErrorKind.TRANSIENT_NETWORK, f"Unexpected error: {e}")

        if outcome.is_success:
            await breaker.record_success()
        else:
            await breaker.record_failure(outcome.error_kind or ErrorKind.TRANSIENT_NETWORK)

        self._finish(outcome, started)
        self._log_outcome(outcome)
        return outcome

    async def _execute(self, request: SearchRequest, outcome: JobOutcome) -> None:
        code = request.provider_code
        adapter = self._adapter_lookup(code)
        state = self.pool.state(code)

        async with self.pool.acquire(code) as session:
            outcome.state = JobState.SESSION_ACQUIRED
            last_error: Optional[ExtractionError] = None

            for strategy in self._ordered_strategies(adapter, state):
                outcome.state = JobState.STRATEGY_ATTEMPT
                attempt_started = time.monotonic()
                try:
                    records = await adapter.extract(session, request, strategy)
                    prices = normalize_records(records, request)
                    if records and not prices:
                        raise StructuralExtractionMismatch(
                            f"All {len(records)} records failed integrity checks",
                            provider_code=code,
                        )
                except (TransientNetworkError, StructuralExtractionMismatch) as e:
                    last_error = e
                    outcome.snapshot_path = outcome.snapshot_path or e.snapshot_path
                    outcome.attempts.append(StrategyAttempt(
                        strategy=strategy,
                        succeeded=False,
                        error_kind=e.kind,
                        message=str(e),
                        duration_ms=_elapsed_ms(attempt_started),
                    ))
                    logger.warning(f"[{code}] {strategy.value} failed ({e.kind.value}): {e.message}")
                    continue
                except ExtractionError as e:
                    outcome.attempts.append(StrategyAttempt(
                        strategy=strategy,
                        succeeded=False,
                        error_kind=e.kind,
                        message=str(e),
                        duration_ms=_elapsed_ms(attempt_started),
                    ))
                    raise

                outcome.attempts.append(StrategyAttempt(
                    strategy=strategy,
                    succeeded=True,
                    record_count=len(prices),
                    duration_ms=_elapsed_ms(attempt_started),
                ))
                outcome.state = JobState.SUCCEEDED
                outcome.strategy = strategy
                outcome.records = records
                outcome.prices = prices
                state.last_good_strategy = strategy
                return

        if outcome.attempts and all(
            attempt.error_kind == ErrorKind.STRUCTURAL_MISMATCH for attempt in outcome.attempts
        ):
            logger.warning(f"🧩 [{code}] Structure drift: every strategy ran but none produced records")
            outcome.fail(
                ErrorKind.STRUCTURAL_MISMATCH,
                f"All {len(outcome.attempts)} strategies produced no well-formed records",
            )
        elif last_error is not None:
            outcome.fail(last_error.kind, str(last_error))
        else:
            outcome.fail(ErrorKind.STRUCTURAL_MISMATCH, f"No strategies configured for {code}")

    @staticmethod
    def _ordered_strategies(adapter: ProviderAdapter, state: ProviderSessionState) -> list[StrategyKind]:
        strategies = list(adapter.strategies)
        preferred = state.last_good_strategy
        if preferred in strategies:
            strategies.remove(preferred)
            strategies.insert(0, preferred)
        return strategies

    @staticmethod
    def _finish(outcome: JobOutcome, started: float) -> None:
        outcome.duration_ms = _elapsed_ms(started)
        outcome.finished_at = utcnow()

    @staticmethod
    def _log_outcome(outcome: JobOutcome) -> None:
        code = outcome.provider_code
        if outcome.is_success:
            logger.info(
                f"✅ [{code}] {len(outcome.prices)} prices via {outcome.strategy.value} "
                f"in {outcome.duration_ms}ms"
            )
        elif outcome.error_kind == ErrorKind.TRANSIENT_NETWORK:
            logger.warning(f"⏱️ [{code}] Job failed (timeout/network): {outcome.error_message}")
        elif outcome.error_kind in (ErrorKind.CHALLENGE_UNRESOLVED, ErrorKind.RATE_LIMITED):
            logger.warning(f"🛡️ [{code}] Job blocked ({outcome.error_kind.value}): {outcome.error_message}")
        else:
            logger.error(f"❌ [{code}] Job failed ({outcome.error_kind.value}): {outcome.error_message}")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
