"""
Monitoring orchestration service.

Runs one profile check end to end:
1. Build the canonical search for the profile
2. Run the extraction pipeline
3. Ensure the fingerprint and link the profile to it
4. Append the lowest price as an observation
5. Evaluate insights and dispatch alerts
6. Stamp the profile's last check status and write a FetchRun
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from staywatch.config import Settings, get_settings
from staywatch.database import SessionLocal
from staywatch.errors import ErrorKind
from staywatch.models import Availability, FetchRun, PriceObservation, SearchProfile
from staywatch.scrapers.pipeline import ExtractionPipeline, JobOutcome, JobState
from staywatch.services.alert_dispatcher import AlertDispatcher
from staywatch.services.fingerprint import build_search_request, ensure_fingerprint
from staywatch.services.insight_engine import InsightEngine
from staywatch.services.normalization import PricePoint, format_price
from staywatch.services.observation_store import PriceObservationStore, observation_from_price
from staywatch.services.profile_store import ProfileStore
from staywatch.utils.clock import utcnow

logger = logging.getLogger(__name__)

STATUS_OK = "OK"


@dataclass
class ProfileCheck:
    """What one profile check produced."""
    profile_id: str
    outcome: JobOutcome
    fingerprint_id: Optional[str] = None
    observation_id: Optional[int] = None
    insight_ids: list[int] = field(default_factory=list)
    alert_count: int = 0

    @property
    def is_success(self) -> bool:
        return self.outcome.is_success


def lowest_price(prices: list[PricePoint]) -> Optional[PricePoint]:
    """Cheapest bookable price; the cheapest sold-out one when nothing is bookable."""
    if not prices:
        return None
    available = [p for p in prices if p.record.availability != Availability.SOLD_OUT]
    return min(available or prices, key=lambda p: p.amount)


def describe_outcome(outcome: JobOutcome, cheapest: Optional[PricePoint]) -> str:
    if not outcome.is_success:
        return outcome.error_message or (outcome.error_kind.value if outcome.error_kind else "Failed")
    if cheapest is None:
        return f"No availability ({outcome.strategy.value if outcome.strategy else 'no strategy'})"
    return (
        f"{len(outcome.prices)} prices, lowest {format_price(cheapest.amount)} "
        f"via {outcome.strategy.value}"
    )


class MonitoringService:
    def __init__(
        self,
        pipeline: ExtractionPipeline,
        session_factory: Callable[[], Session] = SessionLocal,
        settings: Optional[Settings] = None,
    ):
        self.pipeline = pipeline
        self._session_factory = session_factory
        self.settings = settings or get_settings()

    async def check_profile(self, profile_id: str) -> Optional[ProfileCheck]:
        """
        Check one profile. Returns None when the profile no longer exists.

        Extraction failures are recorded, not raised.
        """
        db = self._session_factory()
        try:
            profiles = ProfileStore(db)
            profile = profiles.get_profile(profile_id)
            if profile is None:
                logger.warning(f"Profile {profile_id} not found, skipping check")
                return None

            try:
                request = build_search_request(profile)
            except ValueError as e:
                outcome = JobOutcome(provider_code=profile.provider_code)
                outcome.fail(ErrorKind.DATA_INTEGRITY, f"Invalid search profile: {e}")
                outcome.finished_at = utcnow()
                check = ProfileCheck(profile_id=profile_id, outcome=outcome)
                self._finish(db, profile, check, None)
                return check

            logger.info(f"Checking {profile.name} ({profile.provider_code}, {request.arrival} x{request.nights})")
            outcome = await self.pipeline.run(request)
            check = ProfileCheck(profile_id=profile_id, outcome=outcome)

            cheapest = None
            if outcome.is_success:
                fingerprint = ensure_fingerprint(db, request)
                profiles.link_fingerprint(profile_id, fingerprint.id)
                check.fingerprint_id = fingerprint.id

                cheapest = lowest_price(outcome.prices)
                if cheapest is not None:
                    self._record_price(db, check, cheapest)

            self._finish(db, profile, check, cheapest)
            return check
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _record_price(self, db: Session, check: ProfileCheck, cheapest: PricePoint) -> None:
        outcome = check.outcome
        observation: PriceObservation = observation_from_price(
            cheapest,
            observed_at=outcome.finished_at,
            record_count=len(outcome.prices),
        )
        observation = PriceObservationStore(db).append(check.fingerprint_id, observation)
        check.observation_id = observation.id

        campaign = next((r.campaign for r in outcome.records if r.campaign), None)
        voucher_code = next((r.voucher_code for r in outcome.records if r.voucher_code), None)

        insights = InsightEngine(db, self.settings).evaluate(
            check.fingerprint_id,
            observation,
            campaign=campaign,
            voucher_code=voucher_code,
        )
        check.insight_ids = [insight.id for insight in insights]
        if insights:
            check.alert_count = len(AlertDispatcher(db).dispatch(insights))

    def _finish(
        self,
        db: Session,
        profile: SearchProfile,
        check: ProfileCheck,
        cheapest: Optional[PricePoint],
    ) -> None:
        outcome = check.outcome
        finished_at = outcome.finished_at or utcnow()
        status = STATUS_OK if outcome.is_success else outcome.error_kind.value
        message = describe_outcome(outcome, cheapest)

        ProfileStore(db).mark_checked(profile.id, finished_at, status, message)

        run = FetchRun(
            profile_id=profile.id,
            fingerprint_id=check.fingerprint_id,
            provider_code=profile.provider_code,
            status=FetchRun.status_for(None if outcome.is_success else outcome.error_kind),
            error_kind=None if outcome.is_success else outcome.error_kind.value,
            error_message=None if outcome.is_success else (outcome.error_message or "")[:2000],
            strategy=outcome.strategy.value if outcome.strategy else None,
            attempts=[attempt.to_dict() for attempt in outcome.attempts],
            record_count=len(outcome.prices),
            duration_ms=outcome.duration_ms,
            html_snapshot_path=outcome.snapshot_path,
            started_at=outcome.started_at,
            finished_at=finished_at,
        )
        db.add(run)
        db.commit()

        if outcome.state == JobState.SUCCEEDED:
            logger.info(
                f"✅ {profile.name}: {message}"
                + (f", {len(check.insight_ids)} insights, {check.alert_count} alerts" if check.insight_ids else "")
            )
        else:
            logger.warning(f"❌ {profile.name}: {status} - {message}")
