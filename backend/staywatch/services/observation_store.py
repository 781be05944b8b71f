"""
Append-only store of price observations.

``append`` is the only write: one INSERT per call, never an UPDATE, never a dedup by
value. Reads always order by ``observed_at`` (then id, for identical timestamps).
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from staywatch.models import PriceObservation
from staywatch.services.normalization import PricePoint
from staywatch.utils.clock import utcnow

logger = logging.getLogger(__name__)


def observation_from_price(
    point: PricePoint,
    observed_at: Optional[datetime] = None,
    record_count: int = 1,
) -> PriceObservation:
    record = point.record
    return PriceObservation(
        observed_at=observed_at or utcnow(),
        lowest_price=point.amount,
        currency="GBP",
        raw_amount=point.raw_amount,
        raw_currency=point.raw_currency,
        accommodation_id=record.accommodation_id,
        park_id=record.park_id,
        accommodation_name=record.accommodation[:300] if record.accommodation else None,
        location=record.location_text[:300] if record.location_text else None,
        availability=record.availability,
        stay_start_date=record.stay_start_date,
        stay_nights=record.stay_nights,
        match_confidence=point.confidence,
        source_strategy=record.strategy.value,
        source_url=record.source_url,
        record_count=record_count,
    )


class PriceObservationStore:
    def __init__(self, db: Session):
        self.db = db

    def append(self, fingerprint_id: str, observation: PriceObservation) -> PriceObservation:
        observation.fingerprint_id = fingerprint_id
        self.db.add(observation)
        self.db.commit()
        self.db.refresh(observation)
        logger.debug(
            f"Observation {observation.id} for {fingerprint_id[:12]}: £{observation.lowest_price}"
        )
        return observation

    def latest(self, fingerprint_id: str) -> Optional[PriceObservation]:
        return self.db.query(PriceObservation).filter(
            PriceObservation.fingerprint_id == fingerprint_id
        ).order_by(
            PriceObservation.observed_at.desc(), PriceObservation.id.desc()
        ).first()

    def series(
        self,
        fingerprint_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[PriceObservation]:
        query = self.db.query(PriceObservation).filter(
            PriceObservation.fingerprint_id == fingerprint_id
        )
        if since is not None:
            query = query.filter(PriceObservation.observed_at >= since)
        if until is not None:
            query = query.filter(PriceObservation.observed_at <= until)
        return query.order_by(PriceObservation.observed_at.asc(), PriceObservation.id.asc()).all()

    def count(self, fingerprint_id: str) -> int:
        return self.db.query(PriceObservation).filter(
            PriceObservation.fingerprint_id == fingerprint_id
        ).count()
