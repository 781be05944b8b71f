"""
Insight engine.

Runs after every appended observation over the fingerprint's history up to and
including it. Rules run in a fixed order:

1. LOWEST_IN_X_DAYS - at or below every prior price in the window (a tie with the
   window low counts), with at least two prior observations in that window
2. PRICE_DROP_PERCENT - drop against the immediately preceding observation
3. RISK_RISING - average of the last K observations against the K before them
4. NEW_CAMPAIGN_DETECTED / VOUCHER_SPOTTED - promotion metadata from the records

Each type has a cooldown per fingerprint. The cooldown check and the insert run
without an await in between, so two jobs can't both pass the check.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from staywatch.config import Settings, get_settings
from staywatch.models import Availability, Insight, InsightType, PriceObservation
from staywatch.services.normalization import format_price
from staywatch.services.observation_store import PriceObservationStore
from staywatch.utils.clock import utcnow

logger = logging.getLogger(__name__)

MIN_PRIOR_FOR_LOWEST = 2


@dataclass
class InsightCandidate:
    type: InsightType
    summary: str
    details: dict = field(default_factory=dict)


def is_lowest_in_window(current: Decimal, prior_prices: Sequence[Decimal]) -> bool:
    """True when ``current`` is the window minimum (ties included) and there is enough history."""
    if len(prior_prices) < MIN_PRIOR_FOR_LOWEST:
        return False
    return current <= min(prior_prices)


def percent_drop(previous: Decimal, current: Decimal) -> float:
    """Relative drop from previous to current in percent. Negative for a rise."""
    if previous <= 0:
        return 0.0
    return float((previous - current) / previous * 100)


def moving_average_rise(prices: Sequence[Decimal], window: int) -> Optional[tuple[Decimal, Decimal, float]]:
    """
    Compare the mean of the last ``window`` prices with the mean of the ``window``
    before them.

    Returns (prior average, recent average, rise percent), or None without 2*window prices.
    """
    if window < 1 or len(prices) < window * 2:
        return None
    recent = prices[-window:]
    prior = prices[-window * 2:-window]
    recent_avg = sum(recent, Decimal("0")) / window
    prior_avg = sum(prior, Decimal("0")) / window
    if prior_avg <= 0:
        return None
    rise = float((recent_avg - prior_avg) / prior_avg * 100)
    return prior_avg, recent_avg, rise


def _money(value: Decimal) -> float:
    return float(Decimal(value).quantize(Decimal("0.01")))


class InsightEngine:
    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.store = PriceObservationStore(db)

    def evaluate(
        self,
        fingerprint_id: str,
        observation: PriceObservation,
        campaign: Optional[str] = None,
        voucher_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[Insight]:
        """Derive and persist the insights triggered by ``observation``."""
        now = now or utcnow()
        history = self.store.series(fingerprint_id, until=observation.observed_at)
        position = (observation.observed_at, observation.id)
        prior = [o for o in history if (o.observed_at, o.id) < position]
        current = Decimal(observation.lowest_price)

        candidates = [
            self._lowest_in_window(observation, prior, current),
            self._price_drop(prior, current),
            self._risk_rising(prior + [observation]),
            self._campaign(fingerprint_id, campaign),
            self._voucher(fingerprint_id, voucher_code),
        ]

        created = []
        for candidate in candidates:
            if candidate is None:
                continue
            if self._in_cooldown(fingerprint_id, candidate.type, now):
                logger.debug(f"{candidate.type.value} for {fingerprint_id[:12]} suppressed by cooldown")
                continue
            insight = Insight(
                fingerprint_id=fingerprint_id,
                observation_id=observation.id,
                type=candidate.type,
                summary=candidate.summary,
                details=candidate.details,
                created_at=now,
            )
            self.db.add(insight)
            created.append(insight)

        if created:
            self.db.commit()
            for insight in created:
                logger.info(f"💡 {insight.type.value} for {fingerprint_id[:12]}: {insight.summary}")
        return created

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    def _lowest_in_window(
        self,
        observation: PriceObservation,
        prior: list[PriceObservation],
        current: Decimal,
    ) -> Optional[InsightCandidate]:
        window_days = self.settings.lowest_window_days
        window_start = observation.observed_at - timedelta(days=window_days)
        in_window = [Decimal(o.lowest_price) for o in prior if o.observed_at >= window_start]
        if not is_lowest_in_window(current, in_window):
            return None
        previous_low = min(in_window)
        return InsightCandidate(
            type=InsightType.LOWEST_IN_X_DAYS,
            summary=f"Lowest price in {window_days} days: {format_price(current)} (was {format_price(previous_low)})",
            details={
                "windowDays": window_days,
                "previousLow": _money(previous_low),
                "currentPrice": _money(current),
                "priorObservations": len(in_window),
            },
        )

    def _price_drop(self, prior: list[PriceObservation], current: Decimal) -> Optional[InsightCandidate]:
        if not prior:
            return None
        previous = Decimal(prior[-1].lowest_price)
        drop = percent_drop(previous, current)
        if drop <= self.settings.price_drop_threshold_percent:
            return None
        return InsightCandidate(
            type=InsightType.PRICE_DROP_PERCENT,
            summary=f"Price dropped {drop:.1f}%: {format_price(previous)} → {format_price(current)}",
            details={
                "previousPrice": _money(previous),
                "currentPrice": _money(current),
                "dropPercent": round(drop, 1),
                "thresholdPercent": self.settings.price_drop_threshold_percent,
            },
        )

    def _risk_rising(self, history: list[PriceObservation]) -> Optional[InsightCandidate]:
        window = self.settings.risk_window
        trend = moving_average_rise([Decimal(o.lowest_price) for o in history], window)
        if trend is None:
            return None
        prior_avg, recent_avg, rise = trend
        if rise <= self.settings.risk_rise_threshold_percent:
            return None
        sold_out = sum(1 for o in history[-window:] if o.availability == Availability.SOLD_OUT)
        summary = f"Prices rising {rise:.1f}% over the last {window} checks (avg {format_price(recent_avg)})"
        if sold_out:
            summary += f", {sold_out} sold out"
        return InsightCandidate(
            type=InsightType.RISK_RISING,
            summary=summary,
            details={
                "window": window,
                "previousAverage": _money(prior_avg),
                "recentAverage": _money(recent_avg),
                "risePercent": round(rise, 1),
                "soldOutCount": sold_out,
            },
        )

    def _campaign(self, fingerprint_id: str, campaign: Optional[str]) -> Optional[InsightCandidate]:
        if not campaign:
            return None
        last = self._last_insight(fingerprint_id, InsightType.NEW_CAMPAIGN_DETECTED)
        if last is not None and (last.details or {}).get("campaign") == campaign:
            return None
        return InsightCandidate(
            type=InsightType.NEW_CAMPAIGN_DETECTED,
            summary=f"New offer: {campaign}",
            details={"campaign": campaign},
        )

    def _voucher(self, fingerprint_id: str, voucher_code: Optional[str]) -> Optional[InsightCandidate]:
        if not voucher_code:
            return None
        last = self._last_insight(fingerprint_id, InsightType.VOUCHER_SPOTTED)
        if last is not None and (last.details or {}).get("voucherCode") == voucher_code:
            return None
        return InsightCandidate(
            type=InsightType.VOUCHER_SPOTTED,
            summary=f"Voucher code spotted: {voucher_code}",
            details={"voucherCode": voucher_code},
        )

    # -------------------------------------------------------------------------
    # Cooldown
    # -------------------------------------------------------------------------

    def _last_insight(self, fingerprint_id: str, insight_type: InsightType) -> Optional[Insight]:
        return self.db.query(Insight).filter(
            Insight.fingerprint_id == fingerprint_id,
            Insight.type == insight_type,
        ).order_by(Insight.created_at.desc(), Insight.id.desc()).first()

    def _in_cooldown(self, fingerprint_id: str, insight_type: InsightType, now: datetime) -> bool:
        hours = self.settings.cooldown_hours_for(insight_type.value)
        if hours <= 0:
            return False
        cutoff = now - timedelta(hours=hours)
        return self.db.query(Insight.id).filter(
            Insight.fingerprint_id == fingerprint_id,
            Insight.type == insight_type,
            Insight.created_at > cutoff,
        ).first() is not None
