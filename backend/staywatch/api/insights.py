from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from datetime import timedelta

from staywatch.api.deps import get_current_user_id
from staywatch.database import get_db
from staywatch.models import Insight
from staywatch.schemas import InsightResponse, PriceHistoryResponse, PricePointResponse
from staywatch.services.observation_store import PriceObservationStore
from staywatch.services.profile_store import ProfileStore
from staywatch.utils.clock import utcnow

router = APIRouter()


@router.get("/recent", response_model=list[InsightResponse])
async def recent_insights(
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Most recent insights across every fingerprint linked to the caller's profiles."""
    fingerprint_ids = ProfileStore(db).fingerprint_ids_for_user(user_id)
    if not fingerprint_ids:
        return []

    insights = db.query(Insight).filter(
        Insight.fingerprint_id.in_(fingerprint_ids)
    ).order_by(Insight.created_at.desc(), Insight.id.desc()).limit(limit).all()
    return insights


@router.get("/{fingerprint_id}/price-history", response_model=PriceHistoryResponse)
async def price_history(
    fingerprint_id: str,
    days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Observations of the last ``days`` days, oldest first."""
    if fingerprint_id not in ProfileStore(db).fingerprint_ids_for_user(user_id):
        raise HTTPException(status_code=404, detail="Fingerprint not found")

    series = PriceObservationStore(db).series(fingerprint_id, since=utcnow() - timedelta(days=days))
    prices = [observation.lowest_price for observation in series]

    return PriceHistoryResponse(
        fingerprint_id=fingerprint_id,
        days=days,
        count=len(series),
        min_price=min(prices) if prices else None,
        max_price=max(prices) if prices else None,
        latest_price=prices[-1] if prices else None,
        series=[PricePointResponse.model_validate(observation) for observation in series],
    )
