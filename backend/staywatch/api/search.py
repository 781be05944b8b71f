from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from datetime import timedelta

from staywatch.api.deps import get_current_user_id
from staywatch.database import get_db
from staywatch.models import FetchRun
from staywatch.schemas import (
    FetchRunResponse,
    FingerprintListResponse,
    FingerprintResponse,
    ProfileStatusResponse,
)
from staywatch.services.observation_store import PriceObservationStore
from staywatch.services.profile_store import ProfileStore

router = APIRouter()

RECENT_RUNS = 10


@router.get("/fingerprints", response_model=FingerprintListResponse)
async def list_profile_fingerprints(
    profile_id: str = Query(..., alias="profileId"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Fingerprints produced by one of the caller's profiles, newest link first."""
    profiles = ProfileStore(db)
    profile = profiles.get_user_profile(profile_id, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")

    store = PriceObservationStore(db)
    fingerprints = []
    for fingerprint in profiles.fingerprints_for_profile(profile.id):
        latest = store.latest(fingerprint.id)
        fingerprints.append(FingerprintResponse(
            id=fingerprint.id,
            provider_code=fingerprint.provider_code,
            canonical_key=fingerprint.canonical_key,
            canonical_json=fingerprint.canonical_json or {},
            created_at=fingerprint.created_at,
            latest_price=latest.lowest_price if latest else None,
            latest_observed_at=latest.observed_at if latest else None,
            observation_count=store.count(fingerprint.id),
        ))

    return FingerprintListResponse(profile_id=profile.id, fingerprints=fingerprints)


@router.get("/profiles/{profile_id}/status", response_model=ProfileStatusResponse)
async def get_profile_status(
    profile_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Last check status of a profile plus its most recent extraction runs."""
    profile = ProfileStore(db).get_user_profile(profile_id, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")

    runs = db.query(FetchRun).filter(
        FetchRun.profile_id == profile.id
    ).order_by(FetchRun.finished_at.desc(), FetchRun.id.desc()).limit(RECENT_RUNS).all()

    next_check_due = None
    if profile.enabled and profile.last_checked_at:
        next_check_due = profile.last_checked_at + timedelta(hours=profile.check_frequency_hours or 48)

    return ProfileStatusResponse(
        profile_id=profile.id,
        name=profile.name,
        provider_code=profile.provider_code,
        enabled=profile.enabled,
        last_checked_at=profile.last_checked_at,
        last_check_status=profile.last_check_status,
        last_check_message=profile.last_check_message,
        next_check_due=next_check_due,
        recent_runs=[FetchRunResponse.model_validate(run) for run in runs],
    )
