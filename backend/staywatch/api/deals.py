from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from staywatch.api.deps import get_current_user_id
from staywatch.database import get_db
from staywatch.providers.registry import supported_providers
from staywatch.schemas import DealResponse
from staywatch.services.deal_service import DealService

router = APIRouter()


@router.get("/active", response_model=list[DealResponse])
async def active_deals(
    provider: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Unexpired promotions from the providers' offers pages, newest first."""
    if provider and provider.lower() not in supported_providers():
        raise HTTPException(status_code=400, detail=f"Unknown provider: {provider}")

    deals = DealService(db).list_active_deals(provider_code=provider.lower() if provider else None)
    return deals[:limit]
