from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from staywatch.api.deps import get_current_user_id
from staywatch.database import get_db
from staywatch.schemas import AlertListResponse, AlertResponse
from staywatch.services.alert_dispatcher import AlertDispatcher

router = APIRouter()


@router.get("/recent", response_model=AlertListResponse)
async def recent_alerts(
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False, alias="unreadOnly"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    dispatcher = AlertDispatcher(db)
    alerts = dispatcher.recent_alerts(user_id, limit=limit, unread_only=unread_only)
    return AlertListResponse(
        alerts=[AlertResponse.model_validate(alert) for alert in alerts],
        unread_count=dispatcher.unread_count(user_id),
    )


@router.patch("/{alert_id}/dismiss", response_model=AlertResponse)
async def dismiss_alert(
    alert_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    alert = AlertDispatcher(db).dismiss(alert_id, user_id)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@router.patch("/{alert_id}/read", response_model=AlertResponse)
async def mark_alert_read(
    alert_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Mark an alert read. A dismissed alert stays dismissed."""
    alert = AlertDispatcher(db).mark_read(alert_id, user_id)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert
