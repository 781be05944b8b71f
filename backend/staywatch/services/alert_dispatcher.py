"""
Alert dispatcher.

Materializes each new Insight as one UNREAD Alert per profile linked to the
insight's fingerprint. Delivery (push, email) happens outside this service; the API
exposes the alerts and their read/dismiss lifecycle.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from staywatch.models import Alert, AlertStatus, Insight
from staywatch.services.profile_store import ProfileStore

logger = logging.getLogger(__name__)


class AlertDispatcher:
    def __init__(self, db: Session):
        self.db = db
        self.profiles = ProfileStore(db)

    def dispatch(self, insights: Iterable[Insight]) -> list[Alert]:
        created = []
        for insight in insights:
            created.extend(self._dispatch_one(insight))
        return created

    def _dispatch_one(self, insight: Insight) -> list[Alert]:
        created = []
        for profile in self.profiles.profiles_for_fingerprint(insight.fingerprint_id):
            exists = self.db.query(Alert.id).filter(
                Alert.profile_id == profile.id,
                Alert.insight_id == insight.id,
            ).first()
            if exists:
                continue
            alert = Alert(
                insight_id=insight.id,
                profile_id=profile.id,
                user_id=profile.user_id,
                status=AlertStatus.UNREAD,
            )
            self.db.add(alert)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                continue
            created.append(alert)

        if created:
            logger.info(f"🔔 {insight.type.value}: {len(created)} alert(s) for insight {insight.id}")
        return created

    # -------------------------------------------------------------------------
    # Queries and lifecycle
    # -------------------------------------------------------------------------

    def recent_alerts(self, user_id: str, limit: int = 20, unread_only: bool = False) -> list[Alert]:
        query = self.db.query(Alert).options(joinedload(Alert.insight)).filter(Alert.user_id == user_id)
        if unread_only:
            query = query.filter(Alert.status == AlertStatus.UNREAD)
        return query.order_by(Alert.created_at.desc(), Alert.id.desc()).limit(limit).all()

    def unread_count(self, user_id: str) -> int:
        return self.db.query(Alert).filter(
            Alert.user_id == user_id,
            Alert.status == AlertStatus.UNREAD,
        ).count()

    def get_alert(self, alert_id: int, user_id: str) -> Optional[Alert]:
        return self.db.query(Alert).filter(
            Alert.id == alert_id,
            Alert.user_id == user_id,
        ).first()

    def dismiss(self, alert_id: int, user_id: str) -> Optional[Alert]:
        """Dismiss the caller's alert. None when it doesn't exist or belongs to someone else."""
        alert = self.get_alert(alert_id, user_id)
        if alert is None:
            return None
        alert.dismiss()
        self.db.commit()
        self.db.refresh(alert)
        return alert

    def mark_read(self, alert_id: int, user_id: str) -> Optional[Alert]:
        alert = self.get_alert(alert_id, user_id)
        if alert is None:
            return None
        alert.mark_read()
        self.db.commit()
        self.db.refresh(alert)
        return alert
