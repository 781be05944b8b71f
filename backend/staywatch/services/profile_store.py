"""
Access to search profiles.

Profiles are owned by the profile-management layer; the monitoring core reads them,
links them to fingerprints and stamps the last-check columns, nothing else.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from staywatch.models import ProfileFingerprint, SearchFingerprint, SearchProfile

logger = logging.getLogger(__name__)

MAX_STATUS_MESSAGE = 1000


class ProfileStore:
    def __init__(self, db: Session):
        self.db = db

    def get_profile(self, profile_id: str) -> Optional[SearchProfile]:
        return self.db.get(SearchProfile, profile_id)

    def get_user_profile(self, profile_id: str, user_id: str) -> Optional[SearchProfile]:
        return self.db.query(SearchProfile).filter(
            SearchProfile.id == profile_id,
            SearchProfile.user_id == user_id,
        ).first()

    def profiles_for_user(self, user_id: str) -> list[SearchProfile]:
        return self.db.query(SearchProfile).filter(
            SearchProfile.user_id == user_id
        ).order_by(SearchProfile.created_at.desc()).all()

    def list_active_profiles_due_for_check(self, now: datetime) -> list[SearchProfile]:
        """Enabled profiles never checked, or last checked at least check_frequency_hours ago."""
        candidates = self.db.query(SearchProfile).filter(
            SearchProfile.enabled == True,  # noqa: E712
        ).all()
        due = [profile for profile in candidates if profile.is_due(now)]
        # Never-checked profiles first, then the longest waiting
        due.sort(key=lambda p: (p.last_checked_at is not None, p.last_checked_at or datetime.min, p.id))
        return due

    def mark_checked(
        self,
        profile_id: str,
        timestamp: datetime,
        status: str,
        message: Optional[str] = None,
    ) -> None:
        profile = self.get_profile(profile_id)
        if profile is None:
            logger.warning(f"mark_checked: profile {profile_id} no longer exists")
            return
        profile.last_checked_at = timestamp
        profile.last_check_status = status
        profile.last_check_message = message[:MAX_STATUS_MESSAGE] if message else None
        self.db.commit()

    def link_fingerprint(self, profile_id: str, fingerprint_id: str) -> bool:
        """Link a profile to a fingerprint. Returns False when the link already existed."""
        exists = self.db.query(ProfileFingerprint.id).filter(
            ProfileFingerprint.profile_id == profile_id,
            ProfileFingerprint.fingerprint_id == fingerprint_id,
        ).first()
        if exists:
            return False
        self.db.add(ProfileFingerprint(profile_id=profile_id, fingerprint_id=fingerprint_id))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        logger.info(f"Linked profile {profile_id} to fingerprint {fingerprint_id[:12]}")
        return True

    def profiles_for_fingerprint(self, fingerprint_id: str) -> list[SearchProfile]:
        return self.db.query(SearchProfile).join(
            ProfileFingerprint, ProfileFingerprint.profile_id == SearchProfile.id
        ).filter(
            ProfileFingerprint.fingerprint_id == fingerprint_id
        ).order_by(SearchProfile.id).all()

    def fingerprints_for_profile(self, profile_id: str) -> list[SearchFingerprint]:
        return self.db.query(SearchFingerprint).join(
            ProfileFingerprint, ProfileFingerprint.fingerprint_id == SearchFingerprint.id
        ).filter(
            ProfileFingerprint.profile_id == profile_id
        ).order_by(ProfileFingerprint.linked_at.desc(), ProfileFingerprint.id.desc()).all()

    def fingerprint_ids_for_user(self, user_id: str) -> list[str]:
        rows = self.db.query(ProfileFingerprint.fingerprint_id).join(
            SearchProfile, ProfileFingerprint.profile_id == SearchProfile.id
        ).filter(SearchProfile.user_id == user_id).distinct().all()
        return [row[0] for row in rows]
