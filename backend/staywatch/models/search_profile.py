from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Numeric, Text, JSON,
    ForeignKey, UniqueConstraint, Enum as SQLEnum,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from staywatch.database import Base
import enum


class FlexType(str, enum.Enum):
    FIXED = "FIXED"    # exact arrival window
    RANGE = "RANGE"    # any arrival within a few weeks
    FLEXI = "FLEXI"    # any arrival within whole months


class SearchProfile(Base):
    """
    A user's saved holiday search.

    Owned by the profile-management layer: the monitoring core only reads enabled
    profiles and stamps the last-check columns.
    """
    __tablename__ = "search_profiles"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)

    # What to search
    provider_code = Column(String(50), nullable=False, index=True)
    regions = Column(JSON, default=list, nullable=False)    # ["Cornwall", "lake district"]
    park_ids = Column(JSON, default=list, nullable=False)   # provider park codes/slugs

    # When
    date_start = Column(Date, nullable=False)
    date_end = Column(Date, nullable=False)
    flex_type = Column(SQLEnum(FlexType), default=FlexType.FIXED, nullable=False)
    nights_min = Column(Integer, default=7, nullable=False)
    nights_max = Column(Integer, default=7, nullable=False)

    # Who
    adults = Column(Integer, default=2, nullable=False)
    children = Column(Integer, default=0, nullable=False)
    infants = Column(Integer, default=0, nullable=False)
    pets = Column(Integer, default=0, nullable=False)

    budget_ceiling = Column(Numeric(10, 2), nullable=True)

    # Scheduling
    enabled = Column(Boolean, default=True, nullable=False)
    check_frequency_hours = Column(Integer, default=48, nullable=False)
    last_checked_at = Column(DateTime, nullable=True)
    last_check_status = Column(String(50), nullable=True)   # OK or an ErrorKind value
    last_check_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    fingerprint_links = relationship(
        "ProfileFingerprint", back_populates="profile", cascade="all, delete-orphan"
    )

    def is_due(self, now) -> bool:
        if not self.enabled:
            return False
        if self.last_checked_at is None:
            return True
        hours_since = (now - self.last_checked_at).total_seconds() / 3600
        return hours_since >= (self.check_frequency_hours or 48)

    def __repr__(self) -> str:
        return f"<SearchProfile {self.id} {self.provider_code}: {self.name}>"


class ProfileFingerprint(Base):
    """Links a profile to every fingerprint it has produced (many profiles may share one)."""
    __tablename__ = "profile_fingerprints"
    __table_args__ = (
        UniqueConstraint("profile_id", "fingerprint_id", name="uq_profile_fingerprint"),
    )

    id = Column(Integer, primary_key=True, index=True)
    profile_id = Column(
        String(64), ForeignKey("search_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fingerprint_id = Column(
        String(64), ForeignKey("search_fingerprints.id", ondelete="CASCADE"), nullable=False, index=True
    )
    linked_at = Column(DateTime(timezone=True), server_default=func.now())

    profile = relationship("SearchProfile", back_populates="fingerprint_links")
    fingerprint = relationship("SearchFingerprint", back_populates="profile_links")
