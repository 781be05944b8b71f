from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from staywatch.database import Base
from staywatch.utils.clock import utcnow
import enum


class AlertStatus(str, enum.Enum):
    UNREAD = "UNREAD"
    READ = "READ"
    DISMISSED = "DISMISSED"


class Alert(Base):
    """Per-profile copy of an Insight. Only the status ever changes."""
    __tablename__ = "alerts"
    __table_args__ = (
        UniqueConstraint("profile_id", "insight_id", name="uq_alert_profile_insight"),
    )

    id = Column(Integer, primary_key=True, index=True)
    insight_id = Column(Integer, ForeignKey("insights.id", ondelete="CASCADE"), nullable=False, index=True)
    profile_id = Column(
        String(64), ForeignKey("search_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(64), nullable=False, index=True)
    status = Column(SQLEnum(AlertStatus), default=AlertStatus.UNREAD, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    read_at = Column(DateTime, nullable=True)
    dismissed_at = Column(DateTime, nullable=True)

    insight = relationship("Insight", back_populates="alerts")

    def mark_read(self) -> None:
        if self.status == AlertStatus.UNREAD:
            self.status = AlertStatus.READ
            self.read_at = utcnow()

    def dismiss(self) -> None:
        if self.status != AlertStatus.DISMISSED:
            self.status = AlertStatus.DISMISSED
            self.dismissed_at = utcnow()

    def __repr__(self) -> str:
        return f"<Alert {self.id} profile={self.profile_id} insight={self.insight_id} {self.status.value}>"
