from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from staywatch.database import Base
from staywatch.utils.clock import utcnow
import enum


class InsightType(str, enum.Enum):
    LOWEST_IN_X_DAYS = "LOWEST_IN_X_DAYS"
    PRICE_DROP_PERCENT = "PRICE_DROP_PERCENT"
    RISK_RISING = "RISK_RISING"
    NEW_CAMPAIGN_DETECTED = "NEW_CAMPAIGN_DETECTED"
    VOUCHER_SPOTTED = "VOUCHER_SPOTTED"


class Insight(Base):
    """A typed signal derived from a fingerprint's price history. Immutable."""
    __tablename__ = "insights"

    id = Column(Integer, primary_key=True, index=True)
    fingerprint_id = Column(
        String(64), ForeignKey("search_fingerprints.id", ondelete="CASCADE"), nullable=False, index=True
    )
    observation_id = Column(Integer, ForeignKey("price_observations.id", ondelete="SET NULL"), nullable=True)
    type = Column(SQLEnum(InsightType), nullable=False, index=True)
    summary = Column(Text, nullable=False)
    details = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    alerts = relationship("Alert", back_populates="insight")

    def __repr__(self) -> str:
        return f"<Insight {self.type.value} {self.fingerprint_id[:12]}: {self.summary}>"
