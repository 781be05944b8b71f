from sqlalchemy import Column, Integer, String, DateTime, Date, Numeric, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from staywatch.database import Base
from staywatch.utils.clock import utcnow
import enum


class Availability(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    SOLD_OUT = "SOLD_OUT"
    UNKNOWN = "UNKNOWN"


class MatchConfidence(str, enum.Enum):
    STRONG = "STRONG"      # stay dates and nights confirmed by the provider
    WEAK = "WEAK"          # one of them confirmed, the other not reported
    UNKNOWN = "UNKNOWN"    # provider did not report either
    MISMATCH = "MISMATCH"  # hard constraint violated, never stored


class PriceObservation(Base):
    """
    One successful extraction for a fingerprint: the lowest plausible price seen.

    Append-only. Rows are never updated; retention pruning is handled outside the app.
    """
    __tablename__ = "price_observations"

    id = Column(Integer, primary_key=True, index=True)
    fingerprint_id = Column(
        String(64), ForeignKey("search_fingerprints.id", ondelete="CASCADE"), nullable=False, index=True
    )
    observed_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    lowest_price = Column(Numeric(10, 2), nullable=False)   # GBP
    currency = Column(String(3), default="GBP", nullable=False)
    raw_amount = Column(String(100), nullable=True)         # exactly as shown by the provider
    raw_currency = Column(String(3), nullable=True)

    accommodation_id = Column(String(100), nullable=True)
    park_id = Column(String(100), nullable=True)
    accommodation_name = Column(String(300), nullable=True)
    location = Column(String(300), nullable=True)

    availability = Column(SQLEnum(Availability), default=Availability.UNKNOWN, nullable=False)
    stay_start_date = Column(Date, nullable=True)
    stay_nights = Column(Integer, nullable=True)
    match_confidence = Column(SQLEnum(MatchConfidence), default=MatchConfidence.UNKNOWN, nullable=False)

    source_strategy = Column(String(30), nullable=False)
    source_url = Column(Text, nullable=True)
    record_count = Column(Integer, default=1, nullable=False)

    fingerprint = relationship("SearchFingerprint", back_populates="observations")

    def __repr__(self) -> str:
        return f"<PriceObservation {self.fingerprint_id[:12]} £{self.lowest_price} @ {self.observed_at}>"
