from sqlalchemy import Column, String, DateTime, JSON, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from staywatch.database import Base


class SearchFingerprint(Base):
    """
    Canonical identity of a search intent; the join key of every price series.

    The primary key is the content hash of the normalized search, so rows are
    written once and never updated.
    """
    __tablename__ = "search_fingerprints"

    id = Column(String(64), primary_key=True)
    provider_code = Column(String(50), nullable=False, index=True)
    canonical_key = Column(Text, nullable=False)
    canonical_json = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    profile_links = relationship("ProfileFingerprint", back_populates="fingerprint")
    observations = relationship(
        "PriceObservation", back_populates="fingerprint", order_by="PriceObservation.observed_at"
    )

    def __repr__(self) -> str:
        return f"<SearchFingerprint {self.id[:12]} {self.provider_code}>"
