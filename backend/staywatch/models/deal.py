from sqlalchemy import Column, Integer, String, DateTime, Text, Numeric, Float, JSON, Enum as SQLEnum, UniqueConstraint
from staywatch.database import Base
from staywatch.utils.clock import utcnow
import enum


class DealSource(str, enum.Enum):
    PROVIDER_OFFERS = "PROVIDER_OFFERS"
    HOTUKDEALS = "HOTUKDEALS"
    OTHER = "OTHER"


class DiscountType(str, enum.Enum):
    PERCENT_OFF = "PERCENT_OFF"
    FIXED_OFF = "FIXED_OFF"
    SALE_PRICE = "SALE_PRICE"
    PERK = "PERK"


class Deal(Base):
    """
    A promotion seen on a provider's offers page.

    Key features:
    - Identity is (provider, source, source_ref); source_ref hashes the offer's wording
    - Re-seen offers only move last_seen_at and ends_at forward
    """
    __tablename__ = "deals"

    id = Column(Integer, primary_key=True, index=True)
    provider_code = Column(String(50), nullable=False, index=True)
    source = Column(SQLEnum(DealSource), nullable=False, default=DealSource.PROVIDER_OFFERS)
    source_ref = Column(String(64), nullable=False)

    title = Column(Text, nullable=False)
    discount_type = Column(SQLEnum(DiscountType), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=True)
    voucher_code = Column(String(50), nullable=True)
    restrictions = Column(JSON, default=dict, nullable=False)

    starts_at = Column(DateTime, nullable=True)
    ends_at = Column(DateTime, nullable=True)
    confidence = Column(Float, default=0.5, nullable=False)

    detected_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    last_seen_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("provider_code", "source", "source_ref", name="uix_deal_source_ref"),
    )

    def __repr__(self) -> str:
        return f"<Deal {self.provider_code} {self.discount_type.value}: {self.title[:40]}>"
