"""Value types passed between the scheduler, the pipeline and the provider adapters."""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from staywatch.models.price_observation import Availability
from staywatch.models.search_profile import FlexType


class StrategyKind(str, Enum):
    INTERCEPT = "INTERCEPT"          # structured JSON responses captured while navigating
    RENDERED_PAGE = "RENDERED_PAGE"  # heuristics over the rendered HTML


@dataclass(frozen=True)
class SearchRequest:
    """Normalized search handed to adapters and the fingerprint generator."""
    provider_code: str
    date_start: date
    date_end: date
    regions: tuple[str, ...] = ()
    park_ids: tuple[str, ...] = ()
    flex_type: FlexType = FlexType.FIXED
    nights_min: int = 7
    nights_max: int = 7
    adults: int = 2
    children: int = 0
    infants: int = 0
    pets: int = 0
    budget_ceiling: Optional[Decimal] = None

    @property
    def nights(self) -> int:
        return self.nights_min

    @property
    def arrival(self) -> date:
        return self.date_start

    @property
    def departure(self) -> date:
        return self.date_start + timedelta(days=self.nights)

    @property
    def location_hint(self) -> str:
        """First park or region, whichever the profile names."""
        if self.park_ids:
            return self.park_ids[0]
        if self.regions:
            return self.regions[0]
        return ""


@dataclass
class RawRecord:
    """
    One price card or API item exactly as the provider showed it.

    Currency and identifiers are normalized later, never here.
    """
    price_text: str
    strategy: StrategyKind
    accommodation: Optional[str] = None
    location_text: Optional[str] = None
    accommodation_id: Optional[str] = None
    park_id: Optional[str] = None
    stay_start_date: Optional[date] = None
    stay_nights: Optional[int] = None
    availability: Availability = Availability.UNKNOWN
    pets_allowed: Optional[bool] = None
    campaign: Optional[str] = None
    voucher_code: Optional[str] = None
    source_url: Optional[str] = None
    raw: dict = field(default_factory=dict)
