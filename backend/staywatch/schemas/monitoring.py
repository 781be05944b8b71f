from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from staywatch.models import AlertStatus, Availability, DealSource, DiscountType, InsightType, MatchConfidence, RunStatus


class CamelModel(BaseModel):
    """Responses are camelCase on the wire, snake_case in Python."""

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel


# Search / fingerprints

class FingerprintResponse(CamelModel):
    id: str
    provider_code: str
    canonical_key: str
    canonical_json: dict[str, Any]
    created_at: Optional[datetime] = None
    latest_price: Optional[Decimal] = None
    latest_observed_at: Optional[datetime] = None
    observation_count: int = 0


class FingerprintListResponse(CamelModel):
    profile_id: str
    fingerprints: list[FingerprintResponse]


class FetchRunResponse(CamelModel):
    id: int
    fingerprint_id: Optional[str] = None
    provider_code: str
    status: RunStatus
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    strategy: Optional[str] = None
    attempts: list[dict[str, Any]] = []
    record_count: int
    duration_ms: int
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class ProfileStatusResponse(CamelModel):
    profile_id: str
    name: str
    provider_code: str
    enabled: bool
    last_checked_at: Optional[datetime] = None
    last_check_status: Optional[str] = None
    last_check_message: Optional[str] = None
    next_check_due: Optional[datetime] = None
    recent_runs: list[FetchRunResponse] = []


# Insights

class PricePointResponse(CamelModel):
    id: int
    observed_at: datetime
    lowest_price: Decimal
    currency: str
    availability: Availability
    accommodation_name: Optional[str] = None
    location: Optional[str] = None
    stay_start_date: Optional[date] = None
    stay_nights: Optional[int] = None
    match_confidence: MatchConfidence
    source_strategy: str
    source_url: Optional[str] = None


class PriceHistoryResponse(CamelModel):
    fingerprint_id: str
    days: int
    count: int
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    latest_price: Optional[Decimal] = None
    series: list[PricePointResponse]


class InsightResponse(CamelModel):
    id: int
    fingerprint_id: str
    observation_id: Optional[int] = None
    type: InsightType
    summary: str
    details: dict[str, Any] = {}
    created_at: datetime


# Alerts

class AlertInsightSummary(CamelModel):
    id: int
    fingerprint_id: str
    type: InsightType
    summary: str
    details: dict[str, Any] = {}


class AlertResponse(CamelModel):
    id: int
    insight_id: int
    profile_id: str
    status: AlertStatus
    created_at: datetime
    read_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    insight: Optional[AlertInsightSummary] = None


class AlertListResponse(CamelModel):
    alerts: list[AlertResponse]
    unread_count: int


# Deals

class DealResponse(CamelModel):
    id: int
    provider_code: str
    source: DealSource
    title: str
    discount_type: DiscountType
    discount_value: Optional[Decimal] = None
    voucher_code: Optional[str] = None
    restrictions: dict[str, Any] = {}
    ends_at: Optional[datetime] = None
    confidence: float
    detected_at: datetime
    last_seen_at: datetime
