# SQLAlchemy models
from staywatch.models.search_profile import SearchProfile, ProfileFingerprint, FlexType
from staywatch.models.fingerprint import SearchFingerprint
from staywatch.models.price_observation import PriceObservation, Availability, MatchConfidence
from staywatch.models.insight import Insight, InsightType
from staywatch.models.alert import Alert, AlertStatus
from staywatch.models.fetch_run import FetchRun, RunStatus
from staywatch.models.deal import Deal, DealSource, DiscountType

__all__ = [
    "SearchProfile",
    "ProfileFingerprint",
    "SearchFingerprint",
    "PriceObservation",
    "Insight",
    "Alert",
    "FetchRun",
    "Deal",
    # Enums
    "FlexType",
    "Availability",
    "MatchConfidence",
    "InsightType",
    "AlertStatus",
    "RunStatus",
    "DealSource",
    "DiscountType",
]
