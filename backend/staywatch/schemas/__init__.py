from staywatch.schemas.monitoring import (
    AlertListResponse,
    AlertResponse,
    DealResponse,
    FetchRunResponse,
    FingerprintListResponse,
    FingerprintResponse,
    InsightResponse,
    PriceHistoryResponse,
    PricePointResponse,
    ProfileStatusResponse,
)

__all__ = [
    "AlertListResponse",
    "AlertResponse",
    "DealResponse",
    "FetchRunResponse",
    "FingerprintListResponse",
    "FingerprintResponse",
    "InsightResponse",
    "PriceHistoryResponse",
    "PricePointResponse",
    "ProfileStatusResponse",
]
