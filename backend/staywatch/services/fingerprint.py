"""
Fingerprint generation.

A fingerprint is the SHA-256 of a canonical, ``|``-joined description of a search
intent. Two profiles asking the same provider for the same stay share a fingerprint
(and therefore a price series), however their dates or region names were typed.

Canonical fields, in order:
    v1 | provider | flex type | date window | regions | parks | nights | party

Date windows are bucketed by flex type: FIXED keeps exact dates, RANGE uses ISO
weeks, FLEXI uses calendar months.
"""

import hashlib
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from staywatch.models import FlexType, SearchFingerprint, SearchProfile
from staywatch.providers.base import slugify
from staywatch.scrapers.records import SearchRequest

logger = logging.getLogger(__name__)

FINGERPRINT_VERSION = "v1"

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%Y/%m/%d",
    "%d %B %Y",
    "%d %b %Y",
)

DateLike = Union[date, datetime, str]


def parse_date_value(value: DateLike) -> date:
    """
    Accept a date in any of the formats profiles arrive in.

    >>> parse_date_value("9 March 2026") == parse_date_value("09/03/2026")
    True
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Not a date: {value!r}")

    text = " ".join(value.strip().split())
    # Drop a timezone suffix on ISO datetimes: 2026-03-09T00:00:00Z
    if "T" in text:
        text = text.rstrip("Z").split("+")[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date format: {value!r}")


def _identifiers(values: Optional[Iterable[str]]) -> tuple[str, ...]:
    slugs = {slugify(value) for value in (values or ()) if value is not None and str(value).strip()}
    slugs.discard("")
    return tuple(sorted(slugs))


def normalize_search(
    provider_code: str,
    date_start: DateLike,
    date_end: Optional[DateLike] = None,
    regions: Optional[Iterable[str]] = None,
    park_ids: Optional[Iterable[str]] = None,
    flex_type: Union[FlexType, str] = FlexType.FIXED,
    nights_min: int = 7,
    nights_max: Optional[int] = None,
    adults: int = 2,
    children: int = 0,
    infants: int = 0,
    pets: int = 0,
    budget_ceiling: Optional[Decimal] = None,
) -> SearchRequest:
    """Build the canonical SearchRequest for a set of search fields."""
    start = parse_date_value(date_start)
    end = parse_date_value(date_end) if date_end else start
    if end < start:
        start, end = end, start

    low = int(nights_min)
    high = int(nights_max) if nights_max is not None else low
    if high < low:
        low, high = high, low

    return SearchRequest(
        provider_code=provider_code.lower().strip(),
        date_start=start,
        date_end=end,
        regions=_identifiers(regions),
        park_ids=_identifiers(park_ids),
        flex_type=FlexType(flex_type),
        nights_min=low,
        nights_max=high,
        adults=int(adults or 0),
        children=int(children or 0),
        infants=int(infants or 0),
        pets=int(pets or 0),
        budget_ceiling=Decimal(str(budget_ceiling)) if budget_ceiling is not None else None,
    )


def build_search_request(profile: SearchProfile) -> SearchRequest:
    return normalize_search(
        provider_code=profile.provider_code,
        date_start=profile.date_start,
        date_end=profile.date_end,
        regions=profile.regions,
        park_ids=profile.park_ids,
        flex_type=profile.flex_type or FlexType.FIXED,
        nights_min=profile.nights_min,
        nights_max=profile.nights_max,
        adults=profile.adults,
        children=profile.children,
        infants=profile.infants,
        pets=profile.pets,
        budget_ceiling=profile.budget_ceiling,
    )


def date_window_bucket(request: SearchRequest) -> str:
    if request.flex_type == FlexType.RANGE:
        start_year, start_week, _ = request.date_start.isocalendar()
        end_year, end_week, _ = request.date_end.isocalendar()
        return f"{start_year}-W{start_week:02d}..{end_year}-W{end_week:02d}"
    if request.flex_type == FlexType.FLEXI:
        return f"{request.date_start:%Y-%m}..{request.date_end:%Y-%m}"
    return f"{request.date_start.isoformat()}..{request.date_end.isoformat()}"


def canonical_fields(request: SearchRequest) -> dict:
    return {
        "version": FINGERPRINT_VERSION,
        "provider": request.provider_code.lower(),
        "flex": request.flex_type.value,
        "window": date_window_bucket(request),
        "regions": list(request.regions),
        "parks": list(request.park_ids),
        "nights": f"{request.nights_min}-{request.nights_max}",
        "party": {
            "adults": request.adults,
            "children": request.children,
            "infants": request.infants,
            "pets": request.pets,
        },
    }


def canonical_key(request: SearchRequest) -> str:
    fields = canonical_fields(request)
    party = fields["party"]
    return "|".join([
        fields["version"],
        fields["provider"],
        fields["flex"],
        fields["window"],
        ",".join(fields["regions"]),
        ",".join(fields["parks"]),
        fields["nights"],
        f"a{party['adults']}c{party['children']}i{party['infants']}p{party['pets']}",
    ])


def fingerprint(request: SearchRequest) -> tuple[str, str]:
    """Return (fingerprint id, canonical key). Pure and stable across restarts."""
    key = canonical_key(request)
    return hashlib.sha256(key.encode("utf-8")).hexdigest(), key


def ensure_fingerprint(db: Session, request: SearchRequest) -> SearchFingerprint:
    """Fetch the fingerprint row for ``request``, creating it on first use."""
    fingerprint_id, key = fingerprint(request)
    existing = db.get(SearchFingerprint, fingerprint_id)
    if existing:
        return existing

    row = SearchFingerprint(
        id=fingerprint_id,
        provider_code=request.provider_code,
        canonical_key=key,
        canonical_json=canonical_fields(request),
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # Another job created it first
        db.rollback()
        return db.get(SearchFingerprint, fingerprint_id)
    logger.info(f"New fingerprint {fingerprint_id[:12]} for {key}")
    return row
