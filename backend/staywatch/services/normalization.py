"""
Normalization of raw provider records into canonical GBP price points.

Adapters hand over price text exactly as displayed; this module owns currency
parsing, conversion, plausibility checks and match classification.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from staywatch.config import get_settings
from staywatch.errors import DataIntegrityError
from staywatch.models.price_observation import MatchConfidence
from staywatch.scrapers.heuristics import CURRENCY_AMOUNT, parse_amount
from staywatch.scrapers.records import RawRecord, SearchRequest

logger = logging.getLogger(__name__)

CANONICAL_CURRENCY = "GBP"

# Static GBP conversion table. Provider prices are overwhelmingly GBP; the Irish
# Center Parcs village quotes EUR.
FALLBACK_RATES_TO_GBP = {
    "GBP": Decimal("1.0"),
    "EUR": Decimal("0.85"),
    "USD": Decimal("0.79"),
}

SYMBOL_CURRENCIES = {
    "£": "GBP",
    "GBP": "GBP",
    "€": "EUR",
    "EUR": "EUR",
}

PENNY = Decimal("0.01")


@dataclass
class ValidationResult:
    """Result of validating an extracted price."""
    is_valid: bool
    value: Decimal
    reason: str = ""


@dataclass
class PricePoint:
    """A record that survived normalization."""
    amount: Decimal            # GBP
    raw_amount: str
    raw_currency: str
    record: RawRecord
    confidence: MatchConfidence = MatchConfidence.UNKNOWN


class PriceValidator:
    """Validate normalized stay prices."""

    # Prices that are UI furniture ("from £1 deposit", "£10 off") rather than stays
    SUSPICIOUS_PRICES = {Decimal("1"), Decimal("5"), Decimal("10")}

    def __init__(self, min_price: Optional[float] = None, max_price: Optional[float] = None):
        settings = get_settings()
        self.min_price = Decimal(str(min_price if min_price is not None else settings.min_plausible_price))
        self.max_price = Decimal(str(max_price if max_price is not None else settings.max_plausible_price))

    def validate(self, price: Decimal) -> ValidationResult:
        if not price.is_finite():
            return ValidationResult(False, price, f"Non-finite price {price}")
        if price <= 0:
            return ValidationResult(False, price, f"Non-positive price {price}")
        if price in self.SUSPICIOUS_PRICES:
            return ValidationResult(False, price, f"Price {price} looks like a UI element")
        if price < self.min_price:
            return ValidationResult(False, price, f"Price {price} below minimum {self.min_price}")
        if price > self.max_price:
            return ValidationResult(False, price, f"Price {price} above maximum {self.max_price}")
        return ValidationResult(True, price, "Price within expected range")


def parse_price_text(text) -> tuple[Decimal, str]:
    """
    Parse a displayed price into (amount, ISO currency).

    Accepts '£1,234.50', 'GBP 980', '€450', or a bare number (assumed GBP).
    """
    if text is None:
        raise DataIntegrityError("Record has no price")
    if isinstance(text, (int, float, Decimal)):
        amount = Decimal(str(text))
        if not amount.is_finite():
            raise DataIntegrityError(f"Non-finite price {text!r}")
        return amount, CANONICAL_CURRENCY

    match = CURRENCY_AMOUNT.search(str(text))
    if match:
        amount = parse_amount(match.group("amount"))
        currency = SYMBOL_CURRENCIES.get(match.group("symbol").upper(), CANONICAL_CURRENCY)
    else:
        amount = parse_amount(str(text).replace("£", ""))
        currency = CANONICAL_CURRENCY

    if amount is None:
        raise DataIntegrityError(f"Unparseable price text {text!r}")
    return amount, currency


def to_gbp(amount: Decimal, currency: str) -> Decimal:
    rate = FALLBACK_RATES_TO_GBP.get(currency.upper())
    if rate is None:
        raise DataIntegrityError(f"No conversion rate for {currency}")
    return (amount * rate).quantize(PENNY, rounding=ROUND_HALF_UP)


def format_price(amount: Decimal, currency: str = CANONICAL_CURRENCY) -> str:
    symbols = {"GBP": "£", "EUR": "€", "USD": "$"}
    symbol = symbols.get(currency, currency + " ")
    return f"{symbol}{amount:,.2f}"


def classify_match(record: RawRecord, request: SearchRequest) -> MatchConfidence:
    """
    Classify a record against the requested stay.

    Dates and nights are hard constraints: a provider returning a different stay
    is a mismatch, a provider not reporting them only lowers confidence.
    """
    if record.stay_nights is not None:
        if not (request.nights_min <= record.stay_nights <= request.nights_max):
            return MatchConfidence.MISMATCH
    if record.stay_start_date is not None:
        if not (request.date_start <= record.stay_start_date <= request.date_end):
            return MatchConfidence.MISMATCH
    if request.pets and record.pets_allowed is False:
        return MatchConfidence.MISMATCH

    confirmed = sum(
        1 for value in (record.stay_nights, record.stay_start_date) if value is not None
    )
    if confirmed == 2:
        return MatchConfidence.STRONG
    if confirmed == 1:
        return MatchConfidence.WEAK
    return MatchConfidence.UNKNOWN


def normalize_record(
    record: RawRecord,
    request: SearchRequest,
    validator: Optional[PriceValidator] = None,
) -> PricePoint:
    """
    Normalize one record. Raises DataIntegrityError for anything that must not
    be stored: unparseable or implausible prices and mismatched stays.
    """
    validator = validator or PriceValidator()
    amount, currency = parse_price_text(record.price_text)
    gbp = to_gbp(amount, currency)

    result = validator.validate(gbp)
    if not result.is_valid:
        raise DataIntegrityError(result.reason, provider_code=request.provider_code)

    confidence = classify_match(record, request)
    if confidence == MatchConfidence.MISMATCH:
        raise DataIntegrityError(
            f"Record for {record.stay_start_date} x{record.stay_nights} nights does not match the search",
            provider_code=request.provider_code,
        )

    return PricePoint(
        amount=gbp,
        raw_amount=str(record.price_text)[:100],
        raw_currency=currency,
        record=record,
        confidence=confidence,
    )


def normalize_records(
    records: list[RawRecord],
    request: SearchRequest,
    validator: Optional[PriceValidator] = None,
) -> list[PricePoint]:
    """Normalize a batch, dropping (and logging) every record that fails integrity checks."""
    validator = validator or PriceValidator()
    points = []
    dropped = 0
    for record in records:
        try:
            points.append(normalize_record(record, request, validator))
        except DataIntegrityError as e:
            dropped += 1
            logger.debug(f"Dropped record {record.accommodation or record.price_text!r}: {e}")
    if dropped:
        logger.info(f"[{request.provider_code}] Dropped {dropped}/{len(records)} records on integrity checks")
    return points
