"""
Tests for price normalization: currency parsing, plausibility and match classification.
"""
import pytest
from datetime import date
from decimal import Decimal

from staywatch.errors import DataIntegrityError
from staywatch.models import Availability, MatchConfidence
from staywatch.scrapers.records import RawRecord, SearchRequest, StrategyKind
from staywatch.services.normalization import (
    PriceValidator,
    classify_match,
    format_price,
    normalize_record,
    normalize_records,
    parse_price_text,
    to_gbp,
)


REQUEST = SearchRequest(
    provider_code="haven",
    date_start=date(2026, 5, 23),
    date_end=date(2026, 5, 30),
    nights_min=3,
    nights_max=7,
)


def record(price_text="£799", nights=None, start=None, pets_allowed=None):
    return RawRecord(
        price_text=price_text,
        strategy=StrategyKind.RENDERED_PAGE,
        stay_nights=nights,
        stay_start_date=start,
        pets_allowed=pets_allowed,
        availability=Availability.AVAILABLE,
    )


class TestParsePriceText:
    """Tests for parse_price_text()."""

    @pytest.mark.parametrize("text,amount,currency", [
        ("£1,234.50", Decimal("1234.50"), "GBP"),
        ("from £799 per stay", Decimal("799"), "GBP"),
        ("GBP 980", Decimal("980"), "GBP"),
        ("€450", Decimal("450"), "EUR"),
        ("EUR 1,000", Decimal("1000"), "EUR"),
        ("649.99", Decimal("649.99"), "GBP"),
        (899, Decimal("899"), "GBP"),
    ])
    def test_parses(self, text, amount, currency):
        assert parse_price_text(text) == (amount, currency)

    @pytest.mark.parametrize("text", [None, "Call for price", "", "NaN", "Infinity", "-inf", float("nan"), float("inf")])
    def test_rejects(self, text):
        with pytest.raises(DataIntegrityError):
            parse_price_text(text)


class TestConversion:
    def test_eur_converted_to_gbp(self):
        assert to_gbp(Decimal("1000"), "EUR") == Decimal("850.00")

    def test_unknown_currency(self):
        with pytest.raises(DataIntegrityError):
            to_gbp(Decimal("1000"), "JPY")

    def test_format_price(self):
        assert format_price(Decimal("1234.5")) == "£1,234.50"


class TestPriceValidator:
    """Tests for PriceValidator."""

    def test_accepts_plausible(self):
        assert PriceValidator(20, 20000).validate(Decimal("799")).is_valid

    @pytest.mark.parametrize("price", ["0", "-5", "5", "10", "15", "25000"])
    def test_rejects_implausible(self, price):
        assert not PriceValidator(20, 20000).validate(Decimal(price)).is_valid


class TestClassifyMatch:
    """Tests for classify_match()."""

    def test_strong_when_both_confirmed(self):
        assert classify_match(record(nights=7, start=date(2026, 5, 25)), REQUEST) == MatchConfidence.STRONG

    def test_weak_with_one_confirmed(self):
        assert classify_match(record(nights=4), REQUEST) == MatchConfidence.WEAK

    def test_unknown_when_provider_silent(self):
        assert classify_match(record(), REQUEST) == MatchConfidence.UNKNOWN

    def test_nights_outside_range(self):
        assert classify_match(record(nights=14), REQUEST) == MatchConfidence.MISMATCH

    def test_start_outside_window(self):
        assert classify_match(record(start=date(2026, 6, 1)), REQUEST) == MatchConfidence.MISMATCH

    def test_pets_refused(self):
        with_dog = SearchRequest(
            provider_code="haven", date_start=date(2026, 5, 23), date_end=date(2026, 5, 23), pets=1
        )
        assert classify_match(record(pets_allowed=False), with_dog) == MatchConfidence.MISMATCH
        assert classify_match(record(pets_allowed=None), with_dog) == MatchConfidence.UNKNOWN


class TestNormalizeRecords:
    def test_keeps_raw_text_and_converts(self):
        point = normalize_record(record("€1,000", nights=7), REQUEST, PriceValidator(20, 20000))

        assert point.amount == Decimal("850.00")
        assert point.raw_amount == "€1,000"
        assert point.raw_currency == "EUR"
        assert point.confidence == MatchConfidence.WEAK

    def test_batch_drops_bad_records(self):
        records = [
            record("£799", nights=7),
            record("£5", nights=7),
            record("Call us", nights=7),
            record("£699", nights=21),
        ]

        points = normalize_records(records, REQUEST, PriceValidator(20, 20000))

        assert [p.amount for p in points] == [Decimal("799.00")]

    def test_non_numeric_values_are_dropped_not_raised(self):
        records = [
            record("NaN", nights=7),
            record("Infinity", nights=7),
            record(float("nan"), nights=7),
            record("£899", nights=7),
        ]

        points = normalize_records(records, REQUEST, PriceValidator(20, 20000))

        assert [p.amount for p in points] == [Decimal("899.00")]

    def test_validator_rejects_non_finite(self):
        assert not PriceValidator(20, 20000).validate(Decimal("NaN")).is_valid
