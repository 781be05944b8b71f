"""
Butlins adapter.

Result pages list accommodation grades (Gold Apartment, Silver Room, ...) under
headings, with the break price somewhere in the surrounding block. The stay itself is
the one searched for, so records inherit the request's dates.
"""

import logging
import re

from staywatch.models.deal import DiscountType
from staywatch.models.price_observation import Availability
from staywatch.providers.base import ProviderAdapter
from staywatch.scrapers.heuristics import CURRENCY_AMOUNT, SOLD_OUT_PATTERN, make_soup
from staywatch.scrapers.records import RawRecord, SearchRequest, StrategyKind

logger = logging.getLogger(__name__)

RESORT_CODES = (
    ("bognor", "BG"),
    ("regis", "BG"),
    ("minehead", "MH"),
    ("skegness", "SK"),
)
DEFAULT_RESORT = "BG"

GRADE_HEADING = re.compile(r"\b(room|apartment|gold|silver|standard|premium|lodge)\b", re.IGNORECASE)

BUTLINS_CUES = re.compile(
    r"\b(\d+\s*nights?|sleeps\s*\d+|\d+\s*bedrooms?|per\s+night|rooms?|apartments?|chalets?)\b",
    re.IGNORECASE,
)


def resort_code(location: str) -> str:
    lowered = location.lower()
    for keyword, code in RESORT_CODES:
        if keyword in lowered:
            return code
    if location.upper() in {"BG", "MH", "SK"}:
        return location.upper()
    return DEFAULT_RESORT


class ButlinsAdapter(ProviderAdapter):
    code = "butlins"
    name = "Butlins"
    origin_url = "https://www.butlins.com"

    strategies = (StrategyKind.INTERCEPT, StrategyKind.RENDERED_PAGE)

    challenge_markers = ("Butlins", "Find a break", "Our resorts")

    api_url_patterns = ("/api/availability", "/api/search", "/booking/api", "availability")
    result_collection_paths = ("results", "availability", "breaks", "data.results")
    price_keys = ("totalPrice", "price.total", "price", "fromPrice")
    name_keys = ("accommodationName", "accommodationType", "grade", "name")
    park_keys = ("resort", "resortCode")
    start_date_keys = ("startDate", "arrivalDate")
    nights_keys = ("duration", "nights")

    occupancy_cues = BUTLINS_CUES
    no_results_phrases = (
        "no availability",
        "no breaks found",
        "sorry, no",
    )

    # Offers are rendered client side into promo sections
    offers_path = "/offers"
    offers_need_browser = True
    offer_card_selectors = ("section", "div[class*='Promo']", "div[class*='Card']")
    offer_title_selectors = ("h2", "h3")
    offer_discount_selectors = ()
    offer_default_type = DiscountType.SALE_PRICE

    def build_search_url(self, request: SearchRequest) -> str:
        return self._url("/booking/search", {
            "resort": resort_code(request.location_hint),
            "startDate": request.arrival.isoformat(),
            "duration": request.nights,
            "adults": request.adults,
            "children": request.children,
        })

    def record_from_item(self, item: dict, request: SearchRequest):
        record = super().record_from_item(item, request)
        if record is None:
            return None
        if record.stay_start_date is None:
            record.stay_start_date = request.arrival
        if record.stay_nights is None:
            record.stay_nights = request.nights
        record.park_id = record.park_id or resort_code(request.location_hint)
        return record

    def parse_rendered_html(self, html: str, request: SearchRequest) -> list[RawRecord]:
        records = self.grade_records(html, request)
        if records:
            return records
        logger.warning(f"[{self.code}] No grade headings with prices, falling back to text heuristic")
        return self.heuristic_records(html, request)

    def grade_records(self, html: str, request: SearchRequest) -> list[RawRecord]:
        soup = make_soup(html)
        records = []
        seen = set()
        for heading in soup.select("h2, h3"):
            title = heading.get_text(" ", strip=True)
            if not title or not GRADE_HEADING.search(title):
                continue

            container = heading.find_parent("div")
            match = None
            text = ""
            for _ in range(2):
                if container is None:
                    break
                text = container.get_text(" ", strip=True)
                match = CURRENCY_AMOUNT.search(text)
                if match:
                    break
                container = container.parent
            if not match:
                continue

            key = (title, match.group(0))
            if key in seen:
                continue
            seen.add(key)
            records.append(RawRecord(
                price_text=match.group(0),
                strategy=StrategyKind.RENDERED_PAGE,
                accommodation=title,
                location_text=request.location_hint or self.name,
                park_id=resort_code(request.location_hint),
                stay_start_date=request.arrival,
                stay_nights=request.nights,
                availability=Availability.SOLD_OUT if SOLD_OUT_PATTERN.search(text) else Availability.AVAILABLE,
            ))
        return records
