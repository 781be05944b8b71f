"""
Away Resorts adapter.

Search results are grouped by accommodation type, each with a horizontal strip of
arrival days (``.date-scroll__day``). A bookable day carries a ``/book/`` link whose
data attributes hold the accommodation name and the stay cost.
"""

import logging
import re
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from staywatch.models.deal import DiscountType
from staywatch.models.price_observation import Availability
from staywatch.providers.base import ProviderAdapter
from staywatch.scrapers.heuristics import CURRENCY_AMOUNT, make_soup
from staywatch.scrapers.records import RawRecord, SearchRequest, StrategyKind

logger = logging.getLogger(__name__)

PARK_IDS = {
    "tattershall": "7",
    "tattershalllakes": "7",
    "sandyballs": "1",
    "millrythe": "18",
    "whitecliff": "15",
    "whitecliffbay": "15",
    "merseaisland": "12",
    "barmouthbay": "20",
    "cleethorpes": "17",
    "cleethorpespearl": "17",
    "goldensands": "21",
    "stives": "23",
    "stivesbay": "23",
    "newquay": "24",
    "newquaybay": "24",
    "retallack": "19",
    "rookley": "13",
    "thelakesrookley": "13",
    "colwell": "14",
    "thebaycolwell": "14",
    "bostonwest": "26",
    "eastfleet": "27",
    "glendorgal": "28",
    "gara": "25",
    "gararock": "25",
}
DEFAULT_PARK_ID = "7"


def park_id_for(location: str) -> str:
    key = re.sub(r"[^a-z0-9]", "", location.lower())
    if key.isdigit():
        return key
    return PARK_IDS.get(key, DEFAULT_PARK_ID)


class AwayResortsAdapter(ProviderAdapter):
    code = "awayresorts"
    name = "Away Resorts"
    origin_url = "https://www.awayresorts.co.uk"

    strategies = (StrategyKind.RENDERED_PAGE,)

    challenge_markers = ("Away Resorts", "Find your break", "Our resorts")

    no_results_phrases = (
        "no availability for your dates",
        "no results found",
    )

    offers_path = "/latest-offers/"
    offers_need_browser = True
    offer_card_selectors = (".card", ".offer-card", ".promo-block")
    offer_title_selectors = ("h3", ".card-title")
    offer_description_selectors = (".card-text", ".description", "p")

    def build_search_url(self, request: SearchRequest) -> str:
        return self._url("/search/", {
            "parkID": park_id_for(request.location_hint),
            "from": request.arrival.isoformat(),
            "to": (request.arrival + timedelta(days=request.nights)).isoformat(),
            "adults": request.adults,
            "children": request.children,
        })

    def classify_offer(self, text: str) -> tuple[DiscountType, Optional[Decimal]]:
        """Offer cards are marketing copy; the wording is kept in restrictions."""
        return DiscountType.PERK, None

    def results_rendered(self, html: str) -> bool:
        return "date-scroll__day" in html or self.is_no_results_page(html)

    def parse_rendered_html(self, html: str, request: SearchRequest) -> list[RawRecord]:
        records = self.date_strip_records(html, request)
        if records:
            return records
        logger.warning(f"[{self.code}] No bookable days in the date strip, falling back to text heuristic")
        return self.heuristic_records(html, request)

    def date_strip_records(self, html: str, request: SearchRequest) -> list[RawRecord]:
        soup = make_soup(html)
        park_id = park_id_for(request.location_hint)
        records = []
        for day in soup.select(".date-scroll__day"):
            classes = day.get("class") or []
            if "date-scroll__day--sold" in classes or "Sold out" in day.get_text(" ", strip=True):
                continue

            book = day.select_one('a[href*="/book/"]')
            if book is None:
                continue

            name = book.get("data-name")
            if not name:
                section = day.find_parent(class_="search-results__accommodation")
                heading = section.find("h2") if section else None
                name = heading.get_text(" ", strip=True) if heading else None

            price_text = book.get("data-cost")
            if not price_text:
                price_element = day.select_one(".date-scroll__price")
                match = CURRENCY_AMOUNT.search(price_element.get_text(" ", strip=True)) if price_element else None
                price_text = match.group(0) if match else None

            if not name or not price_text:
                continue

            records.append(RawRecord(
                price_text=price_text,
                strategy=StrategyKind.RENDERED_PAGE,
                accommodation=name,
                location_text=request.location_hint or None,
                park_id=park_id,
                stay_start_date=request.arrival,
                stay_nights=request.nights,
                availability=Availability.AVAILABLE,
                pets_allowed=True if "pet friendly" in name.lower() else None,
                source_url=self._absolute(book.get("href")),
            ))
        return records
