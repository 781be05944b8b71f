"""
Hoseasons adapter.

The results page is a client-rendered app behind a WAF. Its search API responses
(``properties``/``results``/``accommodations``) are the primary source; the rendered
cards are the fallback.
"""

import logging
import re
from typing import Optional

from staywatch.models.price_observation import Availability
from staywatch.providers.base import ProviderAdapter, slugify
from staywatch.scrapers.heuristics import (
    MIN_CARD_PRICE,
    NIGHTS_PATTERN,
    currency_amounts,
    first_int,
    make_soup,
)
from staywatch.scrapers.records import RawRecord, SearchRequest, StrategyKind

logger = logging.getLogger(__name__)

# Cards carry the stay length and a capacity/rating line
HOSEASONS_CARD_CUES = re.compile(
    r"\A(?=[\s\S]*\bnights?\b)(?=[\s\S]*(?:out of|sleeps|bedrooms))",
    re.IGNORECASE,
)

REGION_SLUGS = {
    "kielder": "northumberland",
    "kielder water": "northumberland",
    "northumberland": "northumberland",
    "kendal": "cumbria",
    "lake district": "cumbria",
    "lakes": "cumbria",
    "cumbria": "cumbria",
}


def region_slug(region: str) -> str:
    lowered = region.lower().replace("-", " ").strip()
    if "kielder" in lowered:
        return "northumberland"
    return REGION_SLUGS.get(lowered, slugify(lowered))


class HoseasonsAdapter(ProviderAdapter):
    code = "hoseasons"
    name = "Hoseasons"
    origin_url = "https://www.hoseasons.co.uk"

    strategies = (StrategyKind.INTERCEPT, StrategyKind.RENDERED_PAGE)

    challenge_markers = ("You control your data", "Holiday Parks", "Hoseasons")
    cookie_accept_selectors = (
        "button:has-text('ACCEPT ALL')",
        "#onetrust-accept-btn-handler",
    )

    api_url_patterns = ("/api/", "search", "properties", "accommodation")
    result_collection_paths = ("properties", "results", "data.properties", "accommodations")
    price_keys = ("priceFrom", "lowestPrice", "price")
    name_keys = ("displayName", "name", "title")
    id_keys = ("propertyCode", "code", "id")
    park_keys = ("parkCode", "code")
    location_keys = ("location", "regionName", "region", "rhs3")
    start_date_keys = ("startDate",)
    nights_keys = ("lengthOfStay", "nights")

    occupancy_cues = HOSEASONS_CARD_CUES
    no_results_phrases = (
        "we couldn't find any",
        "no properties match",
        "0 properties found",
    )

    offers_path = "/special-offers"

    def build_search_url(self, request: SearchRequest) -> str:
        path = "/search"
        location = request.regions[0] if request.regions else (request.park_ids[0] if request.park_ids else "")
        if location:
            path = f"/holiday-parks/{region_slug(location)}"
        return self._url(path, {
            "adult": request.adults,
            "child": request.children,
            "infant": request.infants,
            "pets": 1 if request.pets else 0,
            "range": 0,
            "nights": request.nights,
            "accommodationType": "holiday-parks",
            "start": request.arrival.strftime("%d-%m-%Y"),
            "page": 1,
            "sort": "recommended",
            "displayMode": "LIST",
        })

    def record_from_item(self, item: dict, request: SearchRequest) -> Optional[RawRecord]:
        record = super().record_from_item(item, request)
        if record is None:
            return None
        # The API omits the stay when it echoes the search
        if record.stay_start_date is None:
            record.stay_start_date = request.arrival
        if record.stay_nights is None:
            record.stay_nights = request.nights
        code = item.get("code") or item.get("propertyCode")
        if code:
            record.source_url = f"{self.origin_url}/holiday-parks/{code}"
        return record

    def parse_rendered_html(self, html: str, request: SearchRequest) -> list[RawRecord]:
        records = self.heuristic_records(html, request)
        if records:
            return records
        logger.warning(f"[{self.code}] Price-first walk found nothing, trying header-first")
        return self.header_first_records(html, request)

    def header_first_records(self, html: str, request: SearchRequest) -> list[RawRecord]:
        """
        Walk up from each heading to the nearest container holding a price.

        Park landing pages render headings before prices, so the price-first walk
        can stop at the wrong element.
        """
        soup = make_soup(html)
        records = []
        for header in soup.select("h3, .card-header, h2"):
            title = header.get_text(" ", strip=True)
            if len(title) <= 3:
                continue
            container = header.parent
            depth = 0
            while container is not None and container.name not in ("body", "[document]") and depth < 6:
                text = container.get_text(" ", strip=True)
                amounts = [
                    (raw, amount) for raw, amount in currency_amounts(text)
                    if raw.startswith("£") and amount > MIN_CARD_PRICE
                ]
                if amounts:
                    if NIGHTS_PATTERN.search(text):
                        price_text, _ = max(amounts, key=lambda pair: pair[1])
                        link = container.select_one("a[href]")
                        records.append(RawRecord(
                            price_text=price_text,
                            strategy=StrategyKind.RENDERED_PAGE,
                            accommodation=title[:300],
                            location_text=request.location_hint or None,
                            stay_nights=first_int(NIGHTS_PATTERN, text),
                            availability=Availability.AVAILABLE,
                            source_url=self._absolute(link.get("href")) if link else None,
                        ))
                    break
                container = container.parent
                depth += 1
        return records
