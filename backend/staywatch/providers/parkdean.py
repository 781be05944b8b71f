"""Parkdean Resorts adapter."""

import re
from decimal import Decimal
from typing import Optional

from bs4 import Tag

from staywatch.models.deal import DiscountType
from staywatch.providers.base import ProviderAdapter, _select_text
from staywatch.scrapers.heuristics import CURRENCY_AMOUNT
from staywatch.scrapers.offers import classify_discount
from staywatch.scrapers.records import RawRecord, SearchRequest, StrategyKind

PARK_FROM_LINK = re.compile(r"/([^/?#]+)/?(?:[?#].*)?$")


class ParkdeanAdapter(ProviderAdapter):
    code = "parkdean"
    name = "Parkdean Resorts"
    origin_url = "https://www.parkdeanresorts.co.uk"

    strategies = (StrategyKind.INTERCEPT, StrategyKind.RENDERED_PAGE)

    challenge_markers = ("Parkdean Resorts", "Find your perfect break", "Our parks")

    api_url_patterns = ("/api/search", "/api/availability", "search-results", "availability")
    result_collection_paths = ("results", "parks", "data.results", "holidays")
    price_keys = ("totalPrice", "price.total", "price", "fromPrice", "leadPrice")
    name_keys = ("parkName", "propertyName", "name", "title")
    id_keys = ("accommodationId", "id")
    park_keys = ("parkId", "parkCode", "park.code")
    location_keys = ("region", "location", "park.region")
    start_date_keys = ("arrivalDate", "arriving", "startDate")

    card_selectors = (".search-result", ".holiday-card", ".result-item")
    price_selectors = (".price", ".total-price", ".cost")
    title_selectors = (".property-name", "h3", ".title")

    no_results_phrases = (
        "no holidays found",
        "no results found",
        "we couldn't find any",
    )

    offers_path = "/holidays/offers/"
    offers_need_browser = True
    offer_card_selectors = (".offer-item", ".deal-card", ".promo-banner")
    offer_title_selectors = (".title", "h3", "h4")
    offer_discount_selectors = (".description", "p")
    offer_description_selectors = (".description", "p")

    def build_search_url(self, request: SearchRequest) -> str:
        return self._url("/search-results/", {
            "adults": request.adults,
            "children": request.children or None,
            "infants": request.infants or None,
            "arriving": request.arrival.strftime("%d/%m/%Y"),
            "nights": request.nights,
            "region": request.regions[0] if request.regions else None,
            "pets": 1 if request.pets else None,
        })

    def record_from_card(self, card: Tag, request: SearchRequest) -> Optional[RawRecord]:
        record = super().record_from_card(card, request)
        if record is None:
            return None
        record.location_text = _select_text(card, (".location", ".region")) or record.location_text
        link = card.select_one("a[href]")
        if link and not record.park_id:
            match = PARK_FROM_LINK.search(link.get("href", ""))
            if match:
                record.park_id = match.group(1)
        return record

    def classify_offer(self, text: str) -> tuple[DiscountType, Optional[Decimal]]:
        # A bare price in the blurb is a lead-in price, not money off
        if "%" in text or ("save" in text.lower() and CURRENCY_AMOUNT.search(text)):
            return classify_discount(text)
        return DiscountType.PERK, None
