"""
Center Parcs adapter.

There is no search URL: the results only appear after the booking bar on ``/breaks``
is filled in and submitted, so this provider is rendered-page only.
"""

import logging
from typing import Optional

from bs4 import Tag
from playwright.async_api import Error as PlaywrightError

from staywatch.providers.base import ProviderAdapter
from staywatch.scrapers.records import RawRecord, SearchRequest, StrategyKind

logger = logging.getLogger(__name__)

VILLAGES = {
    "elveden": "Elveden Forest",
    "elveden forest": "Elveden Forest",
    "longleat": "Longleat Forest",
    "longleat forest": "Longleat Forest",
    "sherwood": "Sherwood Forest",
    "sherwood forest": "Sherwood Forest",
    "whinfell": "Whinfell Forest",
    "whinfell forest": "Whinfell Forest",
    "woburn": "Woburn Forest",
    "woburn forest": "Woburn Forest",
}


def village_label(location: str) -> str:
    lowered = location.lower().replace("-", " ").strip()
    return VILLAGES.get(lowered, location)


class CenterParcsAdapter(ProviderAdapter):
    code = "centerparcs"
    name = "Center Parcs"
    origin_url = "https://www.centerparcs.co.uk"

    strategies = (StrategyKind.RENDERED_PAGE,)

    challenge_markers = ("Center Parcs", "Find a break", "Our villages")
    ready_selectors = (".booking-bar", "#booking-form")

    card_selectors = (".accommodation-card", ".lodge-card", ".result-item")
    price_selectors = (".price", ".total-price", ".from-price")
    title_selectors = (".lodge-type", ".accommodation-type", "h3", "h2")
    date_selectors = (".arrival-date", ".date", ".check-in")
    nights_selectors = (".nights", ".duration", ".stay-length")
    sold_out_selectors = (".sold-out", ".unavailable", ".fully-booked")

    no_results_phrases = (
        "no breaks available",
        "no availability",
        "no results found",
    )

    offers_path = "/offers"
    offer_card_selectors = (".offer-card", ".deal-item", ".special-offer")
    offer_discount_selectors = (".discount", ".save", ".offer-value")
    offer_expiry_selectors = (".valid-until", ".expires", ".offer-ends")

    def build_search_url(self, request: SearchRequest) -> str:
        return f"{self.origin_url}/breaks"

    async def prepare_results_page(self, page, request: SearchRequest) -> None:
        """Fill the booking bar and submit it. Missing fields are skipped."""
        try:
            await page.wait_for_selector(".booking-bar, #booking-form", timeout=5000)
        except PlaywrightError:
            logger.warning(f"[{self.code}] Booking bar not found on {page.url}")
            return

        try:
            if request.location_hint:
                await page.select_option(
                    'select[name="village"], #village-select',
                    label=village_label(request.location_hint),
                    timeout=3000,
                )
        except PlaywrightError as e:
            logger.debug(f"[{self.code}] Could not select village: {e}")

        try:
            arrival = await page.query_selector('input[name="arrival"], #arrival-date')
            if arrival:
                await arrival.fill(request.arrival.isoformat())

            nights = await page.query_selector('select[name="nights"], #nights')
            if nights:
                await nights.select_option(value=str(request.nights))

            adults = await page.query_selector('input[name="adults"], #adults')
            if adults:
                await adults.fill(str(request.adults))

            if request.children:
                children = await page.query_selector('input[name="children"], #children')
                if children:
                    await children.fill(str(request.children))

            submit = await page.query_selector('button[type="submit"], .search-button, .book-now')
            if submit:
                await submit.click()
                await page.wait_for_load_state("networkidle", timeout=10000)
        except PlaywrightError as e:
            # The strategy still reads whatever rendered; a blank page is a mismatch there
            logger.warning(f"[{self.code}] Booking form interaction failed: {e}")

    def record_from_card(self, card: Tag, request: SearchRequest) -> Optional[RawRecord]:
        record = super().record_from_card(card, request)
        if record is not None and card.select_one(".pet-friendly"):
            record.pets_allowed = True
        return record
