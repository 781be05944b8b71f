"""
Common interface for provider adapters.

An adapter knows one booking site: how to build its search URL, which network
responses carry results, which markers prove the real page loaded, and how to turn
its cards or JSON into RawRecords. It also knows where its offers page lives.
It never normalizes currency.
"""

import logging
import re
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable, Optional
from urllib.parse import urlencode

from bs4 import Tag
from playwright.async_api import Error as PlaywrightError

from staywatch.errors import ProviderUnavailable, RateLimited
from staywatch.models.deal import DiscountType
from staywatch.models.price_observation import Availability
from staywatch.scrapers.heuristics import (
    CURRENCY_AMOUNT,
    NIGHTS_PATTERN,
    OCCUPANCY_CUES,
    SOLD_OUT_PATTERN,
    find_price_cards,
    first_int,
    make_soup,
    page_contains_any,
    parse_provider_date,
)
from staywatch.scrapers.offers import OfferRecord, classify_discount, fetch_offers_html, parse_offer_cards
from staywatch.scrapers.records import RawRecord, SearchRequest, StrategyKind
from staywatch.scrapers.strategies import get_strategy

if TYPE_CHECKING:
    from staywatch.scrapers.session_pool import BrowserSessionPool, ScopedSession

logger = logging.getLogger(__name__)


def slugify(value: str) -> str:
    """'Lake District ' -> 'lake-district'."""
    return re.sub(r"[^a-z0-9]+", "-", str(value).lower()).strip("-")


def dig(data: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts: dig(p, 'data.properties')."""
    current = data
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_value(item: dict, keys: Iterable[str]) -> Any:
    """First non-empty value among dotted ``keys``."""
    for key in keys:
        value = dig(item, key)
        if value not in (None, "", [], {}):
            return value
    return None


class ProviderAdapter:
    code: str = ""
    name: str = ""
    origin_url: str = ""

    strategies: tuple[StrategyKind, ...] = (StrategyKind.INTERCEPT, StrategyKind.RENDERED_PAGE)

    # Challenge absorption: any of these proves real content loaded
    challenge_markers: tuple[str, ...] = ()
    ready_selectors: tuple[str, ...] = ()

    cookie_accept_selectors: tuple[str, ...] = (
        "#onetrust-accept-btn-handler",
        "button:has-text('Accept All')",
        "button:has-text('Accept all cookies')",
    )

    # Interception
    api_url_patterns: tuple[str, ...] = ()
    result_collection_paths: tuple[str, ...] = ("results", "data.results")
    price_keys: tuple[str, ...] = ("totalPrice", "price.total", "price", "fromPrice")
    name_keys: tuple[str, ...] = ("name", "accommodationName", "title")
    id_keys: tuple[str, ...] = ("id", "code")
    park_keys: tuple[str, ...] = ("parkCode", "park.code")
    location_keys: tuple[str, ...] = ("location", "parkName", "park.name")
    start_date_keys: tuple[str, ...] = ("startDate", "arrivalDate", "arrival")
    nights_keys: tuple[str, ...] = ("nights", "duration", "lengthOfStay")

    # Rendered page
    card_selectors: tuple[str, ...] = ()
    price_selectors: tuple[str, ...] = (".price", "[class*='price']")
    title_selectors: tuple[str, ...] = ("h2", "h3", "[class*='title']", "[class*='name']")
    date_selectors: tuple[str, ...] = (".arrival-date", ".date", ".check-in")
    nights_selectors: tuple[str, ...] = (".nights", ".duration", ".stay-length")
    sold_out_selectors: tuple[str, ...] = (".sold-out", ".unavailable", ".fully-booked")
    occupancy_cues: re.Pattern = OCCUPANCY_CUES

    no_results_phrases: tuple[str, ...] = (
        "no results found",
        "no availability",
        "no holidays found",
    )
    rate_limit_phrases: tuple[str, ...] = (
        "too many requests",
        "rate limit exceeded",
        "unusual traffic",
    )

    # Offers page
    offers_path: str = "/offers"
    offers_need_browser: bool = False
    offer_card_selectors: tuple[str, ...] = (".offer-card", ".deal-item")
    offer_title_selectors: tuple[str, ...] = (".offer-title", "h2", "h3")
    offer_discount_selectors: tuple[str, ...] = (".discount", ".save")
    offer_voucher_selectors: tuple[str, ...] = (".voucher-code", ".promo-code")
    offer_expiry_selectors: tuple[str, ...] = (".valid-until", ".expires")
    offer_description_selectors: tuple[str, ...] = ()
    offer_default_type: DiscountType = DiscountType.PERK

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def extract(
        self,
        session: "ScopedSession",
        request: SearchRequest,
        strategy: StrategyKind,
    ) -> list[RawRecord]:
        """Run one strategy. Raises an ExtractionError subclass on failure."""
        if strategy not in self.strategies:
            raise ValueError(f"{self.code} does not support {strategy.value}")
        return await get_strategy(strategy).run(self, session, request)

    def build_search_url(self, request: SearchRequest) -> str:
        raise NotImplementedError

    def _url(self, path: str, params: dict) -> str:
        params = {key: value for key, value in params.items() if value not in (None, "")}
        return f"{self.origin_url}{path}?{urlencode(params)}"

    # -------------------------------------------------------------------------
    # Page signals
    # -------------------------------------------------------------------------

    def has_content_marker(self, html: str) -> bool:
        return page_contains_any(html, self.challenge_markers)

    def looks_rate_limited(self, html: str) -> bool:
        return page_contains_any(html, self.rate_limit_phrases)

    def is_no_results_page(self, html: str) -> bool:
        return page_contains_any(html, self.no_results_phrases)

    def results_rendered(self, html: str) -> bool:
        if self.is_no_results_page(html):
            return True
        return bool(CURRENCY_AMOUNT.search(html)) and bool(self.occupancy_cues.search(html))

    async def dismiss_cookie_banner(self, page) -> bool:
        """Best effort: a missing banner is normal once cookies are stored."""
        for selector in self.cookie_accept_selectors:
            try:
                button = await page.query_selector(selector)
                if button and await button.is_visible():
                    await button.click(timeout=2000)
                    logger.debug(f"[{self.code}] Accepted cookie banner via {selector}")
                    return True
            except PlaywrightError:
                continue
        return False

    async def prepare_results_page(self, page, request: SearchRequest) -> None:
        """Hook for providers whose results need interaction after navigation."""
        return None

    # -------------------------------------------------------------------------
    # Interception
    # -------------------------------------------------------------------------

    def matches_api_url(self, url: str) -> bool:
        lowered = url.lower()
        return any(pattern in lowered for pattern in self.api_url_patterns)

    def result_items(self, payload: Any) -> list[dict]:
        if isinstance(payload, list):
            return [item for item in payload if isinstance(item, dict)]
        for path in self.result_collection_paths:
            items = dig(payload, path)
            if isinstance(items, list) and items:
                return [item for item in items if isinstance(item, dict)]
        return []

    def is_result_payload(self, payload: Any) -> bool:
        return any(
            first_value(item, self.price_keys) is not None for item in self.result_items(payload)
        )

    def parse_api_payload(self, payload: Any, request: SearchRequest) -> list[RawRecord]:
        records = []
        for item in self.result_items(payload):
            record = self.record_from_item(item, request)
            if record is not None:
                records.append(record)
        return records

    def record_from_item(self, item: dict, request: SearchRequest) -> Optional[RawRecord]:
        price = first_value(item, self.price_keys)
        if isinstance(price, dict):
            price = first_value(price, ("total", "amount", "value"))
        if price is None:
            return None

        name = first_value(item, self.name_keys)
        nights = first_value(item, self.nights_keys)
        location = first_value(item, self.location_keys)
        if isinstance(location, dict):
            location = first_value(location, ("name", "displayName", "region"))

        # A bare number is a price only next to a stay description
        if not name and nights is None:
            return None

        sold_out = bool(item.get("soldOut")) or item.get("available") is False
        return RawRecord(
            price_text=str(price),
            strategy=StrategyKind.INTERCEPT,
            accommodation=str(name) if name else None,
            location_text=str(location) if location else None,
            accommodation_id=_as_str(first_value(item, self.id_keys)),
            park_id=_as_str(first_value(item, self.park_keys)),
            stay_start_date=parse_provider_date(first_value(item, self.start_date_keys)),
            stay_nights=_as_int(nights),
            availability=Availability.SOLD_OUT if sold_out else Availability.AVAILABLE,
            pets_allowed=item.get("petFriendly") if isinstance(item.get("petFriendly"), bool) else None,
            raw={key: item.get(key) for key in list(item)[:20]},
        )

    # -------------------------------------------------------------------------
    # Rendered page
    # -------------------------------------------------------------------------

    def parse_rendered_html(self, html: str, request: SearchRequest) -> list[RawRecord]:
        """Provider selectors first, generic card heuristic second."""
        records = self.parse_cards(html, request)
        if records:
            return records
        if self.card_selectors:
            logger.warning(f"[{self.code}] Card selectors matched nothing, falling back to text heuristic")
        return self.heuristic_records(html, request)

    def parse_cards(self, html: str, request: SearchRequest) -> list[RawRecord]:
        if not self.card_selectors:
            return []
        soup = make_soup(html)
        records = []
        for card in soup.select(", ".join(self.card_selectors)):
            record = self.record_from_card(card, request)
            if record is not None:
                records.append(record)
        return records

    def record_from_card(self, card: Tag, request: SearchRequest) -> Optional[RawRecord]:
        text = card.get_text(" ", strip=True)
        price_text = _select_text(card, self.price_selectors)
        if not price_text or not CURRENCY_AMOUNT.search(price_text):
            return None
        # Explicit price AND an occupancy/duration token, or the card is dropped
        if not self.occupancy_cues.search(text):
            return None

        nights_text = _select_text(card, self.nights_selectors) or text
        sold_out = any(card.select_one(s) for s in self.sold_out_selectors) or bool(SOLD_OUT_PATTERN.search(text))
        link = card.select_one("a[href]")
        return RawRecord(
            price_text=CURRENCY_AMOUNT.search(price_text).group(0),
            strategy=StrategyKind.RENDERED_PAGE,
            accommodation=_select_text(card, self.title_selectors),
            location_text=card.get("data-park") or None,
            accommodation_id=card.get("data-id") or card.get("data-accommodation-id"),
            park_id=card.get("data-park-id"),
            stay_start_date=parse_provider_date(_select_text(card, self.date_selectors)),
            stay_nights=first_int(NIGHTS_PATTERN, nights_text),
            availability=Availability.SOLD_OUT if sold_out else Availability.AVAILABLE,
            source_url=self._absolute(link.get("href")) if link else None,
        )

    def heuristic_records(self, html: str, request: SearchRequest) -> list[RawRecord]:
        records = []
        for card in find_price_cards(html, cue_pattern=self.occupancy_cues):
            records.append(RawRecord(
                price_text=card.price_text,
                strategy=StrategyKind.RENDERED_PAGE,
                accommodation=card.title,
                location_text=request.location_hint or None,
                stay_nights=card.nights,
                availability=Availability.SOLD_OUT if card.sold_out else Availability.AVAILABLE,
                raw={"sleeps": card.sleeps},
            ))
        return records

    def _absolute(self, href: Optional[str]) -> Optional[str]:
        if not href:
            return None
        if href.startswith("http"):
            return href
        return f"{self.origin_url}/{href.lstrip('/')}"

    # -------------------------------------------------------------------------
    # Offers page
    # -------------------------------------------------------------------------

    def build_offers_url(self) -> str:
        return f"{self.origin_url}{self.offers_path}"

    async def fetch_offers(self, pool: Optional["BrowserSessionPool"] = None) -> list[OfferRecord]:
        """
        Scrape the provider's offers page.

        Plain HTTP unless ``offers_need_browser``, in which case a pooled session is
        borrowed. Raises an ExtractionError subclass on failure.
        """
        url = self.build_offers_url()
        if self.offers_need_browser:
            if pool is None:
                raise ProviderUnavailable("Offers page needs a browser session", provider_code=self.code)
            async with pool.acquire(self.code) as session:
                async with session.page() as page:
                    await session.goto(page, url)
                    html = await session.content(page)
        else:
            html = await fetch_offers_html(url, provider_code=self.code)

        if self.looks_rate_limited(html):
            raise RateLimited("Offers page shows a throttling notice", provider_code=self.code)

        offers = self.parse_offers(html)
        logger.info(f"[{self.code}] Found {len(offers)} offers on {url}")
        return offers

    def parse_offers(self, html: str) -> list[OfferRecord]:
        return parse_offer_cards(
            html,
            card_selectors=self.offer_card_selectors,
            title_selectors=self.offer_title_selectors,
            discount_selectors=self.offer_discount_selectors,
            voucher_selectors=self.offer_voucher_selectors,
            expiry_selectors=self.offer_expiry_selectors,
            description_selectors=self.offer_description_selectors,
            classify=self.classify_offer,
        )

    def classify_offer(self, text: str) -> tuple[DiscountType, Optional[Decimal]]:
        return classify_discount(text, default=self.offer_default_type)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.code}>"


def _select_text(card: Tag, selectors: Iterable[str]) -> Optional[str]:
    for selector in selectors:
        element = card.select_one(selector)
        if element:
            text = element.get_text(" ", strip=True)
            if text:
                return text
    return None


def _as_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
