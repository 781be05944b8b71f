"""
Offers-page scraping: promotions a provider advertises outside any one search.

Principles:
1. An offer needs a title; everything else is optional
2. "N%" is a percentage discount, "£N" a fixed one, anything else a perk
3. Identical wording on the same provider is the same offer
"""

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Callable, Iterable, Optional

import httpx
from bs4 import Tag

from staywatch.errors import RateLimited, TransientNetworkError
from staywatch.models.deal import DiscountType
from staywatch.scrapers.heuristics import CURRENCY_AMOUNT, VOUCHER_PATTERN, make_soup, parse_amount

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 2.0
OFFERS_TIMEOUT = 30.0

REQUEST_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/120.0 Safari/537.36",
    "Accept-Language": "en-GB,en;q=0.9",
}

PERCENT_PATTERN = re.compile(r"(\d{1,2}(?:\.\d+)?)\s*%")
CODE_TOKEN = re.compile(r"\b[A-Z0-9]{4,15}\b")
FULL_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{2,4})\b")
DAY_MONTH = re.compile(r"\b(\d{1,2})/(\d{1,2})\b")
LONG_DATE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)?\s+([A-Za-z]{3,9})\s+(\d{4})\b")

Classifier = Callable[[str], tuple[DiscountType, Optional[Decimal]]]


@dataclass
class OfferRecord:
    """One promotion as scraped, before it is stored as a Deal."""
    title: str
    discount_type: DiscountType
    discount_value: Optional[Decimal] = None
    voucher_code: Optional[str] = None
    ends_at: Optional[datetime] = None
    restrictions: dict = field(default_factory=dict)

    @property
    def source_ref(self) -> str:
        value = "" if self.discount_value is None else str(self.discount_value)
        key = f"{self.title}|{self.discount_type.value}|{value}"
        return hashlib.sha256(key.encode()).hexdigest()


# =============================================================================
# Classification
# =============================================================================

def classify_discount(text: str, default: DiscountType = DiscountType.PERK) -> tuple[DiscountType, Optional[Decimal]]:
    """'Save 25%' -> (PERCENT_OFF, 25); 'Save £100' -> (FIXED_OFF, 100); else ``default``."""
    text = text or ""
    percent = PERCENT_PATTERN.search(text)
    if percent:
        return DiscountType.PERCENT_OFF, Decimal(percent.group(1))
    amount = CURRENCY_AMOUNT.search(text)
    if amount:
        return DiscountType.FIXED_OFF, parse_amount(amount.group("amount"))
    return default, None


def parse_offer_expiry(text: str, today: Optional[date] = None) -> Optional[datetime]:
    """
    End of the last valid day, from 'Valid until 31/03/2026', 'Ends 5th April 2026'
    or 'Expires 31/03'. A day/month already past rolls over to next year.
    """
    if not text:
        return None
    today = today or date.today()
    found: Optional[date] = None

    match = FULL_DATE.search(text)
    if match:
        day, month, year = (int(g) for g in match.groups())
        year = year + 2000 if year < 100 else year
        found = _safe_date(year, month, day)

    if found is None:
        match = LONG_DATE.search(text)
        if match:
            try:
                found = datetime.strptime(
                    f"{match.group(1)} {match.group(2)[:3].title()} {match.group(3)}", "%d %b %Y"
                ).date()
            except ValueError:
                found = None

    if found is None:
        match = DAY_MONTH.search(text)
        if match:
            day, month = int(match.group(1)), int(match.group(2))
            found = _safe_date(today.year, month, day)
            if found is not None and found < today:
                found = _safe_date(today.year + 1, month, day)

    return datetime.combine(found, time(23, 59, 59)) if found else None


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def voucher_from_text(text: str) -> Optional[str]:
    if not text:
        return None
    match = VOUCHER_PATTERN.search(text)
    if match:
        return match.group("code")
    token = CODE_TOKEN.search(text.upper())
    return token.group(0) if token and any(c.isdigit() for c in token.group(0)) else None


# =============================================================================
# Card parsing
# =============================================================================

def parse_offer_cards(
    html: str,
    card_selectors: Iterable[str],
    title_selectors: Iterable[str] = ("h2", "h3"),
    discount_selectors: Iterable[str] = (),
    voucher_selectors: Iterable[str] = (),
    expiry_selectors: Iterable[str] = (),
    description_selectors: Iterable[str] = (),
    classify: Classifier = classify_discount,
    today: Optional[date] = None,
) -> list[OfferRecord]:
    """Turn every offer card in ``html`` into an OfferRecord. Nested matches collapse by wording."""
    card_selectors = tuple(card_selectors)
    if not card_selectors:
        return []

    soup = make_soup(html)
    offers: list[OfferRecord] = []
    seen: set[str] = set()
    for card in soup.select(", ".join(card_selectors)):
        title = _first_text(card, title_selectors)
        if not title:
            continue
        text = card.get_text(" ", strip=True)

        discount_text = _first_text(card, discount_selectors) or text
        discount_type, discount_value = classify(discount_text)

        voucher = _first_text(card, voucher_selectors)
        voucher_code = voucher_from_text(voucher) if voucher else voucher_from_text_with_cue(text)

        expiry_text = _first_text(card, expiry_selectors) or text
        description = _first_text(card, description_selectors)

        offer = OfferRecord(
            title=title[:300],
            discount_type=discount_type,
            discount_value=discount_value,
            voucher_code=voucher_code,
            ends_at=parse_offer_expiry(expiry_text, today),
            restrictions={"description": description[:500]} if description else {},
        )
        if offer.source_ref in seen:
            continue
        seen.add(offer.source_ref)
        offers.append(offer)
    return offers


def voucher_from_text_with_cue(text: str) -> Optional[str]:
    """Free text only counts when the code is introduced ('use code SPRING25')."""
    match = VOUCHER_PATTERN.search(text or "")
    return match.group("code") if match else None


def _first_text(card: Tag, selectors: Iterable[str]) -> Optional[str]:
    for selector in selectors:
        element = card.select_one(selector)
        if element:
            text = element.get_text(" ", strip=True)
            if text:
                return text
    return None


# =============================================================================
# HTTP fetch
# =============================================================================

async def fetch_offers_html(url: str, provider_code: str, timeout: float = OFFERS_TIMEOUT) -> str:
    """
    GET an offers page with retries.

    Timeouts and 5xx are retried with a growing delay; a final 429 raises
    RateLimited, anything else left over raises TransientNetworkError.
    """
    last_error: Optional[Exception] = None

    for attempt in range(MAX_RETRIES):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url, headers=REQUEST_HEADERS, follow_redirects=True)
                response.raise_for_status()
            return response.text

        except httpx.TimeoutException as e:
            last_error = e
            logger.warning(f"[{provider_code}] Timeout fetching offers (attempt {attempt + 1}/{MAX_RETRIES})")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status not in (429, 502, 503, 504):
                raise TransientNetworkError(f"HTTP {status} from {url}", provider_code=provider_code)
            last_error = e
            logger.warning(f"[{provider_code}] Retryable HTTP {status} fetching offers")
        except httpx.HTTPError as e:
            last_error = e
            logger.warning(f"[{provider_code}] Error fetching offers: {e}")

        if attempt < MAX_RETRIES - 1:
            await asyncio.sleep(RETRY_DELAY * (attempt + 1))

    logger.error(f"[{provider_code}] All {MAX_RETRIES} offers fetches failed")
    if isinstance(last_error, httpx.HTTPStatusError) and last_error.response.status_code == 429:
        raise RateLimited(f"HTTP 429 from {url}", provider_code=provider_code)
    raise TransientNetworkError(f"Could not fetch {url}: {last_error}", provider_code=provider_code)
