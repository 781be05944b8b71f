"""
Provider-agnostic extraction heuristics for rendered booking pages.

Principles:
1. A result card is the nearest element around a price that also mentions a stay
   (nights, sleeps, bedrooms)
2. Cards without both a price and an occupancy/duration cue are discarded
3. Promotions are detected from banners and voucher-code patterns, never guessed
"""

import re
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)


# =============================================================================
# Patterns
# =============================================================================

CURRENCY_AMOUNT = re.compile(
    r"(?P<symbol>£|€|GBP|EUR)\s?(?P<amount>\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)",
    re.IGNORECASE,
)

OCCUPANCY_CUES = re.compile(
    r"\b(\d+\s*nights?|sleeps\s*\d+|\d+\s*bedrooms?|per\s+night|out\s+of\s+\d|bedrooms?)\b",
    re.IGNORECASE,
)

NIGHTS_PATTERN = re.compile(r"(\d{1,2})\s*nights?", re.IGNORECASE)
SLEEPS_PATTERN = re.compile(r"sleeps\s*(?:up\s+to\s+)?(\d{1,2})", re.IGNORECASE)
SOLD_OUT_PATTERN = re.compile(r"\b(sold\s*out|fully\s*booked|no\s+availability|unavailable)\b", re.IGNORECASE)

VOUCHER_PATTERN = re.compile(
    r"\b(?i:promo(?:tional)?\s+code|voucher(?:\s+code)?|discount\s+code|code)\s*[:\-]?\s*[\"'“‘]?"
    r"(?P<code>(?=[A-Z]*\d)[A-Z0-9]{4,15})\b"
)

CAMPAIGN_PATTERN = re.compile(
    r"((?:save|up\s+to)\s+(?:up\s+to\s+)?(?:£\d[\d,]*|\d{1,2}%)[^.!\n]{0,60}"
    r"|\d{1,2}%\s+off[^.!\n]{0,60}"
    r"|(?:flash|summer|winter|spring|autumn|january|black\s+friday)\s+sale[^.!\n]{0,60})",
    re.IGNORECASE,
)

VOUCHER_SELECTORS = [".voucher-code", ".promo-code", "[data-voucher-code]", "[data-promo-code]"]

CAMPAIGN_SELECTORS = [
    ".promo-banner",
    ".offer-banner",
    ".campaign-banner",
    "[class*='promo-banner']",
    "[class*='campaign']",
    "[data-campaign]",
]

TITLE_SELECTORS = ["h2", "h3", "h4", "[class*='title']", "[class*='name']"]

MAX_ANCESTOR_DEPTH = 10
MIN_CARD_PRICE = Decimal("40")   # anything lower is a deposit or a per-person teaser


@dataclass
class CardCandidate:
    """A price card found by walking up from a currency text node."""
    price_text: str
    amount: Decimal
    title: Optional[str]
    text: str
    nights: Optional[int] = None
    sleeps: Optional[int] = None
    sold_out: bool = False


@dataclass
class Promotions:
    campaign: Optional[str] = None
    voucher_code: Optional[str] = None

    @property
    def found(self) -> bool:
        return bool(self.campaign or self.voucher_code)


# =============================================================================
# Helpers
# =============================================================================

def make_soup(html: str) -> BeautifulSoup:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return soup


def parse_amount(text: str) -> Optional[Decimal]:
    """Turn '1,234.50' into Decimal('1234.50'). Returns None when not a finite number."""
    try:
        amount = Decimal(text.replace(",", "").strip())
    except (InvalidOperation, AttributeError):
        return None
    return amount if amount.is_finite() else None


def currency_amounts(text: str) -> list[tuple[str, Decimal]]:
    """All (matched text, amount) pairs in a block of text."""
    found = []
    for match in CURRENCY_AMOUNT.finditer(text):
        amount = parse_amount(match.group("amount"))
        if amount is not None:
            found.append((match.group(0), amount))
    return found


def first_int(pattern: re.Pattern, text: str) -> Optional[int]:
    match = pattern.search(text)
    return int(match.group(1)) if match else None


def parse_provider_date(value) -> Optional[date]:
    """Dates as providers send them: ISO, DD-MM-YYYY, DD/MM/YYYY."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()[:10]
    for fmt in ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _card_title(card: Tag) -> Optional[str]:
    for selector in TITLE_SELECTORS:
        element = card.select_one(selector)
        if element:
            title = element.get_text(" ", strip=True)
            if title and not CURRENCY_AMOUNT.search(title):
                return title[:300]
    return None


# =============================================================================
# Card heuristic
# =============================================================================

def find_price_cards(
    html: str,
    cue_pattern: re.Pattern = OCCUPANCY_CUES,
    min_price: Decimal = MIN_CARD_PRICE,
    max_depth: int = MAX_ANCESTOR_DEPTH,
) -> list[CardCandidate]:
    """
    Locate result cards in rendered HTML.

    For every text node holding a currency symbol and a digit, walk up at most
    ``max_depth`` ancestors to the first element whose text also carries an
    occupancy/duration cue. That element is the card; its largest plausible amount
    is the stay price (smaller amounts are deposits or per-night teasers).
    """
    soup = make_soup(html)
    cards: list[CardCandidate] = []
    seen: set[int] = set()

    for node in soup.find_all(string=CURRENCY_AMOUNT):
        element = node.parent
        card = None
        depth = 0
        while element is not None and depth < max_depth and element.name not in ("body", "html", "[document]"):
            if cue_pattern.search(element.get_text(" ", strip=True)):
                card = element
                break
            element = element.parent
            depth += 1

        if card is None or id(card) in seen:
            continue
        seen.add(id(card))

        text = card.get_text(" ", strip=True)
        amounts = [(raw, amount) for raw, amount in currency_amounts(text) if amount > min_price]
        if not amounts:
            continue
        price_text, amount = max(amounts, key=lambda pair: pair[1])

        cards.append(CardCandidate(
            price_text=price_text,
            amount=amount,
            title=_card_title(card),
            text=text[:1000],
            nights=first_int(NIGHTS_PATTERN, text),
            sleeps=first_int(SLEEPS_PATTERN, text),
            sold_out=bool(SOLD_OUT_PATTERN.search(text)),
        ))

    logger.debug(f"Card heuristic found {len(cards)} candidate cards")
    return cards


# =============================================================================
# Promotions
# =============================================================================

def detect_promotions(html: str) -> Promotions:
    """Find a promotional campaign banner and/or a voucher code on a page."""
    soup = make_soup(html)
    promotions = Promotions()

    for selector in VOUCHER_SELECTORS:
        element = soup.select_one(selector)
        if element:
            code = (
                element.get("data-voucher-code")
                or element.get("data-promo-code")
                or element.get_text(strip=True)
            )
            if code:
                promotions.voucher_code = code.strip().upper()[:30]
                break

    for selector in CAMPAIGN_SELECTORS:
        element = soup.select_one(selector)
        if element:
            text = element.get("data-campaign") or element.get_text(" ", strip=True)
            if text:
                promotions.campaign = text[:200]
                break

    page_text = soup.get_text(" ", strip=True)
    if promotions.voucher_code is None:
        match = VOUCHER_PATTERN.search(page_text)
        if match:
            promotions.voucher_code = match.group("code")
    if promotions.campaign is None:
        match = CAMPAIGN_PATTERN.search(page_text)
        if match:
            promotions.campaign = match.group(0).strip()[:200]

    return promotions


def page_contains_any(html: str, phrases) -> bool:
    lowered = html.lower()
    return any(phrase.lower() in lowered for phrase in phrases)
