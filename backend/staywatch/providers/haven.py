"""Haven adapter."""

from staywatch.providers.base import ProviderAdapter, slugify
from staywatch.scrapers.records import SearchRequest, StrategyKind


class HavenAdapter(ProviderAdapter):
    code = "haven"
    name = "Haven"
    origin_url = "https://www.haven.com"

    strategies = (StrategyKind.INTERCEPT, StrategyKind.RENDERED_PAGE)

    challenge_markers = ("Haven Holidays", "Find your holiday", "Our parks")
    ready_selectors = ("header nav", "[data-testid='search-bar']")

    api_url_patterns = ("/api/search", "/api/availability", "availability", "/holidays/search")
    result_collection_paths = ("results", "accommodations", "data.results", "data.accommodations")
    price_keys = ("totalPrice", "price.total", "price", "fromPrice")
    name_keys = ("accommodationName", "grade", "name")
    location_keys = ("parkName", "park.name", "location")

    card_selectors = (".accommodation-result", ".holiday-card")
    price_selectors = (".price-total", ".holiday-price")
    title_selectors = (".accommodation-type", ".grade", "h3", "h2")
    date_selectors = (".arrival-date", ".check-in-date")
    nights_selectors = (".nights", ".duration")
    sold_out_selectors = (".sold-out", ".not-available")

    no_results_phrases = (
        "no holidays available",
        "no results found",
        "sorry, we couldn't find",
    )

    offers_path = "/offers"
    offer_card_selectors = (".offer", ".special-offer-card")
    offer_discount_selectors = (".discount-amount", ".save-text")
    offer_voucher_selectors = (".code", ".promo-code")
    offer_expiry_selectors = (".valid-until", ".offer-ends")

    def build_search_url(self, request: SearchRequest) -> str:
        return self._url("/holidays/search", {
            "adults": request.adults,
            "children": request.children,
            "infants": request.infants,
            "check-in": request.date_start.isoformat(),
            "check-out": request.date_end.isoformat(),
            "nights": request.nights,
            "park": slugify(request.park_ids[0]) if request.park_ids else None,
        })
