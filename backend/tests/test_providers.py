"""
Tests for provider adapters and the extraction strategies that drive them.

Adapters are exercised on canned HTML and JSON; strategies run against a fake
browser session.
"""
import pytest
from contextlib import asynccontextmanager
from datetime import date
from unittest.mock import AsyncMock

from playwright.async_api import Error as PlaywrightError

from staywatch.errors import RateLimited, StructuralExtractionMismatch
from staywatch.models import Availability
from staywatch.providers import ADAPTERS, get_adapter, list_adapters
from staywatch.providers.awayresorts import AwayResortsAdapter, park_id_for
from staywatch.providers.butlins import ButlinsAdapter, resort_code
from staywatch.providers.centerparcs import CenterParcsAdapter, village_label
from staywatch.providers.haven import HavenAdapter
from staywatch.providers.hoseasons import HoseasonsAdapter, region_slug
from staywatch.providers.parkdean import ParkdeanAdapter
from staywatch.providers.registry import supported_providers
from staywatch.scrapers.records import SearchRequest, StrategyKind
from staywatch.scrapers.strategies import InterceptStrategy, RenderedPageStrategy


def make_request(provider_code, regions=(), park_ids=(), **overrides):
    fields = dict(
        provider_code=provider_code,
        date_start=date(2026, 5, 23),
        date_end=date(2026, 5, 23),
        regions=tuple(regions),
        park_ids=tuple(park_ids),
        nights_min=7,
        nights_max=7,
        adults=2,
        children=0,
    )
    fields.update(overrides)
    return SearchRequest(**fields)


# =============================================================================
# Registry
# =============================================================================

class TestRegistry:
    def test_all_providers_registered(self):
        assert supported_providers() == [
            "hoseasons", "haven", "centerparcs", "butlins", "parkdean", "awayresorts",
        ]
        assert len(list_adapters()) == len(ADAPTERS)

    def test_lookup_is_case_insensitive_and_shared(self):
        assert isinstance(get_adapter("Haven"), HavenAdapter)
        assert get_adapter("haven") is get_adapter("HAVEN ")

    def test_unknown_provider(self):
        with pytest.raises(KeyError):
            get_adapter("pontins")

    async def test_unsupported_strategy(self):
        with pytest.raises(ValueError):
            await CenterParcsAdapter().extract(None, make_request("centerparcs"), StrategyKind.INTERCEPT)


# =============================================================================
# Hoseasons
# =============================================================================

class TestHoseasons:
    adapter = HoseasonsAdapter()

    def test_region_slug(self):
        assert region_slug("lake-district") == "cumbria"
        assert region_slug("Kielder Water Forest") == "northumberland"
        assert region_slug("cornwall") == "cornwall"

    def test_search_url(self):
        url = self.adapter.build_search_url(make_request("hoseasons", regions=["lake-district"]))

        assert url.startswith("https://www.hoseasons.co.uk/holiday-parks/cumbria?")
        assert "start=23-05-2026" in url
        assert "nights=7" in url
        assert "adult=2" in url

    def test_search_url_without_location(self):
        url = self.adapter.build_search_url(make_request("hoseasons"))
        assert url.startswith("https://www.hoseasons.co.uk/search?")

    def test_api_payload(self):
        request = make_request("hoseasons", regions=["northumberland"])
        payload = {"properties": [
            {"displayName": "Kielder Lodge", "priceFrom": "£799", "propertyCode": "KLD", "location": "Kielder"},
            {"price": 500},
        ]}

        assert self.adapter.is_result_payload(payload)
        records = self.adapter.parse_api_payload(payload, request)

        assert len(records) == 1
        record = records[0]
        assert record.price_text == "£799"
        assert record.accommodation == "Kielder Lodge"
        assert record.accommodation_id == "KLD"
        assert record.stay_start_date == date(2026, 5, 23)
        assert record.stay_nights == 7
        assert record.source_url == "https://www.hoseasons.co.uk/holiday-parks/KLD"

    def test_rendered_cards(self):
        html = """
        <div class="listing">
          <div class="card"><h3>Forest Lodge</h3><p>7 nights</p><p>Sleeps 6</p><span>£899</span></div>
          <div class="card"><h3>Lake View</h3><p>7 nights</p><p>4.6 out of 5</p><span>£1,020</span></div>
        </div>
        """
        records = self.adapter.parse_rendered_html(html, make_request("hoseasons"))

        assert [(r.accommodation, r.price_text) for r in records] == [
            ("Forest Lodge", "£899"),
            ("Lake View", "£1,020"),
        ]

    def test_no_results_page(self):
        assert self.adapter.is_no_results_page("<p>Sorry, we couldn't find any parks</p>")


# =============================================================================
# Haven
# =============================================================================

class TestHaven:
    adapter = HavenAdapter()

    def test_search_url(self):
        url = self.adapter.build_search_url(
            make_request("haven", park_ids=["primrose-valley"], date_end=date(2026, 5, 30), children=2)
        )

        assert url.startswith("https://www.haven.com/holidays/search?")
        assert "park=primrose-valley" in url
        assert "check-in=2026-05-23" in url
        assert "check-out=2026-05-30" in url
        assert "children=2" in url

    def test_cards(self):
        html = """
        <div class="accommodation-result" data-id="H1">
          <span class="grade">Prestige Caravan</span><span class="nights">7 nights</span>
          <span class="price-total">£1,099</span><a href="/book/123">Book</a>
        </div>
        <div class="accommodation-result" data-id="H2">
          <span class="grade">Saver Caravan</span><span class="nights">7 nights</span>
          <span class="price-total">£599</span><span class="not-available">Not available</span>
        </div>
        <div class="accommodation-result"><span class="grade">Mystery</span><span class="price-total">£10</span></div>
        """
        records = self.adapter.parse_rendered_html(html, make_request("haven"))

        assert len(records) == 2
        assert records[0].accommodation == "Prestige Caravan"
        assert records[0].accommodation_id == "H1"
        assert records[0].stay_nights == 7
        assert records[0].source_url == "https://www.haven.com/book/123"
        assert records[0].availability == Availability.AVAILABLE
        assert records[1].availability == Availability.SOLD_OUT

    def test_rate_limit_page(self):
        assert self.adapter.looks_rate_limited("<h1>Too Many Requests</h1>")


# =============================================================================
# Center Parcs
# =============================================================================

class TestCenterParcs:
    adapter = CenterParcsAdapter()

    def test_rendered_only(self):
        assert self.adapter.strategies == (StrategyKind.RENDERED_PAGE,)
        assert self.adapter.build_search_url(make_request("centerparcs")) == "https://www.centerparcs.co.uk/breaks"

    def test_village_label(self):
        assert village_label("longleat") == "Longleat Forest"
        assert village_label("whinfell-forest") == "Whinfell Forest"
        assert village_label("Ballyvourney") == "Ballyvourney"

    def test_pet_friendly_card(self):
        html = """
        <div class="lodge-card">
          <h3>New Style Woodland Lodge</h3><span class="nights">4 nights</span>
          <span class="price">£1,349</span><span class="pet-friendly">Dog friendly</span>
        </div>
        """
        records = self.adapter.parse_rendered_html(html, make_request("centerparcs"))

        assert len(records) == 1
        assert records[0].pets_allowed is True
        assert records[0].stay_nights == 4

    async def test_booking_form_is_filled(self):
        page = AsyncMock()
        page.url = "https://www.centerparcs.co.uk/breaks"
        request = make_request("centerparcs", park_ids=["longleat"], children=1)

        await self.adapter.prepare_results_page(page, request)

        page.select_option.assert_awaited_once()
        assert page.select_option.await_args.kwargs["label"] == "Longleat Forest"
        page.wait_for_load_state.assert_awaited_once()

    async def test_missing_booking_bar_is_tolerated(self):
        page = AsyncMock()
        page.url = "https://www.centerparcs.co.uk/breaks"
        page.wait_for_selector.side_effect = PlaywrightError("Timeout 5000ms exceeded")

        await self.adapter.prepare_results_page(page, make_request("centerparcs"))

        page.select_option.assert_not_awaited()
        page.query_selector.assert_not_awaited()


# =============================================================================
# Butlins
# =============================================================================

class TestButlins:
    adapter = ButlinsAdapter()

    @pytest.mark.parametrize("location,code", [
        ("minehead", "MH"),
        ("bognor-regis", "BG"),
        ("Skegness", "SK"),
        ("sk", "SK"),
        ("", "BG"),
    ])
    def test_resort_code(self, location, code):
        assert resort_code(location) == code

    def test_search_url(self):
        url = self.adapter.build_search_url(make_request("butlins", park_ids=["minehead"]))

        assert url.startswith("https://www.butlins.com/booking/search?")
        assert "resort=MH" in url
        assert "startDate=2026-05-23" in url
        assert "duration=7" in url

    def test_grade_headings(self):
        html = """
        <div class="intro"><h2>Why choose Butlins?</h2><p>Fun for all</p></div>
        <div class="grade"><h3>Silver Apartment</h3><p>Sleeps 4</p><span class="price">£459</span></div>
        <div class="grade"><h3>Gold Apartment</h3><p>Sold out</p><span class="price">£699</span></div>
        """
        request = make_request("butlins", park_ids=["minehead"])
        records = self.adapter.parse_rendered_html(html, request)

        assert [(r.accommodation, r.price_text) for r in records] == [
            ("Silver Apartment", "£459"),
            ("Gold Apartment", "£699"),
        ]
        assert records[0].park_id == "MH"
        assert records[0].stay_start_date == date(2026, 5, 23)
        assert records[1].availability == Availability.SOLD_OUT

    def test_api_item_inherits_stay(self):
        payload = {"breaks": [{"accommodationType": "Standard Room", "totalPrice": 329}]}
        records = self.adapter.parse_api_payload(payload, make_request("butlins", park_ids=["skegness"]))

        assert records[0].stay_nights == 7
        assert records[0].park_id == "SK"

    def test_no_results(self):
        assert self.adapter.is_no_results_page("<p>Sorry, no breaks match your search</p>")


# =============================================================================
# Parkdean
# =============================================================================

class TestParkdean:
    adapter = ParkdeanAdapter()

    def test_search_url(self):
        url = self.adapter.build_search_url(make_request("parkdean", regions=["cornwall"], pets=1))

        assert url.startswith("https://www.parkdeanresorts.co.uk/search-results/?")
        assert "arriving=23%2F05%2F2026" in url
        assert "region=cornwall" in url
        assert "pets=1" in url
        assert "children" not in url

    def test_card_park_from_link(self):
        html = """
        <div class="search-result">
          <span class="property-name">Trevella</span><span class="location">Cornwall</span>
          <p>7 nights, sleeps 6</p><span class="price">£629</span>
          <a href="/holiday-parks/cornwall/trevella/">View</a>
        </div>
        """
        records = self.adapter.parse_rendered_html(html, make_request("parkdean"))

        assert len(records) == 1
        assert records[0].accommodation == "Trevella"
        assert records[0].location_text == "Cornwall"
        assert records[0].park_id == "trevella"


# =============================================================================
# Away Resorts
# =============================================================================

DATE_STRIP = """
<section class="search-results__accommodation">
  <h2>Pet Friendly Lodge</h2>
  <div class="date-scroll__day"><a href="/book/123" data-cost="£549">Sat</a></div>
  <div class="date-scroll__day date-scroll__day--sold"><a href="/book/124" data-cost="£500">Sun</a></div>
  <div class="date-scroll__day">
    <span class="date-scroll__price">£610</span><a href="/book/125" data-name="Caravan Deluxe">Mon</a>
  </div>
  <div class="date-scroll__day"><span>Sold out</span></div>
</section>
"""


class TestAwayResorts:
    adapter = AwayResortsAdapter()

    @pytest.mark.parametrize("location,park_id", [
        ("tattershall-lakes", "7"),
        ("The Lakes Rookley", "13"),
        ("99", "99"),
        ("somewhere-else", "7"),
    ])
    def test_park_id_for(self, location, park_id):
        assert park_id_for(location) == park_id

    def test_search_url(self):
        url = self.adapter.build_search_url(make_request("awayresorts", park_ids=["rookley"]))

        assert "parkID=13" in url
        assert "from=2026-05-23" in url
        assert "to=2026-05-30" in url

    def test_date_strip(self):
        assert self.adapter.results_rendered(DATE_STRIP)
        records = self.adapter.parse_rendered_html(DATE_STRIP, make_request("awayresorts", park_ids=["rookley"]))

        assert [(r.accommodation, r.price_text) for r in records] == [
            ("Pet Friendly Lodge", "£549"),
            ("Caravan Deluxe", "£610"),
        ]
        assert records[0].pets_allowed is True
        assert records[1].pets_allowed is None
        assert records[0].park_id == "13"
        assert records[0].source_url == "https://www.awayresorts.co.uk/book/123"


# =============================================================================
# Strategies
# =============================================================================

class FakeResponse:
    def __init__(self, url, payload=None, status=200, content_type="application/json"):
        self.url = url
        self.status = status
        self.headers = {"content-type": content_type}
        self._payload = payload

    async def json(self):
        return self._payload


class FakePage:
    def __init__(self, html, responses=()):
        self.html = html
        self.responses = list(responses)
        self.handlers = []

    def on(self, event, handler):
        self.handlers.append(handler)

    async def content(self):
        return self.html


class FakeSession:
    def __init__(self, html, responses=()):
        self.current = FakePage(html, responses)
        self.visited = []

    @asynccontextmanager
    async def page(self):
        yield self.current

    async def goto(self, page, url, wait_until="domcontentloaded"):
        self.visited.append(url)
        for response in page.responses:
            for handler in page.handlers:
                await handler(response)

    async def content(self, page):
        return await page.content()


class TestInterceptStrategy:
    request = make_request("haven", park_ids=["primrose-valley"])

    async def test_captures_matching_json(self):
        payload = {"results": [
            {"accommodationName": "Prestige Caravan", "totalPrice": 1099, "nights": 7, "parkName": "Primrose Valley"},
        ]}
        session = FakeSession(
            '<div class="promo-banner">Summer sale: 20% off</div>',
            [
                FakeResponse("https://www.haven.com/static/app.js", content_type="text/javascript"),
                FakeResponse("https://www.haven.com/api/search?park=primrose-valley", payload),
            ],
        )

        records = await InterceptStrategy(wait_seconds=0.05).run(HavenAdapter(), session, self.request)

        assert len(records) == 1
        record = records[0]
        assert record.strategy == StrategyKind.INTERCEPT
        assert record.price_text == "1099"
        assert record.location_text == "Primrose Valley"
        assert record.campaign == "Summer sale: 20% off"
        assert record.source_url == session.visited[0]

    async def test_throttled_api(self):
        session = FakeSession("<html></html>", [FakeResponse("https://www.haven.com/api/search", status=429)])

        with pytest.raises(RateLimited):
            await InterceptStrategy(wait_seconds=0.05).run(HavenAdapter(), session, self.request)

    async def test_no_response_on_no_results_page(self):
        session = FakeSession("<h2>No holidays available for your dates</h2>")

        records = await InterceptStrategy(wait_seconds=0.05).run(HavenAdapter(), session, self.request)

        assert records == []

    async def test_no_response_is_mismatch(self):
        session = FakeSession("<h2>Loading...</h2>")

        with pytest.raises(StructuralExtractionMismatch):
            await InterceptStrategy(wait_seconds=0.05).run(HavenAdapter(), session, self.request)


class TestRenderedPageStrategy:
    request = make_request("awayresorts", park_ids=["rookley"])

    async def test_parses_rendered_page(self):
        session = FakeSession(DATE_STRIP + "<p>Use code LAKES10 at checkout</p>")

        records = await RenderedPageStrategy(wait_seconds=0.05).run(AwayResortsAdapter(), session, self.request)

        assert len(records) == 2
        assert all(r.strategy == StrategyKind.RENDERED_PAGE for r in records)
        assert all(r.voucher_code == "LAKES10" for r in records)

    async def test_blank_page_is_mismatch(self):
        session = FakeSession("<html><body><p>Hello</p></body></html>")

        with pytest.raises(StructuralExtractionMismatch):
            await RenderedPageStrategy(wait_seconds=0.05).run(AwayResortsAdapter(), session, self.request)

    async def test_throttle_page(self):
        session = FakeSession("<h1>Unusual traffic from your network</h1>")

        with pytest.raises(RateLimited):
            await RenderedPageStrategy(wait_seconds=0.05).run(AwayResortsAdapter(), session, self.request)
