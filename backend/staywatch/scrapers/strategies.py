"""
Extraction strategies, dispatched by ``StrategyKind``.

INTERCEPT listens for the provider's own JSON search responses while the results
page loads. RENDERED_PAGE reads the final HTML, trying the adapter's selectors and
then the generic price-card heuristic.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from playwright.async_api import Error as PlaywrightError

from staywatch.config import get_settings
from staywatch.errors import RateLimited, StructuralExtractionMismatch
from staywatch.scrapers.heuristics import Promotions, detect_promotions
from staywatch.scrapers.records import RawRecord, SearchRequest, StrategyKind
from staywatch.scrapers.waits import wait_for_condition
from staywatch.utils.clock import utcnow

if TYPE_CHECKING:
    from staywatch.providers.base import ProviderAdapter
    from staywatch.scrapers.session_pool import ScopedSession

logger = logging.getLogger(__name__)


def save_html_snapshot(provider_code: str, html: str, reason: str) -> Optional[str]:
    """Write the page that failed to parse, when an artifacts directory is configured."""
    artifacts_dir = get_settings().artifacts_dir
    if not artifacts_dir or not html:
        return None
    try:
        directory = Path(artifacts_dir)
        directory.mkdir(parents=True, exist_ok=True)
        timestamp = utcnow().strftime("%Y%m%d_%H%M%S")
        path = directory / f"{provider_code}_{timestamp}_{reason}.html"
        path.write_text(html, encoding="utf-8")
        return str(path)
    except OSError as e:
        logger.warning(f"Could not save HTML snapshot for {provider_code}: {e}")
        return None


def apply_promotions(records: list[RawRecord], promotions: Promotions) -> None:
    for record in records:
        if promotions.campaign and not record.campaign:
            record.campaign = promotions.campaign
        if promotions.voucher_code and not record.voucher_code:
            record.voucher_code = promotions.voucher_code


def _stamp(records: list[RawRecord], kind: StrategyKind, url: str) -> list[RawRecord]:
    for record in records:
        record.strategy = kind
        if not record.source_url:
            record.source_url = url
    return records


class ExtractionStrategy:
    kind: StrategyKind

    async def run(
        self,
        adapter: "ProviderAdapter",
        session: "ScopedSession",
        request: SearchRequest,
    ) -> list[RawRecord]:
        raise NotImplementedError


class InterceptStrategy(ExtractionStrategy):
    """Capture structured search responses matching the adapter's endpoint patterns."""

    kind = StrategyKind.INTERCEPT

    def __init__(self, wait_seconds: Optional[float] = None):
        self.wait_seconds = wait_seconds if wait_seconds is not None else get_settings().intercept_wait_seconds

    async def run(self, adapter, session, request):
        url = adapter.build_search_url(request)
        payloads: list = []
        throttled: list[str] = []

        async def on_response(response):
            if not adapter.matches_api_url(response.url):
                return
            if response.status == 429:
                throttled.append(response.url)
                return
            content_type = response.headers.get("content-type", "")
            if "json" not in content_type:
                return
            try:
                payload = await response.json()
            except (PlaywrightError, ValueError):
                return
            if adapter.is_result_payload(payload):
                payloads.append(payload)

        async with session.page() as page:
            page.on("response", on_response)
            await session.goto(page, url)
            await adapter.prepare_results_page(page, request)

            arrived = await wait_for_condition(
                lambda: bool(payloads) or bool(throttled),
                timeout=self.wait_seconds,
                interval=0.5,
            )
            html = await session.content(page)

        if throttled and not payloads:
            raise RateLimited(f"HTTP 429 from {throttled[0]}", provider_code=adapter.code)
        if adapter.looks_rate_limited(html):
            raise RateLimited("Throttling page served", provider_code=adapter.code)

        if not arrived:
            if adapter.is_no_results_page(html):
                logger.info(f"[{adapter.code}] No availability for {request.location_hint or 'search'}")
                return []
            raise StructuralExtractionMismatch(
                f"No qualifying API response within {self.wait_seconds:.0f}s",
                provider_code=adapter.code,
            )

        records: list[RawRecord] = []
        for payload in payloads:
            records.extend(adapter.parse_api_payload(payload, request))

        if not records:
            raise StructuralExtractionMismatch(
                f"{len(payloads)} intercepted responses held no well-formed records",
                provider_code=adapter.code,
            )

        apply_promotions(records, detect_promotions(html))
        logger.info(f"[{adapter.code}] Intercepted {len(records)} records from {len(payloads)} responses")
        return _stamp(records, self.kind, url)


class RenderedPageStrategy(ExtractionStrategy):
    """Parse the rendered results page."""

    kind = StrategyKind.RENDERED_PAGE

    def __init__(self, wait_seconds: Optional[float] = None):
        self.wait_seconds = wait_seconds if wait_seconds is not None else get_settings().intercept_wait_seconds

    async def run(self, adapter, session, request):
        url = adapter.build_search_url(request)

        async with session.page() as page:
            await session.goto(page, url)
            await adapter.prepare_results_page(page, request)

            async def results_rendered() -> bool:
                try:
                    html = await page.content()
                except PlaywrightError:
                    return False
                return adapter.results_rendered(html)

            await wait_for_condition(results_rendered, timeout=self.wait_seconds, interval=1.0)
            html = await session.content(page)

        if adapter.looks_rate_limited(html):
            raise RateLimited("Throttling page served", provider_code=adapter.code)
        if adapter.is_no_results_page(html):
            logger.info(f"[{adapter.code}] No availability for {request.location_hint or 'search'}")
            return []

        records = adapter.parse_rendered_html(html, request)
        if not records:
            error = StructuralExtractionMismatch(
                "Rendered page held no card with both a price and an occupancy cue",
                provider_code=adapter.code,
            )
            error.snapshot_path = save_html_snapshot(adapter.code, html, "structure")
            raise error

        apply_promotions(records, detect_promotions(html))
        logger.info(f"[{adapter.code}] Parsed {len(records)} records from rendered page")
        return _stamp(records, self.kind, url)


def get_strategy(kind: StrategyKind) -> ExtractionStrategy:
    if kind == StrategyKind.INTERCEPT:
        return InterceptStrategy()
    if kind == StrategyKind.RENDERED_PAGE:
        return RenderedPageStrategy()
    raise ValueError(f"Unknown strategy {kind}")
