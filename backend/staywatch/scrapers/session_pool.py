"""
Browser Session Pool.

Keeps a small, capped set of Playwright browser contexts per provider. A session is
handed out through ``acquire(provider_code)`` (an async context manager) and goes
back to the pool, or is closed, on every exit path.

Before a session is used for the first time, or once its cookies are older than the
TTL, the pool absorbs the provider's anti-bot challenge: it opens the origin and waits
for a provider-specific "real content" marker.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import (
    async_playwright,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeout,
)

from staywatch.config import get_settings
from staywatch.errors import (
    ChallengeUnresolved,
    ExtractionError,
    ProviderUnavailable,
    RateLimited,
    TransientNetworkError,
)
from staywatch.providers.base import ProviderAdapter
from staywatch.providers.registry import get_adapter
from staywatch.scrapers.records import StrategyKind
from staywatch.scrapers.waits import close_quietly, wait_for_condition

logger = logging.getLogger(__name__)


# Browser launch arguments for headless operation
BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-setuid-sandbox",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--disable-translate",
    "--mute-audio",
    "--hide-scrollbars",
]

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1920, "height": 1080}
LOCALE = "en-GB"
TIMEZONE = "Europe/London"

HIDE_WEBDRIVER_SCRIPT = "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"

ContextFactory = Callable[[str, Optional[dict]], Awaitable[Any]]


@dataclass
class ProviderSessionState:
    """In-process state per provider. Never persisted."""
    storage_state: Optional[dict] = None
    absorbed_at: Optional[float] = None
    last_good_strategy: Optional[StrategyKind] = None
    idle: list = field(default_factory=list)
    in_use: int = 0
    challenge_failures: int = 0


class ScopedSession:
    """A browser context lent to one extraction job."""

    def __init__(self, provider_code: str, context, navigation_timeout: float):
        self.provider_code = provider_code
        self.context = context
        self.navigation_timeout = navigation_timeout
        self.absorbed_at: Optional[float] = None
        self.challenge_failed = False
        self.navigations = 0

    @asynccontextmanager
    async def page(self):
        page = await self.context.new_page()
        try:
            yield page
        finally:
            await close_quietly(page)

    async def goto(self, page, url: str, wait_until: str = "domcontentloaded"):
        """Navigate, translating Playwright failures into the extraction taxonomy."""
        try:
            response = await page.goto(
                url, wait_until=wait_until, timeout=self.navigation_timeout * 1000
            )
        except PlaywrightTimeout:
            raise TransientNetworkError(
                f"Navigation to {url} timed out after {self.navigation_timeout:.0f}s",
                provider_code=self.provider_code,
            )
        except PlaywrightError as e:
            raise TransientNetworkError(
                f"Navigation to {url} failed: {e}", provider_code=self.provider_code
            )

        self.navigations += 1
        if response is not None and response.status == 429:
            raise RateLimited(f"HTTP 429 from {url}", provider_code=self.provider_code)
        return response

    async def content(self, page) -> str:
        try:
            return await page.content()
        except PlaywrightError as e:
            raise TransientNetworkError(
                f"Could not read page content: {e}", provider_code=self.provider_code
            )

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return self.absorbed_at is not None and now - self.absorbed_at < ttl_seconds


class BrowserSessionPool:
    """
    Bounded, reusable browser sessions per provider.

    Key features:
    - Per-provider cap via asyncio.Semaphore (acquisition blocks when full)
    - Cookie jar carried between contexts of the same provider
    - Challenge absorption with a bounded, condition-based wait
    - Sessions that hit a challenge or a rate limit are closed, not reused
    """

    def __init__(
        self,
        adapter_lookup: Callable[[str], ProviderAdapter] = get_adapter,
        context_factory: Optional[ContextFactory] = None,
        max_sessions_per_provider: Optional[int] = None,
        challenge_timeout: Optional[float] = None,
        cookie_ttl_seconds: Optional[float] = None,
        navigation_timeout: Optional[float] = None,
        headless: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self._adapter_lookup = adapter_lookup
        self._context_factory = context_factory or self._new_browser_context
        self.max_sessions = max_sessions_per_provider or settings.session_pool_size
        self.challenge_timeout = (
            challenge_timeout if challenge_timeout is not None else settings.challenge_timeout_seconds
        )
        self.cookie_ttl_seconds = (
            cookie_ttl_seconds if cookie_ttl_seconds is not None else settings.session_cookie_ttl_minutes * 60
        )
        self.navigation_timeout = (
            navigation_timeout if navigation_timeout is not None else settings.navigation_timeout_seconds
        )
        self.headless = settings.browser_headless if headless is None else headless
        self._clock = clock

        self._states: dict[str, ProviderSessionState] = {}
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._browser_lock = asyncio.Lock()
        self._playwright = None
        self._browser = None

    def state(self, provider_code: str) -> ProviderSessionState:
        if provider_code not in self._states:
            self._states[provider_code] = ProviderSessionState()
        return self._states[provider_code]

    def _semaphore(self, provider_code: str) -> asyncio.Semaphore:
        if provider_code not in self._semaphores:
            self._semaphores[provider_code] = asyncio.Semaphore(self.max_sessions)
        return self._semaphores[provider_code]

    @asynccontextmanager
    async def acquire(self, provider_code: str):
        """
        Lend a ready session for ``provider_code``.

        Raises ChallengeUnresolved when the provider's content marker never shows,
        TransientNetworkError when the origin cannot be reached.
        """
        adapter = self._adapter_lookup(provider_code)
        state = self.state(provider_code)

        async with self._semaphore(provider_code):
            state.in_use += 1
            session: Optional[ScopedSession] = None
            keep = False
            try:
                session = await self._checkout(provider_code, state)
                if not session.is_fresh(self._clock(), self.cookie_ttl_seconds):
                    await self._absorb_challenge(session, adapter, state)
                yield session
                keep = True
            except ExtractionError as e:
                keep = not isinstance(e, (ProviderUnavailable, RateLimited))
                raise
            finally:
                state.in_use -= 1
                if session is not None:
                    await self._release(session, state, keep and not session.challenge_failed)

    async def _checkout(self, provider_code: str, state: ProviderSessionState) -> ScopedSession:
        if state.idle:
            return state.idle.pop()
        try:
            context = await self._context_factory(provider_code, state.storage_state)
        except PlaywrightError as e:
            raise TransientNetworkError(f"Could not open browser context: {e}", provider_code=provider_code)
        logger.debug(f"[{provider_code}] Opened new browser context")
        return ScopedSession(provider_code, context, self.navigation_timeout)

    async def _release(self, session: ScopedSession, state: ProviderSessionState, reusable: bool) -> None:
        if reusable and len(state.idle) < self.max_sessions:
            state.idle.append(session)
            return
        logger.debug(f"[{session.provider_code}] Closing browser context")
        await close_quietly(session.context)

    async def _absorb_challenge(
        self,
        session: ScopedSession,
        adapter: ProviderAdapter,
        state: ProviderSessionState,
    ) -> None:
        started = self._clock()
        async with session.page() as page:
            await session.goto(page, adapter.origin_url)

            async def content_ready() -> bool:
                return await self._has_content_marker(page, adapter)

            if not await wait_for_condition(content_ready, timeout=self.challenge_timeout, interval=1.0):
                session.challenge_failed = True
                state.challenge_failures += 1
                logger.warning(
                    f"🛡️ [{adapter.code}] Challenge not absorbed within {self.challenge_timeout:.0f}s"
                )
                raise ChallengeUnresolved(
                    f"No content marker within {self.challenge_timeout:.0f}s",
                    provider_code=adapter.code,
                )

            await adapter.dismiss_cookie_banner(page)

        session.absorbed_at = self._clock()
        state.absorbed_at = session.absorbed_at
        try:
            state.storage_state = await session.context.storage_state()
        except PlaywrightError as e:
            logger.debug(f"[{adapter.code}] Could not snapshot storage state: {e}")
        logger.info(f"[{adapter.code}] Challenge absorbed in {session.absorbed_at - started:.1f}s")

    async def _has_content_marker(self, page, adapter: ProviderAdapter) -> bool:
        try:
            html = await page.content()
        except PlaywrightError:
            # Page still navigating (challenge redirects)
            return False
        if adapter.looks_rate_limited(html):
            raise RateLimited("Throttling page during challenge absorption", provider_code=adapter.code)
        if adapter.has_content_marker(html):
            return True
        for selector in adapter.ready_selectors:
            try:
                if await page.query_selector(selector):
                    return True
            except PlaywrightError:
                continue
        return False

    async def _ensure_browser(self):
        async with self._browser_lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=BROWSER_ARGS,
                )
                logger.info("Launched Chromium for the session pool")
            return self._browser

    async def _new_browser_context(self, provider_code: str, storage_state: Optional[dict]):
        browser = await self._ensure_browser()
        context = await browser.new_context(
            viewport=VIEWPORT,
            user_agent=USER_AGENT,
            locale=LOCALE,
            timezone_id=TIMEZONE,
            storage_state=storage_state,
        )
        await context.add_init_script(HIDE_WEBDRIVER_SCRIPT)
        return context

    def snapshot(self) -> list[dict]:
        return [
            {
                "provider": code,
                "idle_sessions": len(state.idle),
                "sessions_in_use": state.in_use,
                "capacity": self.max_sessions,
                "last_good_strategy": state.last_good_strategy.value if state.last_good_strategy else None,
                "challenge_failures": state.challenge_failures,
            }
            for code, state in sorted(self._states.items())
        ]

    async def close(self) -> None:
        for state in self._states.values():
            while state.idle:
                await close_quietly(state.idle.pop().context)
        if self._browser is not None:
            await close_quietly(self._browser)
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser session pool closed")
