"""
Rendering backends.

Each backend turns a URL into a live Playwright ``Page`` holding the DOM the
rule engine will evaluate. They trade fidelity against cost:

- ``pool``: shared headless Chromium, bounded number of isolated contexts.
- ``launch``: a fresh Chromium per request.
- ``remote``: a browser-as-a-service renders the page, we host its markup.
- ``fetch``: plain HTTP fetch, markup hosted without running any script.

Every backend is an async context manager. Pages, contexts and browsers are
closed on the way out whether the caller's block succeeded or raised.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, Optional

import structlog
from bs4 import BeautifulSoup
from playwright.async_api import Browser, Page, Playwright, Route, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from accessibility_api.core.config import Settings
from accessibility_api.core.exceptions import (
    AcquisitionError,
    BrowserLaunchFailed,
    NavigationTimeout,
    NetworkUnreachable,
    PageLoadFailed,
)
from accessibility_api.services.document_fetcher import DocumentFetcher

logger = structlog.get_logger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-gpu",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-backgrounding-occluded-windows",
]


@dataclass(frozen=True)
class RenderedDocument:
    page: Page
    analysis_method: str


def classify_browser_error(exc: Exception) -> AcquisitionError:
    message = str(exc)
    if isinstance(exc, PlaywrightTimeoutError) or "Timeout" in message:
        return NavigationTimeout(detail=message)
    if "net::ERR_" in message:
        return NetworkUnreachable(detail=message)
    return PageLoadFailed(detail=message)


def context_options(settings: Settings) -> dict:
    return {
        "viewport": {"width": settings.viewport_width, "height": settings.viewport_height},
        "user_agent": settings.user_agent,
        # Lets the rule engine script in even when the page ships a strict CSP.
        "bypass_csp": True,
    }


async def close_quietly(resource, what: str) -> None:
    try:
        await resource.close()
    except PlaywrightError as e:
        logger.warning("Error closing browser resource", resource=what, error=str(e))


async def launch_chromium(playwright: Playwright, settings: Settings) -> Browser:
    try:
        return await playwright.chromium.launch(
            headless=True,
            args=CHROMIUM_ARGS,
            executable_path=settings.chromium_path,
            timeout=settings.effective_navigation_timeout_ms,
        )
    except PlaywrightError as e:
        raise BrowserLaunchFailed(detail=str(e)) from e


async def navigate(page: Page, url: str, settings: Settings) -> None:
    """Load ``url`` and wait until both the DOM and the network have settled."""
    timeout = settings.effective_navigation_timeout_ms
    await page.goto(url, wait_until="domcontentloaded", timeout=timeout)
    await page.wait_for_load_state("networkidle", timeout=timeout)
    # Late async content (hydration, lazy widgets) often lands after network idle.
    await page.wait_for_timeout(settings.settle_delay_ms)
    await page.wait_for_load_state("load", timeout=timeout)
    await page.wait_for_timeout(settings.post_load_delay_ms)


def sanitize_markup(markup: str) -> str:
    """Strip everything in ``markup`` that could execute or navigate."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup.find_all("script"):
        tag.decompose()
    for tag in soup.find_all("meta", attrs={"http-equiv": True}):
        if tag["http-equiv"].lower() == "refresh":
            tag.decompose()
    for tag in soup.find_all(True):
        for attr in [a for a in tag.attrs if a.lower().startswith("on")]:
            del tag[attr]
    return str(soup)


async def _abort_request(route: Route) -> None:
    await route.abort()


class PlaywrightDriver:
    """Process-wide Playwright driver, started on first use."""

    def __init__(self):
        self._playwright: Optional[Playwright] = None
        self._lock = asyncio.Lock()

    async def get(self) -> Playwright:
        async with self._lock:
            if self._playwright is None:
                try:
                    self._playwright = await async_playwright().start()
                except PlaywrightError as e:
                    raise BrowserLaunchFailed(detail=str(e)) from e
            return self._playwright

    async def stop(self) -> None:
        async with self._lock:
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None


class BrowserPool:
    """
    One shared Chromium with at most ``size`` pages in use at once.

    Excess callers queue on the semaphore in arrival order. Every caller gets
    its own browser context, so cookies, storage and DOM never leak between
    concurrent analyses.
    """

    def __init__(self, driver: PlaywrightDriver, settings: Settings):
        self.driver = driver
        self.settings = settings
        self.size = settings.browser_pool_size
        self._semaphore = asyncio.Semaphore(self.size)
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def _get_browser(self) -> Browser:
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                playwright = await self.driver.get()
                self._browser = await launch_chromium(playwright, self.settings)
                logger.info("Launched pooled browser", pool_size=self.size)
            return self._browser

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        async with self._semaphore:
            browser = await self._get_browser()
            try:
                context = await browser.new_context(**context_options(self.settings))
            except PlaywrightError as e:
                raise classify_browser_error(e) from e
            try:
                try:
                    page = await context.new_page()
                except PlaywrightError as e:
                    raise classify_browser_error(e) from e
                yield page
            finally:
                await close_quietly(context, "context")

    async def close(self) -> None:
        async with self._lock:
            if self._browser is not None:
                await close_quietly(self._browser, "browser")
                self._browser = None


class MarkupHost:
    """Hosts raw markup as a static DOM: no scripts run, no requests leave the page."""

    def __init__(self, pool: BrowserPool, settings: Settings):
        self.pool = pool
        self.settings = settings

    @asynccontextmanager
    async def host(self, markup: str, analysis_method: str) -> AsyncIterator[RenderedDocument]:
        document = sanitize_markup(markup)
        async with self.pool.page() as page:
            try:
                await page.route("**/*", _abort_request)
                await page.set_content(
                    document,
                    wait_until="domcontentloaded",
                    timeout=self.settings.effective_navigation_timeout_ms,
                )
            except PlaywrightError as e:
                raise classify_browser_error(e) from e
            yield RenderedDocument(page=page, analysis_method=analysis_method)


class Renderer(ABC):
    name: str
    analysis_method: str

    @abstractmethod
    def render(self, url: str) -> AsyncContextManager[RenderedDocument]:
        """Acquire a DOM for ``url``, releasing it when the block exits."""


class PooledBrowserRenderer(Renderer):
    name = "pool"
    analysis_method = "browser-pool"

    def __init__(self, pool: BrowserPool, settings: Settings):
        self.pool = pool
        self.settings = settings

    @asynccontextmanager
    async def render(self, url: str) -> AsyncIterator[RenderedDocument]:
        async with self.pool.page() as page:
            try:
                await navigate(page, url, self.settings)
            except PlaywrightError as e:
                raise classify_browser_error(e) from e
            yield RenderedDocument(page=page, analysis_method=self.analysis_method)


class LaunchBrowserRenderer(Renderer):
    name = "launch"
    analysis_method = "browser"

    def __init__(self, driver: PlaywrightDriver, settings: Settings):
        self.driver = driver
        self.settings = settings

    @asynccontextmanager
    async def render(self, url: str) -> AsyncIterator[RenderedDocument]:
        playwright = await self.driver.get()
        browser = await launch_chromium(playwright, self.settings)
        try:
            try:
                context = await browser.new_context(**context_options(self.settings))
                page = await context.new_page()
                await navigate(page, url, self.settings)
            except PlaywrightError as e:
                raise classify_browser_error(e) from e
            yield RenderedDocument(page=page, analysis_method=self.analysis_method)
        finally:
            await close_quietly(browser, "browser")


class RemoteRenderer(Renderer):
    """Delegates script execution to a browserless-style ``/content`` endpoint."""

    name = "remote"
    analysis_method = "remote-browser"

    def __init__(self, fetcher: DocumentFetcher, host: MarkupHost, settings: Settings):
        self.fetcher = fetcher
        self.host = host
        self.settings = settings

    @asynccontextmanager
    async def render(self, url: str) -> AsyncIterator[RenderedDocument]:
        if not self.settings.remote_render_url:
            raise BrowserLaunchFailed(detail="remote_render_url is not configured", local=False)

        endpoint = self.settings.remote_render_url.rstrip("/") + "/content"
        params = {"token": self.settings.remote_render_token} if self.settings.remote_render_token else None
        payload = {
            "url": url,
            "gotoOptions": {
                "waitUntil": "networkidle0",
                "timeout": self.settings.effective_navigation_timeout_ms,
            },
        }
        markup = await self.fetcher.post_async(endpoint, payload, params)
        async with self.host.host(markup, self.analysis_method) as document:
            yield document


class StaticFetchRenderer(Renderer):
    """Lowest fidelity: served markup only, scripts never run."""

    name = "fetch"
    analysis_method = "static-fetch"

    def __init__(self, fetcher: DocumentFetcher, host: MarkupHost):
        self.fetcher = fetcher
        self.host = host

    @asynccontextmanager
    async def render(self, url: str) -> AsyncIterator[RenderedDocument]:
        markup = await self.fetcher.get_async(url)
        async with self.host.host(markup, self.analysis_method) as document:
            yield document
