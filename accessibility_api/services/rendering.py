"""
Chooses how to acquire a DOM for each analysis request.

``html`` requests are hosted directly. ``url`` requests walk an ordered
backend chain, highest fidelity first. Whether a failed backend hands over
to the next one is a configuration choice (``fallback_enabled``); either
way each backend is tried at most once per request.

Every backend evaluates its DOM in the local Chromium, so once that browser
fails to launch the rest of the chain is not tried. The whole chain shares
one time budget: a fallback only gets what the earlier attempts left over.
"""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, List, Optional
from urllib.parse import urlparse

import structlog
from pydantic import HttpUrl, TypeAdapter, ValidationError

from accessibility_api.core.config import Settings
from accessibility_api.core.exceptions import (
    AcquisitionError,
    BrowserLaunchFailed,
    InvalidMarkup,
    InvalidUrl,
    NavigationTimeout,
)
from accessibility_api.models import AnalysisRequest, HtmlAnalysisRequest
from accessibility_api.services.document_fetcher import DocumentFetcher
from accessibility_api.services.renderers import (
    BrowserPool,
    LaunchBrowserRenderer,
    MarkupHost,
    PlaywrightDriver,
    PooledBrowserRenderer,
    RemoteRenderer,
    RenderedDocument,
    Renderer,
    StaticFetchRenderer,
)

logger = structlog.get_logger(__name__)

MARKUP_METHOD = "static-markup"

_http_url = TypeAdapter(HttpUrl)


def validate_url(url: Optional[str]) -> str:
    """Return ``url`` stripped of surrounding whitespace, or raise ``InvalidUrl``."""
    if not url or not url.strip():
        raise InvalidUrl("URL is required")
    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise InvalidUrl(detail=str(e)) from e
    if not parsed.scheme:
        raise InvalidUrl("Invalid URL format")
    if parsed.scheme.lower() not in ("http", "https"):
        raise InvalidUrl("URL must use HTTP or HTTPS protocol")
    # Hosts with spaces or forbidden characters and out of range ports.
    try:
        _http_url.validate_python(url)
    except ValidationError as e:
        raise InvalidUrl("Invalid URL format", detail=str(e)) from e
    return url


def validate_markup(markup: Optional[str]) -> str:
    if not markup:
        raise InvalidMarkup("HTML content is required")
    if "<" not in markup or ">" not in markup:
        raise InvalidMarkup("Please provide valid HTML content")
    return markup


class RenderingCoordinator:
    def __init__(
        self,
        renderers: List[Renderer],
        markup_host: MarkupHost,
        timeout_seconds: float,
        fallback_enabled: bool = True,
        pool: Optional[BrowserPool] = None,
        driver: Optional[PlaywrightDriver] = None,
    ):
        if not renderers:
            raise ValueError("At least one rendering backend is required")
        self.renderers = renderers
        self.markup_host = markup_host
        self.timeout_seconds = timeout_seconds
        self.fallback_enabled = fallback_enabled
        self.pool = pool
        self.driver = driver

    @asynccontextmanager
    async def acquire(self, request: AnalysisRequest) -> AsyncIterator[RenderedDocument]:
        """
        Yield a rendered document for ``request``.

        Raises the classified error of the last backend tried when no
        backend could produce a DOM. Whatever was acquired is released when
        the caller's block exits, including on error or cancellation.
        """
        if isinstance(request, HtmlAnalysisRequest):
            markup = validate_markup(request.markup)
            async with self._bounded(self.markup_host.host(markup, MARKUP_METHOD)) as document:
                yield document
            return

        url = validate_url(request.url)
        chain = self.renderers if self.fallback_enabled else self.renderers[:1]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        async with AsyncExitStack() as stack:
            document = None
            used = None
            last_error: Optional[AcquisitionError] = None
            for renderer in chain:
                remaining = deadline - loop.time()
                if last_error is not None and remaining <= 0:
                    logger.warning("Rendering budget exhausted", url=url, skipped_backend=renderer.name)
                    break
                logger.info("Rendering page", url=url, backend=renderer.name)
                try:
                    document = await self._enter(stack, renderer.render(url), remaining)
                    used = renderer
                    break
                except AcquisitionError as e:
                    last_error = e
                    logger.warning(
                        "Rendering backend failed",
                        url=url,
                        backend=renderer.name,
                        error_type=type(e).__name__,
                        detail=e.detail,
                    )
                    if isinstance(e, BrowserLaunchFailed) and e.local:
                        break

            if document is None:
                raise last_error

            if used is not chain[0]:
                logger.warning(
                    "Fell back to lower fidelity backend",
                    url=url,
                    backend=used.name,
                    analysis_method=document.analysis_method,
                )
            yield document

    async def _enter(self, stack: AsyncExitStack, manager, timeout: float) -> RenderedDocument:
        try:
            return await asyncio.wait_for(stack.enter_async_context(manager), timeout)
        except asyncio.TimeoutError as e:
            raise NavigationTimeout(detail=f"No DOM within {self.timeout_seconds}s") from e

    @asynccontextmanager
    async def _bounded(self, manager) -> AsyncIterator[RenderedDocument]:
        async with AsyncExitStack() as stack:
            yield await self._enter(stack, manager, self.timeout_seconds)

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
        if self.driver is not None:
            await self.driver.stop()


def build_renderer(name: str, settings: Settings, pool, driver, fetcher, host) -> Renderer:
    if name == "pool":
        return PooledBrowserRenderer(pool, settings)
    if name == "launch":
        return LaunchBrowserRenderer(driver, settings)
    if name == "remote":
        return RemoteRenderer(fetcher, host, settings)
    if name == "fetch":
        return StaticFetchRenderer(fetcher, host)
    raise ValueError(f"Unknown rendering backend: {name}")


def build_coordinator(settings: Settings) -> RenderingCoordinator:
    driver = PlaywrightDriver()
    pool = BrowserPool(driver, settings)
    host = MarkupHost(pool, settings)
    timeout_seconds = settings.effective_navigation_timeout_ms / 1000
    fetcher = DocumentFetcher(
        user_agent=settings.user_agent,
        max_bytes=settings.max_response_bytes,
        timeout_seconds=timeout_seconds,
    )
    renderers = [
        build_renderer(name, settings, pool, driver, fetcher, host)
        for name in settings.rendering_backends
    ]

    # One budget per request. A single Playwright navigation timeout fires
    # before it runs out, which leaves room for a fallback after a slow page.
    request_timeout = (
        timeout_seconds * 2 + (settings.settle_delay_ms + settings.post_load_delay_ms) / 1000
    )
    logger.info(
        "Rendering chain configured",
        backends=[r.name for r in renderers],
        fallback_enabled=settings.fallback_enabled,
        pool_size=settings.browser_pool_size,
    )
    return RenderingCoordinator(
        renderers=renderers,
        markup_host=host,
        timeout_seconds=request_timeout,
        fallback_enabled=settings.fallback_enabled,
        pool=pool,
        driver=driver,
    )
