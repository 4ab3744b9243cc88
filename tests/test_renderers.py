"""
Unit tests for the rendering backends with Playwright mocked out.
"""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from accessibility_api.core.exceptions import (
    BrowserLaunchFailed,
    NavigationTimeout,
    NetworkUnreachable,
    PageLoadFailed,
)
from accessibility_api.services.renderers import (
    BrowserPool,
    LaunchBrowserRenderer,
    MarkupHost,
    PooledBrowserRenderer,
    RemoteRenderer,
    RenderedDocument,
    StaticFetchRenderer,
    classify_browser_error,
    sanitize_markup,
)


def make_page():
    page = MagicMock()
    page.goto = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.route = AsyncMock()
    page.set_content = AsyncMock()
    return page


def make_browser(page=None):
    browser = MagicMock()
    browser.is_connected = MagicMock(return_value=True)
    browser.close = AsyncMock()
    contexts = []

    async def new_context(**kwargs):
        context = MagicMock()
        context.options = kwargs
        context.new_page = AsyncMock(return_value=page or make_page())
        context.close = AsyncMock()
        contexts.append(context)
        return context

    browser.new_context = AsyncMock(side_effect=new_context)
    browser.contexts_created = contexts
    return browser


def make_driver(browser):
    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    driver = MagicMock()
    driver.get = AsyncMock(return_value=playwright)
    return driver, playwright


class FakeHost:
    def __init__(self):
        self.calls = []

    @asynccontextmanager
    async def host(self, markup, analysis_method):
        self.calls.append((markup, analysis_method))
        yield RenderedDocument(page="hosted-page", analysis_method=analysis_method)


@pytest.mark.unit
class TestClassifyBrowserError:

    def test_timeout(self):
        error = classify_browser_error(PlaywrightTimeoutError("Timeout 30000ms exceeded."))
        assert isinstance(error, NavigationTimeout)

    def test_network(self):
        error = classify_browser_error(PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://nope.invalid"))
        assert isinstance(error, NetworkUnreachable)
        assert error.message == "Failed to analyze URL. Network error occurred."

    def test_anything_else(self):
        error = classify_browser_error(PlaywrightError("Page/Frame is not ready"))
        assert isinstance(error, PageLoadFailed)
        assert error.detail == "Page/Frame is not ready"


@pytest.mark.unit
class TestSanitizeMarkup:

    def test_strips_scripts_and_handlers(self):
        markup = (
            '<html><head><meta http-equiv="refresh" content="0;url=/x">'
            "<script>alert(1)</script></head>"
            '<body onload="boom()"><img src="a.png" onerror="boom()" alt="A"></body></html>'
        )
        cleaned = sanitize_markup(markup)

        assert "<script" not in cleaned
        assert "onload" not in cleaned
        assert "onerror" not in cleaned
        assert "refresh" not in cleaned
        assert 'alt="A"' in cleaned

    def test_keeps_structure(self):
        cleaned = sanitize_markup('<main><h1>Title</h1><button aria-label="Go">x</button></main>')
        assert '<button aria-label="Go">' in cleaned
        assert "<h1>Title</h1>" in cleaned


@pytest.mark.unit
class TestBrowserPool:

    @pytest.mark.asyncio
    async def test_bounds_concurrency_and_isolates_contexts(self, settings):
        browser = make_browser()
        driver, playwright = make_driver(browser)
        pool = BrowserPool(driver, settings)
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            async with pool.page():
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(work() for _ in range(6)))

        assert peak == 2
        playwright.chromium.launch.assert_awaited_once()
        assert len(browser.contexts_created) == 6
        for context in browser.contexts_created:
            context.close.assert_awaited_once()
            assert context.options["bypass_csp"] is True
            assert context.options["viewport"] == {"width": 1280, "height": 720}

    @pytest.mark.asyncio
    async def test_context_closed_when_work_fails(self, settings):
        browser = make_browser()
        driver, _ = make_driver(browser)
        pool = BrowserPool(driver, settings)

        with pytest.raises(RuntimeError):
            async with pool.page():
                raise RuntimeError("boom")

        browser.contexts_created[0].close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_launch_failure_is_classified(self, settings):
        driver, playwright = make_driver(make_browser())
        playwright.chromium.launch = AsyncMock(side_effect=PlaywrightError("Executable doesn't exist"))
        pool = BrowserPool(driver, settings)

        with pytest.raises(BrowserLaunchFailed):
            async with pool.page():
                pass

    @pytest.mark.asyncio
    async def test_close_shuts_browser(self, settings):
        browser = make_browser()
        driver, _ = make_driver(browser)
        pool = BrowserPool(driver, settings)
        async with pool.page():
            pass

        await pool.close()
        browser.close.assert_awaited_once()


@pytest.mark.unit
class TestBrowserRenderers:

    @pytest.mark.asyncio
    async def test_pooled_renderer_navigates(self, settings):
        page = make_page()
        driver, _ = make_driver(make_browser(page))
        renderer = PooledBrowserRenderer(BrowserPool(driver, settings), settings)

        async with renderer.render("https://example.com") as document:
            assert document.page is page
            assert document.analysis_method == "browser-pool"

        page.goto.assert_awaited_once_with(
            "https://example.com", wait_until="domcontentloaded", timeout=5000
        )
        states = [c.args[0] for c in page.wait_for_load_state.await_args_list]
        assert states == ["networkidle", "load"]

    @pytest.mark.asyncio
    async def test_pooled_renderer_classifies_navigation_timeout(self, settings):
        page = make_page()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Navigation timeout of 5000 ms exceeded"))
        browser = make_browser(page)
        driver, _ = make_driver(browser)
        renderer = PooledBrowserRenderer(BrowserPool(driver, settings), settings)

        with pytest.raises(NavigationTimeout):
            async with renderer.render("https://slow.example.com"):
                pass
        browser.contexts_created[0].close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_launch_renderer_always_closes_browser(self, settings):
        page = make_page()
        page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_CONNECTION_REFUSED"))
        browser = make_browser(page)
        driver, _ = make_driver(browser)
        renderer = LaunchBrowserRenderer(driver, settings)

        with pytest.raises(NetworkUnreachable):
            async with renderer.render("https://down.example.com"):
                pass
        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_launch_renderer_success(self, settings):
        browser = make_browser()
        driver, _ = make_driver(browser)
        renderer = LaunchBrowserRenderer(driver, settings)

        async with renderer.render("https://example.com") as document:
            assert document.analysis_method == "browser"
            browser.close.assert_not_awaited()
        browser.close.assert_awaited_once()


@pytest.mark.unit
class TestMarkupRenderers:

    @pytest.mark.asyncio
    async def test_markup_host_blocks_network_and_loads_content(self, settings):
        page = make_page()
        driver, _ = make_driver(make_browser(page))
        host = MarkupHost(BrowserPool(driver, settings), settings)

        async with host.host("<p onclick='x()'>Hi</p><script>x()</script>", "static-markup") as document:
            assert document.page is page

        pattern = page.route.await_args.args[0]
        assert pattern == "**/*"
        content = page.set_content.await_args.args[0]
        assert "script" not in content
        assert "onclick" not in content

    @pytest.mark.asyncio
    async def test_static_fetch_hosts_fetched_markup(self):
        fetcher = MagicMock()
        fetcher.get_async = AsyncMock(return_value="<html><body>ok</body></html>")
        host = FakeHost()
        renderer = StaticFetchRenderer(fetcher, host)

        async with renderer.render("https://example.com") as document:
            assert document.analysis_method == "static-fetch"

        fetcher.get_async.assert_awaited_once_with("https://example.com")
        assert host.calls == [("<html><body>ok</body></html>", "static-fetch")]

    @pytest.mark.asyncio
    async def test_remote_renderer_posts_to_content_endpoint(self, settings):
        settings = settings.model_copy(update={
            "remote_render_url": "https://browserless.example.com/",
            "remote_render_token": "secret",
        })
        fetcher = MagicMock()
        fetcher.post_async = AsyncMock(return_value="<html>rendered</html>")
        host = FakeHost()
        renderer = RemoteRenderer(fetcher, host, settings)

        async with renderer.render("https://example.com") as document:
            assert document.analysis_method == "remote-browser"

        endpoint, payload, params = fetcher.post_async.await_args.args
        assert endpoint == "https://browserless.example.com/content"
        assert payload["url"] == "https://example.com"
        assert payload["gotoOptions"]["waitUntil"] == "networkidle0"
        assert params == {"token": "secret"}

    @pytest.mark.asyncio
    async def test_remote_renderer_requires_configuration(self, settings):
        renderer = RemoteRenderer(MagicMock(), FakeHost(), settings)
        with pytest.raises(BrowserLaunchFailed) as exc_info:
            async with renderer.render("https://example.com"):
                pass
        assert exc_info.value.local is False
