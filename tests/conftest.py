"""Shared fixtures: Playwright stand-ins built from unittest.mock."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from supplier_crawler.browser_config import BrowserConfig
from supplier_crawler.infrastructure.browser_pool import SessionPool


def make_page(url: str = "about:blank") -> MagicMock:
    """A Playwright Page double with async methods stubbed."""
    page = MagicMock()
    page.url = url
    page.is_closed.return_value = False
    page.title = AsyncMock(return_value="")
    page.close = AsyncMock()
    page.goto = AsyncMock()
    page.evaluate = AsyncMock(return_value="complete")
    page.add_init_script = AsyncMock()
    page.route = AsyncMock()
    page.query_selector = AsyncMock(return_value=None)
    page.query_selector_all = AsyncMock(return_value=[])
    return page


def make_playwright() -> MagicMock:
    """A started Playwright double whose chromium.launch builds fresh browsers."""
    playwright = MagicMock()
    playwright.browsers = []

    def _launch(**kwargs):
        context = MagicMock()
        context.new_page = AsyncMock(side_effect=lambda: make_page())
        context.close = AsyncMock()

        browser = MagicMock()
        browser.is_connected.return_value = True
        browser.new_context = AsyncMock(return_value=context)
        browser.close = AsyncMock()
        browser.context = context
        playwright.browsers.append(browser)
        return browser

    playwright.chromium.launch = AsyncMock(side_effect=_launch)
    playwright.stop = AsyncMock()
    return playwright


@pytest.fixture
def page_factory():
    return make_page


@pytest.fixture
def fake_playwright():
    return make_playwright()


@pytest.fixture
def pool_factory(fake_playwright):
    """Build SessionPools that launch the fake Playwright."""
    def _factory(**kwargs):
        kwargs.setdefault("browser_config", BrowserConfig())
        kwargs.setdefault("launcher", AsyncMock(return_value=fake_playwright))
        return SessionPool(**kwargs)
    return _factory
