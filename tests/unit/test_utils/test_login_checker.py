"""Tests for the secondary-site LoginChecker."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from supplier_crawler.infrastructure.browser_pool import ManagedPage
from supplier_crawler.utils.login_checker import LoginChecker, LoginInfo


def make_site_page(visible=(), cookies=None):
    """Page whose locators are visible only for selectors in ``visible``."""
    visible = set(visible)
    page = MagicMock()
    page.goto = AsyncMock()
    page.is_closed.return_value = False
    page.evaluate = AsyncMock(return_value="Mozilla/5.0")
    page.context.cookies = AsyncMock(return_value=cookies or [])

    def _locator(selector):
        locator = MagicMock()
        locator.first.is_visible = AsyncMock(side_effect=lambda: selector in visible)
        locator.first.text_content = AsyncMock(return_value=" Operator ")
        return locator

    page.locator = MagicMock(side_effect=_locator)
    return page


def make_pool(page):
    handle = ManagedPage(page_id=1, page=page, instance_id=1)
    pool = MagicMock()
    pool.acquire_page = AsyncMock(return_value=handle)
    pool.close_page = AsyncMock()
    return pool


class TestLoginChecker:

    @pytest.mark.asyncio
    async def test_user_info_marker_means_logged_in(self):
        page = make_site_page(visible={".header-user-info"})
        pool = make_pool(page)
        checker = LoginChecker(pool, site_url="https://registry.example.com", interactive=False)

        assert await checker.ensure_logged_in() is True

        page.goto.assert_awaited_once()
        pool.close_page.assert_awaited_once()
        assert checker.login_info is not None
        assert checker.login_info.user_agent == "Mozilla/5.0"

    @pytest.mark.asyncio
    async def test_auth_cookie_without_login_button(self):
        page = make_site_page(cookies=[{"name": "auth_token", "value": "x"}])
        checker = LoginChecker(make_pool(page), interactive=False)

        assert await checker.ensure_logged_in() is True

    @pytest.mark.asyncio
    async def test_login_button_means_logged_out(self):
        page = make_site_page(
            visible={".login-btn"},
            cookies=[{"name": "session_id", "value": "x"}],
        )
        pool = make_pool(page)
        checker = LoginChecker(pool, interactive=False)

        assert await checker.ensure_logged_in() is False
        assert checker.login_info is None
        pool.close_page.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cached_result_skips_browser(self):
        page = make_site_page(visible={".user-info"})
        pool = make_pool(page)
        checker = LoginChecker(pool, interactive=False)

        await checker.ensure_logged_in()
        await checker.ensure_logged_in()

        pool.acquire_page.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_cache_rechecks(self):
        page = make_site_page(visible={".user-info"})
        pool = make_pool(page)
        checker = LoginChecker(pool, interactive=False)
        checker._login_info = LoginInfo(login_time=datetime.now() - timedelta(hours=25))

        await checker.ensure_logged_in()

        pool.acquire_page.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_interactive_wait_times_out(self):
        page = make_site_page(visible={".login-btn"})
        sleep = AsyncMock()
        checker = LoginChecker(
            make_pool(page), interactive=True, wait_seconds=6, poll_seconds=2, sleep=sleep
        )

        assert await checker.ensure_logged_in() is False
        assert sleep.await_count == 3

    @pytest.mark.asyncio
    async def test_interactive_wait_stops_when_window_closed(self):
        page = make_site_page(visible={".login-btn"})
        page.is_closed.return_value = True
        checker = LoginChecker(make_pool(page), interactive=True, sleep=AsyncMock())

        assert await checker.ensure_logged_in() is False

    @pytest.mark.asyncio
    async def test_navigation_error_returns_false(self):
        page = make_site_page()
        page.goto.side_effect = Exception("net::ERR_NAME_NOT_RESOLVED")
        pool = make_pool(page)
        checker = LoginChecker(pool, interactive=False)

        assert await checker.ensure_logged_in() is False
        pool.close_page.assert_awaited_once()

    def test_clear(self):
        checker = LoginChecker(MagicMock())
        checker._login_info = LoginInfo()
        checker.clear()
        assert checker.login_info is None
