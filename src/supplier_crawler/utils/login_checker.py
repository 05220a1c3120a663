"""
Login precondition for the secondary verification site.

Some crawls need an authenticated session on a company-registry site before
starting. The checker opens a pool page, looks for logged-in markers and,
when allowed, waits for the operator to log in by hand. The result is
cached in memory only.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from ..config import settings
from ..infrastructure.browser_pool import SessionPool

logger = logging.getLogger(__name__)


USER_INFO_SELECTORS = [
    ".header-user-info",
    ".user-info",
    '[class*="user"]',
    ".login-after",
]

LOGIN_BUTTON_SELECTORS = [
    ".login-btn",
    '[class*="login"]',
    'a[href*="login"]',
]

AUTH_COOKIE_FRAGMENTS = ("auth", "token", "session", "user")

USER_NAME_SELECTOR = '.user-name, .username, [class*="user-name"]'


@dataclass
class LoginInfo:
    """Snapshot of a successful login."""
    is_logged_in: bool = True
    cookie_count: int = 0
    user_agent: str = ""
    user_name: Optional[str] = None
    login_time: datetime = field(default_factory=datetime.now)

    def is_valid(self, ttl: timedelta) -> bool:
        return self.is_logged_in and datetime.now() - self.login_time < ttl

    def to_dict(self) -> dict:
        return {
            "is_logged_in": self.is_logged_in,
            "cookie_count": self.cookie_count,
            "user_agent": self.user_agent,
            "user_name": self.user_name,
            "login_time": self.login_time.isoformat(),
        }


class LoginChecker:
    """
    Ensure the secondary site is logged in.

    Usage:
        checker = LoginChecker(pool)
        if not await checker.ensure_logged_in():
            raise LoginRequired(...)
    """

    def __init__(
        self,
        pool: SessionPool,
        site_url: Optional[str] = None,
        interactive: bool = True,
        wait_seconds: float = 300.0,
        poll_seconds: float = 2.0,
        cache_ttl: timedelta = timedelta(hours=24),
        navigation_timeout_ms: int = 30000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pool = pool
        self.site_url = site_url or settings.LOGIN_SITE_URL
        self.interactive = interactive
        self.wait_seconds = wait_seconds
        self.poll_seconds = poll_seconds
        self.cache_ttl = cache_ttl
        self.navigation_timeout_ms = navigation_timeout_ms
        self._sleep = sleep
        self._login_info: Optional[LoginInfo] = None

    @property
    def login_info(self) -> Optional[LoginInfo]:
        return self._login_info

    def clear(self) -> None:
        """Forget the cached login."""
        self._login_info = None
        logger.info("Cached login cleared")

    async def ensure_logged_in(self) -> bool:
        """
        Check (and if possible establish) a logged-in session.

        Returns:
            True when logged in, False otherwise
        """
        if self._login_info is not None and self._login_info.is_valid(self.cache_ttl):
            logger.debug("Using cached login")
            return True

        handle = await self.pool.acquire_page(reuse_idle=False)
        try:
            page = handle.page
            await page.goto(
                self.site_url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout_ms,
            )

            logged_in = await self.is_logged_in(page)
            if not logged_in and self.interactive:
                logged_in = await self._wait_for_login(page)

            if logged_in:
                await self._capture_login_info(page)
            else:
                logger.warning(f"Not logged in to {self.site_url}")
            return logged_in
        except Exception as e:
            logger.error(f"Login check failed: {e}")
            return False
        finally:
            await self.pool.close_page(handle)

    async def is_logged_in(self, page) -> bool:
        """Look for user-info markers, then for a missing login button plus auth cookies."""
        for selector in USER_INFO_SELECTORS:
            if await _visible(page, selector):
                logger.debug(f"Logged-in marker found: {selector}")
                return True

        for selector in LOGIN_BUTTON_SELECTORS:
            if await _visible(page, selector):
                return False

        try:
            cookies = await page.context.cookies()
        except Exception as e:
            logger.debug(f"Could not read cookies: {e}")
            return False

        return any(
            fragment in cookie.get("name", "").lower()
            for cookie in cookies
            for fragment in AUTH_COOKIE_FRAGMENTS
        )

    async def _wait_for_login(self, page) -> bool:
        polls = max(1, math.ceil(self.wait_seconds / self.poll_seconds))
        logger.info(f"Waiting up to {self.wait_seconds:.0f}s for login at {self.site_url}")

        for _ in range(polls):
            if page.is_closed():
                logger.info("Login window was closed")
                return False
            if await self.is_logged_in(page):
                logger.info("Login detected")
                return True
            await self._sleep(self.poll_seconds)

        logger.warning("Timed out waiting for login")
        return False

    async def _capture_login_info(self, page) -> None:
        info = LoginInfo()
        try:
            info.cookie_count = len(await page.context.cookies())
            info.user_agent = await page.evaluate("() => navigator.userAgent")
            name_el = page.locator(USER_NAME_SELECTOR).first
            if await name_el.is_visible():
                info.user_name = ((await name_el.text_content()) or "").strip() or None
        except Exception as e:
            logger.debug(f"Could not capture full login info: {e}")
        self._login_info = info
        logger.info(f"Login cached (user={info.user_name or 'unknown'})")


async def _visible(page, selector: str) -> bool:
    try:
        return bool(await page.locator(selector).first.is_visible())
    except Exception:
        return False
