"""
Navigation with local retry and page-level recovery.

``navigate`` owns every ``page.goto`` the crawler makes. Failures are
retried through the shared retry utility; between attempts the tab is
either reset to ``about:blank`` or, when it no longer responds, replaced
by the session pool behind the same handle.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..config import CrawlerConfig
from ..exceptions import NavigationFailed, PoolError, ResourceExhausted
from .browser_pool import ManagedPage, SessionPool
from .retry import retry_async

logger = logging.getLogger(__name__)


LOADING_INDICATOR_SELECTOR = (
    '.loading, .spinner, .next-loading, [class*="loading-mask"], [aria-busy="true"]'
)

# Evaluated in the page on every stability poll
STABILITY_PROBE = """
(selector) => {
    const visible = (el) => {
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        return rect.width > 0 && rect.height > 0
            && style.visibility !== 'hidden' && style.display !== 'none';
    };
    const loading = Array.from(document.querySelectorAll(selector)).some(visible);
    const entries = performance.getEntriesByType('resource');
    let lastEnd = 0;
    for (const entry of entries) {
        if (entry.responseEnd > lastEnd) lastEnd = entry.responseEnd;
    }
    return {
        ready: document.readyState === 'complete',
        loading: loading,
        quietMs: performance.now() - lastEnd,
    };
}
"""


def _is_pool_failure(exc: BaseException) -> bool:
    return isinstance(exc, (PoolError, ResourceExhausted))


class NavigationDriver:
    """Drives pool pages to URLs and waits for them to settle."""

    def __init__(
        self,
        pool: SessionPool,
        config: Optional[CrawlerConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pool = pool
        self.config = config or CrawlerConfig()
        self._sleep = sleep

    async def navigate(
        self,
        handle: ManagedPage,
        url: str,
        wait_until: Optional[str] = None,
        timeout: Optional[int] = None,
        retries: Optional[int] = None,
    ) -> ManagedPage:
        """
        Load ``url`` in the handle's tab.

        Args:
            handle: Pool page to drive
            url: Target URL
            wait_until: Playwright load state (default from config)
            timeout: Per-attempt timeout in milliseconds
            retries: Total attempts

        Returns:
            The same handle, possibly backed by a recreated tab

        Raises:
            NavigationFailed: All attempts failed
            SessionDisconnected / ResourceExhausted: The pool itself failed
        """
        wait_until = wait_until or self.config.wait_until
        timeout = timeout or self.config.navigation_timeout_ms
        attempts = retries or self.config.navigation_retries

        async def _attempt(attempt: int) -> ManagedPage:
            if attempt > 1:
                await self._recover(handle)
            logger.debug(f"Navigating page {handle.page_id} to {url} (attempt {attempt})")
            await handle.page.goto(url, wait_until=wait_until, timeout=timeout)
            handle.url = url
            handle.touch()
            return handle

        try:
            return await retry_async(
                _attempt,
                attempts=attempts,
                base_delay=self.config.navigation_base_delay,
                retry_on=lambda e: not _is_pool_failure(e),
                sleep=self._sleep,
                label=f"Navigation to {url}",
            )
        except (PoolError, ResourceExhausted):
            raise
        except Exception as e:
            logger.warning(f"Giving up on {url} after {attempts} attempts: {e}")
            raise NavigationFailed(url, attempts, e) from e

    async def _recover(self, handle: ManagedPage) -> None:
        if await self.is_unresponsive(handle):
            logger.info(f"Page {handle.page_id} unresponsive, recreating")
            await self.pool.recreate_page(handle)
            return
        try:
            await handle.page.goto("about:blank", timeout=10000)
        except Exception as e:
            logger.info(f"Reset to about:blank failed on page {handle.page_id} ({e}), recreating")
            await self.pool.recreate_page(handle)

    async def is_unresponsive(self, handle: ManagedPage) -> bool:
        """Whether the tab is closed or cannot evaluate a trivial script."""
        if handle.is_closed():
            return True
        try:
            await asyncio.wait_for(handle.page.evaluate("() => 1"), timeout=5)
        except Exception:
            return True
        return False

    async def wait_for_stable(self, page, timeout: Optional[int] = None) -> bool:
        """
        Wait until the page looks settled.

        Stable means readyState is complete, no loading indicator is
        visible and no resource finished in the network quiet window, all
        holding continuously for the dwell time.

        Args:
            page: Playwright page
            timeout: Milliseconds before giving up

        Returns:
            True once stable; False on timeout (logged, not raised)
        """
        timeout_s = (timeout or self.config.stability_timeout_ms) / 1000
        poll_s = self.config.stability_poll_ms / 1000
        dwell_s = self.config.stability_dwell_ms / 1000
        quiet_ms = self.config.network_quiet_ms

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        stable_since: Optional[float] = None

        while True:
            now = loop.time()
            try:
                probe = await page.evaluate(STABILITY_PROBE, LOADING_INDICATOR_SELECTOR)
                stable = (
                    bool(probe.get("ready"))
                    and not probe.get("loading")
                    and float(probe.get("quietMs", 0)) >= quiet_ms
                )
            except Exception as e:
                logger.debug(f"Stability probe failed: {e}")
                stable = False

            if stable:
                if stable_since is None:
                    stable_since = now
                if now - stable_since >= dwell_s:
                    return True
            else:
                stable_since = None

            if now >= deadline:
                logger.warning(f"Page did not stabilize within {timeout_s:.1f}s, continuing")
                return False

            await asyncio.sleep(poll_s)
