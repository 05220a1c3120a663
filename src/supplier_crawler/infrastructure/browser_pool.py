"""
Session Pool Management.

This module owns every browser process, context and tab used by the
crawler. Pages are handed out as ManagedPage handles, returned to an idle
state for reuse, and reaped after sitting idle too long. When no page is
active the whole browser is torn down after a grace period, so short bursts
of work do not flash a browser window open and closed.

All bookkeeping happens on the event loop under one asyncio.Lock. Logical
races (a teardown timer firing just after new work arrived) are guarded by
cancelling the timer on acquire and re-checking pool state before acting.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..browser_config import BrowserConfig
from ..config import CrawlerConfig
from ..exceptions import ResourceExhausted, SessionDisconnected
from .stealth import install_resource_blocking, install_stealth

logger = logging.getLogger(__name__)


class PageState(Enum):
    """Lifecycle of a managed tab."""
    IDLE = "idle"
    ACTIVE = "active"
    ERROR = "error"
    CLOSED = "closed"


class PoolState(Enum):
    """Lifecycle of the pool itself."""
    STOPPED = "stopped"
    READY = "ready"
    ERROR = "error"


@dataclass
class BrowserInstance:
    """A running browser process and its single context."""
    instance_id: int
    browser: Any
    context: Any
    created_at: datetime = field(default_factory=datetime.now)
    last_used: datetime = field(default_factory=datetime.now)
    connected: bool = True
    page_ids: set[int] = field(default_factory=set)
    closing: bool = False  # Set before an intentional close so the disconnect event is ignored

    @property
    def page_count(self) -> int:
        return len(self.page_ids)


@dataclass
class ManagedPage:
    """A tab handed out by the pool."""
    page_id: int
    page: Any
    instance_id: int
    state: PageState = PageState.ACTIVE
    created_at: datetime = field(default_factory=datetime.now)
    last_used: datetime = field(default_factory=datetime.now)
    url: str = ""
    title: str = ""

    def touch(self) -> None:
        """Record use."""
        self.last_used = datetime.now()

    def is_closed(self) -> bool:
        """Whether the underlying tab is gone."""
        if self.state == PageState.CLOSED:
            return True
        try:
            return bool(self.page.is_closed())
        except Exception:
            return True

    def idle_seconds(self) -> float:
        return (datetime.now() - self.last_used).total_seconds()

    async def snapshot(self) -> None:
        """Refresh the cached URL and title."""
        try:
            self.url = self.page.url
            self.title = await self.page.title()
        except Exception as e:
            logger.debug(f"Could not snapshot page {self.page_id}: {e}")

    def to_dict(self) -> dict:
        return {
            "page_id": self.page_id,
            "instance_id": self.instance_id,
            "state": self.state.value,
            "url": self.url,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "last_used": self.last_used.isoformat(),
        }


@dataclass
class PoolStatus:
    """Current status of the session pool."""
    state: PoolState
    instances: int
    pages: int
    active: int
    idle: int
    teardown_pending: bool
    total_pages_created: int
    total_disconnects: int


PlaywrightLauncher = Callable[[], Awaitable[Any]]


async def _default_launcher() -> Any:
    try:
        from playwright.async_api import async_playwright
    except ImportError:
        raise ImportError(
            "playwright package not installed. "
            "Install with: pip install playwright && playwright install chromium"
        )
    return await async_playwright().start()


class SessionPool:
    """
    Pooled, health-checked, auto-recovering browser pages.

    Usage:
        async with SessionPool(browser_config) as pool:
            handle = await pool.acquire_page()
            await handle.page.goto(url)
            await pool.release_page(handle)

    Features:
    - Idle page reuse, bounded by instance and pages-per-instance caps
    - Idle-timeout reaping of tabs
    - Delayed teardown of the browser once nothing is active
    - Disconnect detection with a single automatic recreation
    - Stealth init scripts and resource blocking on every new tab
    """

    def __init__(
        self,
        browser_config: Optional[BrowserConfig] = None,
        max_instances: int = 2,
        max_pages_per_instance: int = 5,
        idle_grace_seconds: float = 300.0,
        page_idle_timeout_seconds: float = 600.0,
        launcher: Optional[PlaywrightLauncher] = None,
    ):
        """
        Initialize the session pool. Nothing is launched until a page is acquired.

        Args:
            browser_config: Launch/context configuration
            max_instances: Maximum concurrent browser processes
            max_pages_per_instance: Maximum tabs per browser process
            idle_grace_seconds: Delay between the pool going idle and teardown
            page_idle_timeout_seconds: Idle tabs older than this are closed
            launcher: Coroutine function returning a started Playwright object
        """
        self.browser_config = browser_config or BrowserConfig()
        self.max_instances = max_instances
        self.max_pages_per_instance = max_pages_per_instance
        self.idle_grace_seconds = idle_grace_seconds
        self.page_idle_timeout_seconds = page_idle_timeout_seconds
        self._launcher = launcher or _default_launcher

        self._playwright = None
        self._instances: dict[int, BrowserInstance] = {}
        self._pages: dict[int, ManagedPage] = {}
        self._lock = asyncio.Lock()
        self._state = PoolState.STOPPED
        self._cleanup_task: Optional[asyncio.Task] = None
        self._disconnect_tasks: set[asyncio.Task] = set()
        self._instance_ids = itertools.count(1)
        self._page_ids = itertools.count(1)
        self._total_pages_created = 0
        self._total_disconnects = 0

    @classmethod
    def from_config(
        cls,
        config: CrawlerConfig,
        browser_config: Optional[BrowserConfig] = None,
        launcher: Optional[PlaywrightLauncher] = None,
    ) -> "SessionPool":
        """Build a pool from the crawler tunables."""
        return cls(
            browser_config=browser_config,
            max_instances=config.max_instances,
            max_pages_per_instance=config.max_pages_per_instance,
            idle_grace_seconds=config.idle_grace_seconds,
            page_idle_timeout_seconds=config.page_idle_timeout_seconds,
            launcher=launcher,
        )

    async def __aenter__(self) -> "SessionPool":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the Playwright driver. Browser processes launch on demand."""
        async with self._lock:
            await self._ensure_driver()

    async def _ensure_driver(self) -> None:
        if self._playwright is None:
            self._playwright = await self._launcher()
            logger.info("Playwright driver started")
        if self._state == PoolState.STOPPED:
            self._state = PoolState.READY

    async def shutdown(self) -> None:
        """Tear everything down immediately."""
        self._cancel_idle_cleanup()
        for task in list(self._disconnect_tasks):
            task.cancel()
        async with self._lock:
            await self._teardown()
        logger.info("Session pool shut down")

    async def reset(self) -> None:
        """Tear down every instance and page, clear the error latch, start over."""
        self._cancel_idle_cleanup()
        async with self._lock:
            logger.info("Resetting session pool")
            await self._teardown()
            await self._ensure_driver()

    async def _teardown(self) -> None:
        for managed in list(self._pages.values()):
            managed.state = PageState.CLOSED
        self._pages.clear()

        for instance in list(self._instances.values()):
            await self._close_instance(instance)
        self._instances.clear()

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None

        self._state = PoolState.STOPPED

    async def _close_instance(self, instance: BrowserInstance) -> None:
        instance.closing = True
        instance.connected = False
        try:
            await instance.context.close()
        except Exception as e:
            logger.debug(f"Error closing context of instance {instance.instance_id}: {e}")
        try:
            await instance.browser.close()
        except Exception as e:
            logger.warning(f"Error closing browser instance {instance.instance_id}: {e}")
        logger.info(f"Browser instance {instance.instance_id} closed")

    # ------------------------------------------------------------------
    # Page acquisition
    # ------------------------------------------------------------------

    async def acquire_page(self, reuse_idle: bool = True) -> ManagedPage:
        """
        Hand out an active page.

        Args:
            reuse_idle: Prefer an idle tab over opening a new one

        Returns:
            ManagedPage in the ``active`` state

        Raises:
            SessionDisconnected: Pool is latched in its error state
            ResourceExhausted: Both caps reached and nothing idle
        """
        self._cancel_idle_cleanup()

        async with self._lock:
            if self._state == PoolState.ERROR:
                raise SessionDisconnected(
                    "Session pool is in error state after a browser disconnect; call reset()"
                )
            await self._ensure_driver()
            await self._reap_idle_pages()

            if reuse_idle:
                managed = self._take_idle_page()
                if managed is not None:
                    logger.debug(f"Reusing idle page {managed.page_id}")
                    return managed

            instance = self._instance_with_room()
            if instance is None:
                if len(self._instances) >= self.max_instances:
                    raise ResourceExhausted(
                        f"Pool exhausted: {len(self._instances)} instances x "
                        f"{self.max_pages_per_instance} pages, none idle"
                    )
                instance = await self._launch_instance()

            return await self._open_page(instance)

    def _take_idle_page(self) -> Optional[ManagedPage]:
        for managed in list(self._pages.values()):
            if managed.state != PageState.IDLE:
                continue
            instance = self._instances.get(managed.instance_id)
            if managed.is_closed() or instance is None or not instance.connected:
                self._forget_page(managed)
                continue
            managed.state = PageState.ACTIVE
            managed.touch()
            instance.last_used = datetime.now()
            return managed
        return None

    def _instance_with_room(self) -> Optional[BrowserInstance]:
        for instance in self._instances.values():
            if instance.connected and instance.page_count < self.max_pages_per_instance:
                return instance
        return None

    async def _launch_instance(self) -> BrowserInstance:
        browser = await self._playwright.chromium.launch(**self.browser_config.launch_options())
        context = await browser.new_context(**self.browser_config.context_options())
        context.set_default_timeout(self.browser_config.timeout)

        instance = BrowserInstance(
            instance_id=next(self._instance_ids),
            browser=browser,
            context=context,
        )
        self._instances[instance.instance_id] = instance

        instance_id = instance.instance_id
        browser.on("disconnected", lambda *_: self._on_disconnected(instance_id))

        logger.info(
            f"Launched browser instance {instance_id} "
            f"(headless={self.browser_config.headless}, "
            f"{len(self._instances)}/{self.max_instances})"
        )
        return instance

    async def _open_page(self, instance: BrowserInstance) -> ManagedPage:
        page = await instance.context.new_page()
        page.set_default_timeout(self.browser_config.timeout)
        await install_stealth(page, self.browser_config)
        await install_resource_blocking(page, self.browser_config)

        managed = ManagedPage(
            page_id=next(self._page_ids),
            page=page,
            instance_id=instance.instance_id,
        )
        page.on("crash", lambda *_: self._on_page_crash(managed))

        self._pages[managed.page_id] = managed
        instance.page_ids.add(managed.page_id)
        instance.last_used = datetime.now()
        self._total_pages_created += 1

        logger.debug(
            f"Opened page {managed.page_id} in instance {instance.instance_id} "
            f"({instance.page_count}/{self.max_pages_per_instance})"
        )
        return managed

    def _on_page_crash(self, managed: ManagedPage) -> None:
        logger.warning(f"Page {managed.page_id} crashed")
        managed.state = PageState.ERROR

    # ------------------------------------------------------------------
    # Release / close
    # ------------------------------------------------------------------

    async def release_page(self, handle: ManagedPage) -> None:
        """Return a page to the idle set; the tab stays open."""
        async with self._lock:
            if handle.page_id not in self._pages or handle.state == PageState.CLOSED:
                return
            await handle.snapshot()
            handle.state = PageState.IDLE
            handle.touch()
            logger.debug(f"Released page {handle.page_id}")
            self._maybe_schedule_idle_cleanup()

    async def close_page(self, handle: ManagedPage) -> None:
        """Close the tab and drop its bookkeeping."""
        async with self._lock:
            await self._close_managed(handle)
            self._maybe_schedule_idle_cleanup()

    async def _close_managed(self, handle: ManagedPage) -> None:
        self._forget_page(handle)
        try:
            if not handle.page.is_closed():
                await handle.page.close()
        except Exception as e:
            logger.debug(f"Error closing page {handle.page_id}: {e}")
        logger.debug(f"Closed page {handle.page_id}")

    def _forget_page(self, handle: ManagedPage) -> None:
        handle.state = PageState.CLOSED
        self._pages.pop(handle.page_id, None)
        instance = self._instances.get(handle.instance_id)
        if instance is not None:
            instance.page_ids.discard(handle.page_id)

    async def recreate_page(self, handle: ManagedPage) -> ManagedPage:
        """
        Replace a dead tab behind the same handle.

        Opens the replacement in the same instance when it is still
        connected, otherwise wherever there is room.
        """
        async with self._lock:
            if self._state == PoolState.ERROR:
                raise SessionDisconnected("Cannot recreate page: pool is in error state")
            await self._ensure_driver()

            old_page = handle.page
            try:
                if not old_page.is_closed():
                    await old_page.close()
            except Exception as e:
                logger.debug(f"Error closing dead page {handle.page_id}: {e}")

            instance = self._instances.get(handle.instance_id)
            if instance is not None:
                instance.page_ids.discard(handle.page_id)
            if instance is None or not instance.connected:
                instance = self._instance_with_room()
            if instance is None:
                if len(self._instances) >= self.max_instances:
                    raise ResourceExhausted("No room to recreate page")
                instance = await self._launch_instance()

            fresh = await self._open_page(instance)
            # Keep the caller's handle; move the fresh tab behind it
            self._pages.pop(fresh.page_id, None)
            instance.page_ids.discard(fresh.page_id)

            handle.page = fresh.page
            handle.instance_id = instance.instance_id
            handle.state = PageState.ACTIVE
            handle.created_at = fresh.created_at
            handle.touch()
            self._pages[handle.page_id] = handle
            instance.page_ids.add(handle.page_id)

            logger.info(f"Recreated page {handle.page_id} in instance {instance.instance_id}")
            return handle

    async def _reap_idle_pages(self) -> int:
        reaped = 0
        for managed in list(self._pages.values()):
            if (
                managed.state == PageState.IDLE
                and managed.idle_seconds() > self.page_idle_timeout_seconds
            ):
                await self._close_managed(managed)
                reaped += 1
        if reaped:
            logger.info(f"Reaped {reaped} idle pages")
        return reaped

    async def reap_idle_pages(self) -> int:
        """Close idle tabs older than the page idle timeout."""
        async with self._lock:
            reaped = await self._reap_idle_pages()
            self._maybe_schedule_idle_cleanup()
            return reaped

    # ------------------------------------------------------------------
    # Idle teardown
    # ------------------------------------------------------------------

    def _active_count(self) -> int:
        return sum(1 for p in self._pages.values() if p.state == PageState.ACTIVE)

    def _maybe_schedule_idle_cleanup(self) -> None:
        if self._active_count() > 0 or not self._instances:
            return
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._idle_cleanup())
        logger.debug(f"Idle teardown scheduled in {self.idle_grace_seconds}s")

    def _cancel_idle_cleanup(self) -> None:
        task = self._cleanup_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.debug("Idle teardown cancelled")
        self._cleanup_task = None

    async def _idle_cleanup(self) -> None:
        await asyncio.sleep(self.idle_grace_seconds)
        async with self._lock:
            if self._cleanup_task is not asyncio.current_task():
                return
            self._cleanup_task = None
            # Work may have arrived while we slept
            if self._active_count() > 0 or not self._instances:
                return
            logger.info(
                f"Pool idle for {self.idle_grace_seconds}s, tearing down browser"
            )
            await self._teardown()

    # ------------------------------------------------------------------
    # Health and recovery
    # ------------------------------------------------------------------

    async def health_check(self) -> bool:
        """
        Probe the browser. Only runs while a page is active; an idle pool
        reports healthy without probing.

        Returns:
            False if an instance is disconnected or a live page cannot
            evaluate a trivial script
        """
        active = [p for p in self._pages.values() if p.state == PageState.ACTIVE]
        if not active:
            return True

        if self._state == PoolState.ERROR:
            return False

        for instance in self._instances.values():
            try:
                if not instance.connected or not instance.browser.is_connected():
                    logger.warning(f"Browser instance {instance.instance_id} disconnected")
                    return False
            except Exception:
                return False

        for managed in active:
            try:
                await managed.page.evaluate("() => document.readyState")
            except Exception as e:
                logger.warning(f"Health check failed on page {managed.page_id}: {e}")
                managed.state = PageState.ERROR
                return False

        return True

    def _on_disconnected(self, instance_id: int) -> None:
        instance = self._instances.get(instance_id)
        if instance is None or instance.closing:
            return
        task = asyncio.ensure_future(self.handle_disconnect(instance_id))
        self._disconnect_tasks.add(task)
        task.add_done_callback(self._on_disconnect_done)

    def _on_disconnect_done(self, task: asyncio.Task) -> None:
        self._disconnect_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Disconnect recovery raised: {error}")

    async def handle_disconnect(self, instance_id: int) -> bool:
        """
        React to a browser process dying underneath us.

        Marks the pool as errored, drops the instance's pages and tries one
        recreation. On failure the pool stays errored until reset().

        Returns:
            True if a replacement instance was launched
        """
        async with self._lock:
            instance = self._instances.pop(instance_id, None)
            if instance is None:
                return self._state != PoolState.ERROR

            self._total_disconnects += 1
            self._state = PoolState.ERROR
            instance.connected = False
            logger.error(f"Browser instance {instance_id} disconnected")

            for page_id in list(instance.page_ids):
                managed = self._pages.pop(page_id, None)
                if managed is not None:
                    managed.state = PageState.CLOSED

            try:
                await self._launch_instance()
            except Exception as e:
                logger.error(f"Recreating browser after disconnect failed: {e}")
                return False

            self._state = PoolState.READY
            logger.info("Browser recreated after disconnect")
            return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_page(self, page_id: int) -> Optional[ManagedPage]:
        return self._pages.get(page_id)

    def get_page_info_list(self) -> list[dict]:
        """Snapshot of every tracked page."""
        return [p.to_dict() for p in self._pages.values()]

    def get_status(self) -> PoolStatus:
        """Get current pool status."""
        active = self._active_count()
        idle = sum(1 for p in self._pages.values() if p.state == PageState.IDLE)
        return PoolStatus(
            state=self._state,
            instances=len(self._instances),
            pages=len(self._pages),
            active=active,
            idle=idle,
            teardown_pending=self._cleanup_task is not None and not self._cleanup_task.done(),
            total_pages_created=self._total_pages_created,
            total_disconnects=self._total_disconnects,
        )

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def is_started(self) -> bool:
        """Whether the Playwright driver is running."""
        return self._playwright is not None
