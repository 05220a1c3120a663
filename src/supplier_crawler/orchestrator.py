"""
Keyword-driven crawl loop.

One SearchTask walks result pages strictly in order:

    navigate -> classify -> (solve) -> extract -> stream the batch -> next page

Page-level trouble (navigation exhausted, challenge not solved) skips that
page. A page whose cards break mid-extraction streams what it got and is
reported as a page error. Anything unexpected, including an unhealthy
browser, bubbles to a keyword-level retry that resets the session pool and
resumes at the first page not yet streamed, so a caller never sees the same
batch twice.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable, Optional, Union
from urllib.parse import quote

from .browser_config import BrowserConfig
from .config import CrawlerConfig
from .exceptions import (
    Busy,
    ChallengeExhausted,
    ExtractionFailed,
    LoginRequired,
    NavigationFailed,
    ResourceExhausted,
    SessionDisconnected,
)
from .extractor import ExtractionEngine
from .infrastructure.browser_pool import SessionPool
from .infrastructure.navigation import NavigationDriver
from .infrastructure.retry import backoff_delay
from .models import (
    BatchEvent,
    ProgressEvent,
    ProgressKind,
    SearchResult,
    SearchTask,
    SupplierRecord,
    TaskState,
)
from .page_classifier import PageClass, PageClassifier
from .utils.captcha_solver import BaseTextRecognizer, SliderCaptchaSolver
from .utils.login_checker import LoginChecker

logger = logging.getLogger(__name__)

CrawlEvent = Union[ProgressEvent, BatchEvent]


def build_search_url(keyword: str, page_number: int, origin: str = "https://www.alibaba.com") -> str:
    """Supplier-tab search URL for one result page."""
    encoded = quote(keyword, safe="!*'()")
    return (
        f"{origin.rstrip('/')}/trade/search?fsb=y&IndexArea=product_en"
        f"&keywords={encoded}&originKeywords={encoded}&tab=supplier&page={page_number}"
    )


class CrawlOrchestrator:
    """
    Run supplier searches against the marketplace.

    Usage:
        async with CrawlOrchestrator.create(config) as crawler:
            async for batch in crawler.search("furniture", max_pages=3):
                handle(batch.records)
    """

    def __init__(
        self,
        pool: SessionPool,
        config: Optional[CrawlerConfig] = None,
        navigator: Optional[NavigationDriver] = None,
        classifier: Optional[PageClassifier] = None,
        solver: Optional[SliderCaptchaSolver] = None,
        extractor: Optional[ExtractionEngine] = None,
        login_checker: Optional[LoginChecker] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pool = pool
        self.config = config or CrawlerConfig()
        self.navigator = navigator or NavigationDriver(pool, self.config, sleep=sleep)
        self.classifier = classifier or PageClassifier()
        if solver is None:
            browser_config = pool.browser_config
            solver = SliderCaptchaSolver.from_config(
                self.config,
                classifier=self.classifier,
                interactive=not browser_config.headless,
                page_timeout_ms=browser_config.timeout,
                sleep=sleep,
            )
        self.solver = solver
        self.extractor = extractor or ExtractionEngine(self.config, sleep=sleep)
        self.login_checker = login_checker
        self._sleep = sleep

        self._running = False
        self._cancel_event = asyncio.Event()
        self.last_task: Optional[SearchTask] = None

    @classmethod
    def create(
        cls,
        config: Optional[CrawlerConfig] = None,
        browser_config: Optional[BrowserConfig] = None,
        recognizer: Optional[BaseTextRecognizer] = None,
        require_login: bool = False,
        launcher=None,
    ) -> "CrawlOrchestrator":
        """
        Wire a pool, solver and extractor from configuration.

        Args:
            config: Crawler tunables
            browser_config: Browser launch/context settings
            recognizer: Optional OCR collaborator for text challenges
            require_login: Check the secondary site before each search
            launcher: Playwright launcher override (tests)
        """
        config = config or CrawlerConfig()
        browser_config = browser_config or BrowserConfig()
        pool = SessionPool.from_config(config, browser_config, launcher=launcher)
        classifier = PageClassifier()
        # A human can only step in when the browser window is visible
        interactive = not browser_config.headless
        solver = SliderCaptchaSolver.from_config(
            config,
            recognizer=recognizer,
            classifier=classifier,
            interactive=interactive,
            page_timeout_ms=browser_config.timeout,
        )
        login_checker = LoginChecker(pool, interactive=interactive) if require_login else None
        return cls(
            pool,
            config,
            classifier=classifier,
            solver=solver,
            login_checker=login_checker,
        )

    async def __aenter__(self) -> "CrawlOrchestrator":
        await self.pool.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.pool.shutdown()

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Ask the running search to stop before its next page."""
        if self._running:
            logger.info("Cancellation requested")
        self._cancel_event.set()

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def search(self, keyword: str, max_pages: Optional[int] = None) -> AsyncIterator[BatchEvent]:
        """
        Stream one BatchEvent per extracted page.

        Raises:
            Busy: Another search is running on this orchestrator
            LoginRequired: The secondary site is not logged in
            Exception: The keyword failed after every retry
        """
        async with aclosing(self.search_with_progress(keyword, max_pages)) as events:
            async for event in events:
                if isinstance(event, BatchEvent):
                    yield event

    async def search_all(self, keyword: str, max_pages: Optional[int] = None) -> SearchResult:
        """
        Collect a whole search into one SearchResult.

        Failures after the search started are reported in ``error`` along
        with every record streamed before them.
        """
        result = SearchResult(keyword=keyword)
        try:
            async with aclosing(self.search(keyword, max_pages)) as batches:
                async for batch in batches:
                    result.records.extend(batch.records)
        except Busy:
            raise
        except Exception as e:
            result.error = str(e) or type(e).__name__

        task = self.last_task
        if task is not None:
            result.state = task.state
            result.pages = task.pages_yielded
            result.error = result.error or task.error
        return result

    async def search_with_progress(
        self, keyword: str, max_pages: Optional[int] = None
    ) -> AsyncIterator[CrawlEvent]:
        """
        Stream progress events interleaved with batches.

        Yields page_start / page_complete / page_skipped / page_error
        ProgressEvents, a BatchEvent per extracted page, and a final
        task_complete event.
        """
        if self._running:
            raise Busy(f"A search is already running ({self.last_task.keyword!r})")
        self._running = True
        self._cancel_event.clear()

        task = SearchTask(keyword=keyword, max_pages=max_pages)
        self.last_task = task
        seen: set[str] = set()
        logger.info(f"Search started: {keyword!r} (max_pages={max_pages})")

        try:
            if self.login_checker is not None:
                if not await self.login_checker.ensure_logged_in():
                    task.finish(TaskState.FAILED, "login required")
                    raise LoginRequired("Secondary site is not logged in")

            attempt = 0
            while True:
                attempt += 1
                try:
                    async with aclosing(self._page_loop(task, seen)) as events:
                        async for event in events:
                            yield event
                    break
                except ResourceExhausted as e:
                    task.finish(TaskState.FAILED, str(e))
                    raise
                except Exception as e:
                    yield ProgressEvent(
                        ProgressKind.PAGE_ERROR,
                        task.page_number,
                        message=str(e),
                        detail={"attempt": attempt},
                    )
                    if attempt >= self.config.keyword_retries:
                        logger.error(
                            f"Search {keyword!r} failed after {attempt} attempts: {e}"
                        )
                        task.finish(TaskState.FAILED, str(e) or type(e).__name__)
                        yield self._completion_event(task)
                        raise

                    delay = backoff_delay(attempt, self.config.keyword_backoff_seconds)
                    logger.warning(
                        f"Search {keyword!r} attempt {attempt}/{self.config.keyword_retries} "
                        f"failed on page {task.page_number}: {e}; resetting browser, "
                        f"retrying in {delay:.1f}s"
                    )
                    await self.pool.reset()
                    await self._sleep(delay)

            yield self._completion_event(task)
        finally:
            if not task.is_terminal:
                task.finish(TaskState.CANCELLED)
            self._running = False
            logger.info(
                f"Search {keyword!r} {task.state.value}: "
                f"{task.total_records} records from {task.pages_yielded} pages"
            )

    # ------------------------------------------------------------------
    # Page loop
    # ------------------------------------------------------------------

    def _completion_event(self, task: SearchTask) -> ProgressEvent:
        return ProgressEvent(
            ProgressKind.TASK_COMPLETE,
            task.page_number,
            message=task.state.value,
            detail=task.to_dict(),
        )

    def _advance(self, task: SearchTask) -> bool:
        """Move to the next page; False (and Completed) once the cap is reached."""
        if task.max_pages is not None and task.page_number >= task.max_pages:
            task.finish(TaskState.COMPLETED)
            return False
        task.page_number += 1
        return True

    def _skip(self, task: SearchTask, reason: Exception) -> ProgressEvent:
        page_number = task.page_number
        task.skipped_pages.append(page_number)
        logger.warning(f"Skipping page {page_number}: {reason}")
        return ProgressEvent(ProgressKind.PAGE_SKIPPED, page_number, message=str(reason))

    def _dedup(self, records: list[SupplierRecord], seen: set[str]) -> list[SupplierRecord]:
        fresh = []
        for record in records:
            if record.dedup_key in seen:
                logger.debug(f"Duplicate supplier dropped: {record.name}")
                continue
            seen.add(record.dedup_key)
            fresh.append(record)
        return fresh

    def _batch(
        self, task: SearchTask, page_number: int, records: list[SupplierRecord], seen: set[str]
    ) -> BatchEvent:
        fresh = self._dedup(records, seen)
        task.total_records += len(fresh)
        task.pages_yielded += 1
        return BatchEvent(
            keyword=task.keyword,
            page_number=page_number,
            records=fresh,
            total_so_far=task.total_records,
        )

    async def _page_loop(self, task: SearchTask, seen: set[str]) -> AsyncIterator[CrawlEvent]:
        if task.max_pages is not None and task.max_pages < 1:
            task.finish(TaskState.COMPLETED)
            return

        nav_failures = 0
        while True:
            if self._cancel_event.is_set():
                logger.info(f"Search {task.keyword!r} cancelled before page {task.page_number}")
                task.finish(TaskState.CANCELLED)
                return

            threshold = self.config.navigation_failures_before_reset
            if threshold > 0 and nav_failures >= threshold:
                logger.warning(
                    f"{nav_failures} pages in a row failed to load, resetting browser"
                )
                await self.pool.reset()
                nav_failures = 0

            page_number = task.page_number
            yield ProgressEvent(ProgressKind.PAGE_START, page_number)
            url = build_search_url(task.keyword, page_number, self.config.search_origin)

            handle = await self.pool.acquire_page()
            try:
                try:
                    handle = await self.navigator.navigate(handle, url)
                except NavigationFailed as e:
                    nav_failures += 1
                    yield self._skip(task, e)
                    if not self._advance(task):
                        return
                    continue
                nav_failures = 0

                await self.navigator.wait_for_stable(handle.page)
                page_class = await self.classifier.classify(handle.page)

                if page_class == PageClass.CHALLENGE:
                    try:
                        await self.solver.solve(handle.page)
                    except ChallengeExhausted as e:
                        yield self._skip(task, e)
                        if not self._advance(task):
                            return
                        continue
                    await self.navigator.wait_for_stable(handle.page)
                    page_class = await self.classifier.classify(handle.page)
                    if page_class == PageClass.CHALLENGE:
                        yield self._skip(task, ChallengeExhausted("challenge still present after solving"))
                        if not self._advance(task):
                            return
                        continue

                if page_class == PageClass.NO_MORE_RESULTS:
                    logger.info(f"No more results after page {page_number - 1}")
                    task.finish(TaskState.COMPLETED)
                    return

                if page_class == PageClass.UNKNOWN:
                    logger.warning(f"Unrecognized page at {url}, stopping")
                    task.finish(TaskState.COMPLETED)
                    return

                if not await self.pool.health_check():
                    raise SessionDisconnected(f"Browser unhealthy before extracting page {page_number}")

                try:
                    records = await self.extractor.extract(handle.page, page_number)
                except ExtractionFailed as e:
                    partial = e.partial_records
                    yield self._batch(task, page_number, partial, seen)
                    task.error_pages.append(page_number)
                    task.error = f"page {page_number}: {e}"
                    yield ProgressEvent(
                        ProgressKind.PAGE_ERROR,
                        page_number,
                        message=str(e),
                        detail={"partial": len(partial)},
                    )
                    if not self._advance(task):
                        return
                    continue

                batch = self._batch(task, page_number, records, seen)
                yield batch
                yield ProgressEvent(
                    ProgressKind.PAGE_COMPLETE,
                    page_number,
                    detail={"records": len(batch.records), "total": task.total_records},
                )

                if not records:
                    logger.info(f"Page {page_number} has no supplier cards, stopping")
                    task.finish(TaskState.COMPLETED)
                    return

                if not self._advance(task):
                    return
            finally:
                await self.pool.release_page(handle)
