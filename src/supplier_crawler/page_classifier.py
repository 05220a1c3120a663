"""
Page classification for marketplace search responses.

After every navigation the crawler needs to know whether it is looking at
a results listing, the end of the listing, an anti-bot interstitial, or
something else entirely. Detection is purely DOM/URL based.
"""

import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class PageClass(Enum):
    """Outcome of classifying a loaded page."""
    RESULTS = "results"
    NO_MORE_RESULTS = "no_more_results"
    CHALLENGE = "challenge"
    UNKNOWN = "unknown"


# Anti-bot interstitial markers. Generic class fragments can also appear on
# ordinary listings, so they are only consulted when the results marker is absent.
CHALLENGE_INDICATORS = {
    "captcha_iframe": 'iframe[src*="captcha"]',
    "slider_wrapper": ".nc_wrapper",
    "captcha_class": '[class*="captcha"]',
    "verify_class": '[class*="verify"]',
    "security_class": '[class*="security"]',
}

# URL fragments of challenge pages and login redirects
CHALLENGE_URL_PATTERNS = [
    "captcha",
    "punish",
    "/login",
    "signin",
]

RESULTS_MARKER_ATTRIBUTE = "data-spm"
RESULTS_MARKER_VALUE = "supplier_search"
NO_MORE_RESULTS_SELECTOR = "#sse-less-result"


class PageClassifier:
    """
    Classify a page as results, no-more-results, challenge or unknown.

    Precedence: with the results marker present, a visible no-more-results
    block wins over results. Without it, challenge is checked first, then
    no-more-results. Any selector error counts as "not present".
    """

    def __init__(
        self,
        challenge_indicators: Optional[dict[str, str]] = None,
        challenge_url_patterns: Optional[list[str]] = None,
        marker_timeout_ms: int = 5000,
    ):
        self.challenge_indicators = challenge_indicators or dict(CHALLENGE_INDICATORS)
        self.challenge_url_patterns = challenge_url_patterns or list(CHALLENGE_URL_PATTERNS)
        self.marker_timeout_ms = marker_timeout_ms

    async def classify(self, page) -> PageClass:
        """
        Classify the current page.

        Args:
            page: Playwright page

        Returns:
            PageClass
        """
        if await self.has_results_marker(page):
            if await self.no_more_results_visible(page):
                result = PageClass.NO_MORE_RESULTS
            else:
                result = PageClass.RESULTS
        elif await self.detect_challenge(page):
            result = PageClass.CHALLENGE
        elif await self.no_more_results_visible(page):
            result = PageClass.NO_MORE_RESULTS
        else:
            result = PageClass.UNKNOWN

        logger.debug(f"Classified {_page_url(page)} as {result.value}")
        return result

    async def has_results_marker(self, page) -> bool:
        """Whether ``body[data-spm]`` marks a supplier search listing."""
        try:
            value = await page.locator("body").get_attribute(
                RESULTS_MARKER_ATTRIBUTE, timeout=self.marker_timeout_ms
            )
        except Exception as e:
            logger.debug(f"Results marker check failed: {e}")
            return False
        return value == RESULTS_MARKER_VALUE

    async def no_more_results_visible(self, page) -> bool:
        try:
            return bool(await page.locator(NO_MORE_RESULTS_SELECTOR).is_visible())
        except Exception as e:
            logger.debug(f"No-more-results check failed: {e}")
            return False

    async def detect_challenge(self, page) -> Optional[str]:
        """
        Detect an anti-bot challenge.

        Returns:
            Name of the first matching indicator, or None
        """
        url = _page_url(page).lower()
        for pattern in self.challenge_url_patterns:
            if pattern in url:
                logger.info(f"Challenge detected via URL pattern: {pattern}")
                return f"url:{pattern}"

        for name, selector in self.challenge_indicators.items():
            try:
                count = await page.locator(selector).count()
            except Exception as e:
                logger.debug(f"Challenge selector {selector} failed: {e}")
                continue
            if count > 0:
                logger.info(f"Challenge detected: {name} ({count} elements)")
                return name

        return None

    async def is_challenge(self, page) -> bool:
        return await self.detect_challenge(page) is not None


def _page_url(page) -> str:
    try:
        url = page.url
    except Exception:
        return ""
    return url if isinstance(url, str) else ""
