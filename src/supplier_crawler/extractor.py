"""
Supplier card extraction.

Cards on a results page are processed in small concurrent batches with a
short pause between batches. Every field is read through ordered fallback
selectors; cards without a company name are dropped. When the page breaks
partway through, ExtractionFailed carries the records already built.
"""

import asyncio
import logging
import re
from typing import Awaitable, Callable, Optional

from .config import CrawlerConfig
from .exceptions import ExtractionFailed
from .intelligence.selector_library import FieldSpec, SelectorCandidates, SelectorLibrary
from .models import SupplierRecord
from .parsing import (
    clean_text,
    extract_email,
    extract_phone,
    normalize_url,
    parse_location,
    parse_year,
)

logger = logging.getLogger(__name__)

_CJK_RE = re.compile(r"[一-鿿]")


def default_selector_library() -> SelectorLibrary:
    """Selector candidates for the supplier tab of the search results."""
    return SelectorLibrary([
        SelectorCandidates("card", [
            ".factory-card",
            '[class="factory-card"]',
            ".supplier-card",
            '[data-content="supplier-card"]',
        ]),
        SelectorCandidates("title_link", [
            ".card-title .detail-info h3 a",
            ".card-title h3 a",
            ".company-name a",
            "h3 a",
        ]),
        SelectorCandidates("location", [
            ".card-title .detail-info .location",
            ".location",
            '[class*="location"]',
            '[class*="address"]',
        ]),
        SelectorCandidates("main_products", [
            ".card-title .detail-info .main-product",
            ".main-product",
            '[class*="main-product"]',
        ]),
        SelectorCandidates("business_scope", [
            ".business-scope",
            '[class*="business-scope"]',
        ]),
        SelectorCandidates("established_year", [
            '[class*="year"]',
            '[class*="establish"]',
            ".company-year",
        ]),
        SelectorCandidates("contact", [
            ".contact",
            '[class*="contact"]',
            ".phone",
            ".tel",
            ".email",
        ]),
        SelectorCandidates("company_type", [
            ".company-type",
            '[class*="business-type"]',
            '[class*="verified"]',
        ]),
        SelectorCandidates("website", [
            '[class*="website"] a',
            'a[class*="website"]',
        ], attribute="href"),
    ])


class ExtractionEngine:
    """
    Turn a results page into SupplierRecords.

    Usage:
        engine = ExtractionEngine(config)
        records = await engine.extract(page, page_number=1)
    """

    def __init__(
        self,
        config: Optional[CrawlerConfig] = None,
        library: Optional[SelectorLibrary] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or CrawlerConfig()
        self.library = library or default_selector_library()
        self._sleep = sleep

        self.field_specs = [
            FieldSpec("location", self.library.get("location")),
            FieldSpec("main_products", self.library.get("main_products"), clean_text),
            FieldSpec("business_scope", self.library.get("business_scope"), clean_text),
            FieldSpec("established_year", self.library.get("established_year"), parse_year),
            FieldSpec("contact", self.library.get("contact")),
            FieldSpec("company_type", self.library.get("company_type"), clean_text),
            FieldSpec("website", self.library.get("website"), self._normalize),
        ]

    def _normalize(self, url: str) -> str:
        return normalize_url(url, self.config.search_origin)

    async def extract(self, page, page_number: int) -> list[SupplierRecord]:
        """
        Extract every supplier card on the page.

        Args:
            page: Playwright page showing a results listing
            page_number: 1-based page number, used for record indices

        Returns:
            Records in card order; empty when the page has no cards

        Raises:
            ExtractionFailed: A whole batch of cards failed; the records
                built before it are in ``partial_records``
        """
        cards = await self.library.get("card").query_all(page)
        if not cards:
            logger.info(f"Page {page_number}: no supplier cards found")
            return []

        logger.info(f"Page {page_number}: {len(cards)} supplier cards")
        try:
            records = await self._extract_batches(cards, page_number)
        except ExtractionFailed as e:
            logger.error(
                f"Page {page_number}: extraction stopped early "
                f"after {len(e.partial_records)} records: {e}"
            )
            raise

        logger.info(f"Page {page_number}: extracted {len(records)} suppliers")
        return records

    async def _extract_batches(self, cards: list, page_number: int) -> list[SupplierRecord]:
        batch_size = max(1, self.config.extraction_batch_size)
        records: list[SupplierRecord] = []

        for start in range(0, len(cards), batch_size):
            batch = cards[start:start + batch_size]
            results = await asyncio.gather(
                *(
                    self.extract_card(card, page_number, start + offset + 1)
                    for offset, card in enumerate(batch)
                ),
                return_exceptions=True,
            )

            failures = [r for r in results if isinstance(r, Exception)]
            if failures and len(failures) == len(results):
                # Every card in the batch failed: the page itself is gone
                raise ExtractionFailed(
                    f"batch at card {start + 1} failed: {failures[0]}", records
                )

            for position, result in enumerate(results, start=start + 1):
                if isinstance(result, Exception):
                    logger.warning(f"Page {page_number} card {position} failed: {result}")
                elif result is not None:
                    records.append(result)

            if start + batch_size < len(cards):
                await self._sleep(self.config.extraction_batch_pause)

        return records

    async def extract_card(self, card, page_number: int, position: int) -> Optional[SupplierRecord]:
        """
        Build a record from one card.

        Returns:
            SupplierRecord, or None when the card has no company name
        """
        name, href = await self._read_title(card)
        if not name:
            logger.debug(f"Page {page_number} card {position}: no name, skipped")
            return None

        timeout = self.config.extraction_field_timeout_ms
        values = {}
        for spec in self.field_specs:
            values[spec.name] = await spec.extract(card, timeout)

        location = parse_location(values["location"])
        contact = values["contact"]

        record = SupplierRecord(
            index=(page_number - 1) * self.config.results_per_page + position,
            detail_url=self._normalize(href),
            phone=extract_phone(contact),
            email=extract_email(contact),
            website=values["website"],
            country=location.country,
            province=location.province,
            city=location.city,
            district=location.district,
            address=clean_text(values["location"]),
            established_year=values["established_year"],
            business_scope=values["business_scope"] or values["main_products"],
            company_type=values["company_type"],
            main_products=values["main_products"],
            page_number=page_number,
        )
        if _CJK_RE.search(name):
            record.local_name = name
        else:
            record.english_name = name
        return record

    async def _read_title(self, card) -> tuple[str, str]:
        candidates = self.library.get("title_link")
        timeout_s = self.config.extraction_field_timeout_ms / 1000
        last_error: Optional[Exception] = None
        answered = False

        for selector in candidates.selectors:
            try:
                link = await asyncio.wait_for(card.query_selector(selector), timeout=timeout_s)
                answered = True
                if link is None:
                    continue
                name = clean_text(await link.text_content())
                href = (await link.get_attribute("href")) or ""
            except Exception as e:
                logger.debug(f"Title selector {selector} failed: {e}")
                last_error = e
                continue
            if name:
                candidates.record_hit(selector)
                return name, href

        # A card that errors on every selector is detached, not nameless
        if not answered and last_error is not None:
            raise last_error

        candidates.record_miss()
        return "", ""

    def stats(self) -> dict:
        """Selector hit statistics."""
        return self.library.stats()
