"""
Ordered selector candidates with first-hit statistics.

Marketplace markup drifts, so every field is described by a list of CSS
selectors tried in order; the first one that yields a non-empty value wins.
Hit counts per selector show which fallbacks the live site actually needs.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class SelectorCandidates:
    """
    Ordered fallback selectors for one purpose.

    Attributes:
        purpose: What the selectors locate ("card", "name", ...)
        selectors: CSS selectors, most specific first
        attribute: Read this attribute instead of the text content
    """
    purpose: str
    selectors: list[str]
    attribute: str | None = None
    hits: dict[str, int] = field(default_factory=dict)
    misses: int = 0

    def record_hit(self, selector: str) -> None:
        self.hits[selector] = self.hits.get(selector, 0) + 1

    def record_miss(self) -> None:
        self.misses += 1

    @property
    def primary(self) -> str:
        return self.selectors[0]

    async def query_all(self, root) -> list[Any]:
        """
        Elements matched by the first selector that matches anything.

        Args:
            root: Page or element handle

        Returns:
            Element handles, empty when nothing matched
        """
        for selector in self.selectors:
            try:
                elements = await root.query_selector_all(selector)
            except Exception as e:
                logger.debug(f"[{self.purpose}] selector {selector} failed: {e}")
                continue
            if elements:
                self.record_hit(selector)
                return elements
        self.record_miss()
        return []

    async def first_value(self, root, timeout_ms: int = 2000) -> str:
        """
        Text (or attribute) of the first candidate that yields a non-empty value.

        Each lookup is bounded by ``timeout_ms``; errors count as a miss for
        that selector and the next one is tried.
        """
        for selector in self.selectors:
            try:
                value = await asyncio.wait_for(
                    self._read(root, selector), timeout=timeout_ms / 1000
                )
            except Exception as e:
                logger.debug(f"[{self.purpose}] selector {selector} failed: {e}")
                continue
            if value:
                self.record_hit(selector)
                return value
        self.record_miss()
        return ""

    async def _read(self, root, selector: str) -> str:
        element = await root.query_selector(selector)
        if element is None:
            return ""
        if self.attribute:
            value = await element.get_attribute(self.attribute)
        else:
            value = await element.text_content()
        return (value or "").strip()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "purpose": self.purpose,
            "selectors": list(self.selectors),
            "attribute": self.attribute,
            "hits": dict(self.hits),
            "misses": self.misses,
        }


@dataclass
class FieldSpec:
    """
    How one SupplierRecord field is read from a card.

    ``parse`` post-processes the raw string (e.g. pulling a year out of
    "Established in 2012").
    """
    name: str
    candidates: SelectorCandidates
    parse: Callable[[str], str] | None = None

    async def extract(self, card, timeout_ms: int = 2000) -> str:
        raw = await self.candidates.first_value(card, timeout_ms)
        if raw and self.parse is not None:
            return self.parse(raw)
        return raw


class SelectorLibrary:
    """
    Named candidate lists, with a shared stats view.

    Usage:
        library = SelectorLibrary()
        cards = await library.get("card").query_all(page)
    """

    def __init__(self, candidates: list[SelectorCandidates] | None = None):
        self._candidates: dict[str, SelectorCandidates] = {}
        for entry in candidates or []:
            self.register(entry)

    def register(self, candidates: SelectorCandidates) -> None:
        self._candidates[candidates.purpose] = candidates

    def get(self, purpose: str) -> SelectorCandidates:
        return self._candidates[purpose]

    def __contains__(self, purpose: str) -> bool:
        return purpose in self._candidates

    def stats(self) -> dict[str, Any]:
        """Hit/miss counts per purpose."""
        return {purpose: c.to_dict() for purpose, c in self._candidates.items()}
