"""Data models for supplier crawling."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


@dataclass
class SupplierRecord:
    """One supplier extracted from a search results card."""

    index: int
    local_name: str = ""  # Name in the marketplace's home language
    english_name: str = ""
    detail_url: str = ""

    # Contact
    phone: str = ""
    email: str = ""
    website: str = ""

    # Location (heuristic, see parsing.parse_location)
    country: str = ""
    province: str = ""
    city: str = ""
    district: str = ""
    address: str = ""

    # Company metadata
    established_year: str = ""
    credit_code: str = ""
    business_scope: str = ""
    company_type: str = ""
    main_products: str = ""

    page_number: int = 0

    @property
    def name(self) -> str:
        """Display name, English first."""
        return self.english_name or self.local_name

    @property
    def dedup_key(self) -> str:
        """Key used to drop the same supplier showing up on two pages."""
        return f"{self.name}-{self.detail_url}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "index": self.index,
            "local_name": self.local_name,
            "english_name": self.english_name,
            "detail_url": self.detail_url,
            "phone": self.phone,
            "email": self.email,
            "website": self.website,
            "country": self.country,
            "province": self.province,
            "city": self.city,
            "district": self.district,
            "address": self.address,
            "established_year": self.established_year,
            "credit_code": self.credit_code,
            "business_scope": self.business_scope,
            "company_type": self.company_type,
            "main_products": self.main_products,
            "page_number": self.page_number,
        }


class TaskState(Enum):
    """Lifecycle of a SearchTask."""
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class SearchTask:
    """One keyword-driven crawl run."""

    keyword: str
    max_pages: Optional[int] = None
    page_number: int = 1
    total_records: int = 0
    pages_yielded: int = 0
    skipped_pages: list[int] = field(default_factory=list)
    error_pages: list[int] = field(default_factory=list)
    state: TaskState = TaskState.RUNNING
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def finish(self, state: TaskState, error: Optional[str] = None) -> None:
        """Move to a terminal state, keeping any earlier page error."""
        self.state = state
        if error is not None:
            self.error = error
        self.finished_at = datetime.now()

    @property
    def is_terminal(self) -> bool:
        return self.state != TaskState.RUNNING

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "keyword": self.keyword,
            "max_pages": self.max_pages,
            "page_number": self.page_number,
            "total_records": self.total_records,
            "pages_yielded": self.pages_yielded,
            "skipped_pages": list(self.skipped_pages),
            "error_pages": list(self.error_pages),
            "state": self.state.value,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class BatchEvent:
    """One page's worth of records, streamed as soon as it is extracted."""

    keyword: str
    page_number: int
    records: list[SupplierRecord]
    total_so_far: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "batch",
            "keyword": self.keyword,
            "page_number": self.page_number,
            "total_so_far": self.total_so_far,
            "records": [r.to_dict() for r in self.records],
        }


class ProgressKind(Enum):
    """Kinds of progress events emitted alongside batches."""
    PAGE_START = "page_start"
    PAGE_COMPLETE = "page_complete"
    PAGE_SKIPPED = "page_skipped"
    PAGE_ERROR = "page_error"
    TASK_COMPLETE = "task_complete"


@dataclass
class ProgressEvent:
    """Status signal for a page or for the whole task."""

    kind: ProgressKind
    page_number: int
    message: str = ""
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "page_number": self.page_number,
            "message": self.message,
            "detail": self.detail,
        }


@dataclass
class SearchResult:
    """Aggregated outcome of a non-streaming search."""

    keyword: str
    records: list[SupplierRecord] = field(default_factory=list)
    state: TaskState = TaskState.COMPLETED
    pages: int = 0
    error: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.records)
