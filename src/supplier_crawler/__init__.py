"""Supplier search crawler with pooled browsers and slider challenge handling."""

__version__ = "0.1.0"

from supplier_crawler.orchestrator import CrawlOrchestrator, build_search_url
from supplier_crawler.extractor import ExtractionEngine
from supplier_crawler.page_classifier import PageClass, PageClassifier
from supplier_crawler.models import (
    SupplierRecord,
    SearchTask,
    TaskState,
    BatchEvent,
    ProgressEvent,
    ProgressKind,
    SearchResult,
)
from supplier_crawler.config import CrawlerConfig, load_config, settings
from supplier_crawler.browser_config import BrowserConfig
from supplier_crawler.exceptions import (
    CrawlerError,
    ResourceExhausted,
    PoolError,
    SessionDisconnected,
    NavigationFailed,
    ChallengeExhausted,
    ExtractionFailed,
    Busy,
    LoginRequired,
)

# Infrastructure
from supplier_crawler.infrastructure import (
    SessionPool,
    ManagedPage,
    PageState,
    PoolStatus,
    NavigationDriver,
)

__all__ = [
    "CrawlOrchestrator",
    "build_search_url",
    "ExtractionEngine",
    "PageClass",
    "PageClassifier",
    "SupplierRecord",
    "SearchTask",
    "TaskState",
    "BatchEvent",
    "ProgressEvent",
    "ProgressKind",
    "SearchResult",
    "CrawlerConfig",
    "load_config",
    "settings",
    "BrowserConfig",
    "CrawlerError",
    "ResourceExhausted",
    "PoolError",
    "SessionDisconnected",
    "NavigationFailed",
    "ChallengeExhausted",
    "ExtractionFailed",
    "Busy",
    "LoginRequired",
    "SessionPool",
    "ManagedPage",
    "PageState",
    "PoolStatus",
    "NavigationDriver",
]
