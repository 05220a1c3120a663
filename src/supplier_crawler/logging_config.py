"""Logging configuration for the supplier crawler.

Log lines go to stderr so stdout stays a clean JSON-lines stream. Long
crawls write to a rotating file when one is given.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that flood DEBUG output during a crawl
NOISY_LOGGERS = ('asyncio', 'playwright', 'PIL', 'pytesseract', 'urllib3')

# Per-selector hit/miss chatter, only wanted when tuning selectors
SELECTOR_LOGGER = 'supplier_crawler.intelligence'


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    stream: Optional[TextIO] = None,
    selector_debug: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """Configure logging for the supplier crawler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path, rotated at ``max_bytes``
        format_string: Optional custom format string
        stream: Console stream, stderr by default
        selector_debug: Keep selector fallback logging at DEBUG
        max_bytes: Rotate the log file past this size
        backup_count: Rotated files to keep
    """
    if format_string is None:
        format_string = DEFAULT_FORMAT

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )

    logging.basicConfig(
        level=numeric_level,
        format=format_string,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    selector_level = numeric_level if selector_debug else max(numeric_level, logging.INFO)
    logging.getLogger(SELECTOR_LOGGER).setLevel(selector_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (usually ``__name__``)."""
    return logging.getLogger(name)
