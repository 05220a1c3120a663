"""Command-line interface for the supplier crawler."""

import asyncio
import json
import signal
import sys
from contextlib import aclosing
from typing import Optional, TextIO

from supplier_crawler.browser_config import BrowserConfig
from supplier_crawler.config import load_config, settings
from supplier_crawler.exceptions import LoginRequired
from supplier_crawler.logging_config import get_logger, setup_logging
from supplier_crawler.models import TaskState
from supplier_crawler.orchestrator import CrawlOrchestrator
from supplier_crawler.utils.captcha_solver import get_recognizer

logger = get_logger(__name__)

EXIT_CODES = {
    TaskState.COMPLETED: 0,
    TaskState.FAILED: 1,
    TaskState.CANCELLED: 130,
}


def _emit(stream: TextIO, payload: dict) -> None:
    stream.write(json.dumps(payload, ensure_ascii=False) + "\n")
    stream.flush()


async def _run_search(
    keyword: str,
    max_pages: Optional[int],
    headless: bool,
    config_path: Optional[str],
    output: Optional[str],
    require_login: bool,
    ocr: bool,
) -> int:
    """Run one search, streaming batches as JSON lines.

    Returns:
        Process exit code
    """
    config = load_config(config_path)
    browser_config = BrowserConfig(
        headless=headless,
        executable_path=settings.EXECUTABLE_PATH,
    )
    crawler = CrawlOrchestrator.create(
        config,
        browser_config,
        recognizer=get_recognizer("tesseract") if ocr else None,
        require_login=require_login,
    )

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, crawler.cancel)
    except (NotImplementedError, RuntimeError):
        pass  # No signal handlers on this platform; Ctrl+C interrupts instead

    out = open(output, "a", encoding="utf-8") if output else sys.stdout
    error: Optional[str] = None
    try:
        async with crawler:
            async with aclosing(crawler.search(keyword, max_pages)) as batches:
                async for batch in batches:
                    _emit(out, batch.to_dict())
    except LoginRequired as e:
        error = str(e)
        print(f"Login required: {e}", file=sys.stderr)
    except Exception as e:
        error = str(e) or type(e).__name__
        logger.error(f"Search failed: {error}")
    finally:
        if out is not sys.stdout:
            out.close()
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    task = crawler.last_task
    state = task.state if task else TaskState.FAILED
    status = {"type": "status", "keyword": keyword, "state": state.value}
    if task is not None:
        status.update(
            total_records=task.total_records,
            pages=task.pages_yielded,
            skipped_pages=task.skipped_pages,
        )
    if error or (task and task.error):
        status["error"] = error or task.error
    _emit(sys.stdout, status)

    return EXIT_CODES.get(state, 1)


def search_command(args) -> None:
    """Handle the search command."""
    headless = settings.HEADLESS if args.headless is None else args.headless
    try:
        code = asyncio.run(_run_search(
            keyword=args.keyword,
            max_pages=args.max_pages,
            headless=headless,
            config_path=args.config,
            output=args.output,
            require_login=args.require_login,
            ocr=args.ocr,
        ))
    except KeyboardInterrupt:
        code = EXIT_CODES[TaskState.CANCELLED]
    sys.exit(code)


def show_config_command(args) -> None:
    """Print the effective crawler configuration as JSON."""
    config = load_config(args.config)
    print(json.dumps(config.to_dict(), indent=2))


def main():
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Supplier Crawler - Stream supplier listings for a keyword from a marketplace search"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL.upper(),
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        default=settings.LOG_FILE,
        help="Write logs to file in addition to stderr",
    )
    parser.add_argument(
        "--debug-selectors",
        action="store_true",
        help="Log every selector fallback (noisy; needs --log-level DEBUG)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    search_parser = subparsers.add_parser(
        "search", help="Search suppliers for a keyword and stream JSON lines."
    )
    search_parser.add_argument("keyword", help="Search keyword (e.g. furniture)")
    search_parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Stop after this many result pages (default: until results run out)",
    )
    headless_group = search_parser.add_mutually_exclusive_group()
    headless_group.add_argument(
        "--headless",
        dest="headless",
        action="store_true",
        default=None,
        help="Run the browser without a window",
    )
    headless_group.add_argument(
        "--headed",
        dest="headless",
        action="store_false",
        help="Show the browser window (enables manual challenge solving)",
    )
    search_parser.add_argument(
        "--config",
        "-c",
        help="JSON or YAML file with crawler settings",
    )
    search_parser.add_argument(
        "--output",
        "-o",
        help="Append batch JSON lines to this file instead of stdout",
    )
    search_parser.add_argument(
        "--require-login",
        action="store_true",
        help="Check the secondary verification site is logged in before crawling",
    )
    search_parser.add_argument(
        "--ocr",
        action="store_true",
        help="Use tesseract to answer text challenges (needs the 'ocr' extra)",
    )
    search_parser.set_defaults(func=search_command)

    config_parser = subparsers.add_parser(
        "show-config", help="Print the effective crawler configuration."
    )
    config_parser.add_argument("--config", "-c", help="JSON or YAML config file")
    config_parser.set_defaults(func=show_config_command)

    args = parser.parse_args()

    # Configure logging based on flags
    setup_logging(
        level=args.log_level,
        log_file=args.log_file,
        selector_debug=args.debug_selectors,
    )

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
