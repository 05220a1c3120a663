"""
Browser configuration for the Playwright session pool.

This module provides a validated Pydantic configuration model for all
browser launch and context settings, plus pre-configured instances for
common use cases.
"""
import random
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# User agent pool for rotation
USER_AGENTS = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/138.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Chrome on Mac
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/138.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

# Flags that hide automation signals and stop background throttling
HARDENING_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=VizDisplayCompositor",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-extensions",
    "--disable-default-apps",
]

# Trackers and ad networks aborted at the route level
DEFAULT_BLOCKED_DOMAINS = [
    "google-analytics",
    "googletagmanager",
    "facebook.com",
    "doubleclick",
]


def get_random_user_agent() -> str:
    """Get a random user agent from the pool."""
    return random.choice(USER_AGENTS)


class BrowserConfig(BaseModel):
    """
    Configuration for browser instances launched by the SessionPool.

    All fields are validated by Pydantic to ensure type safety and valid values.
    """

    headless: bool = Field(
        default=True,
        description="Run browser in headless mode (no visible UI)"
    )

    executable_path: Optional[str] = Field(
        default=None,
        description="Path to a bundled Chromium. None lets Playwright find its own."
    )

    stealth_mode: bool = Field(
        default=True,
        description="Install init scripts that mask automation fingerprints"
    )

    timeout: int = Field(
        default=60000,
        description="Default operation timeout in milliseconds",
        ge=1000,
        le=300000
    )

    launch_timeout: int = Field(
        default=30000,
        description="Browser launch timeout in milliseconds",
        ge=1000,
        le=300000
    )

    viewport_width: int = Field(default=1920, ge=320)
    viewport_height: int = Field(default=1080, ge=240)

    locale: str = Field(
        default="en-US",
        description="Browser locale"
    )

    accept_language: str = Field(
        default="en-US,en;q=0.9,zh-CN;q=0.8,zh;q=0.7",
        description="Accept-Language header sent with every request"
    )

    languages: List[str] = Field(
        default_factory=lambda: ["en-US", "en"],
        description="Value reported by navigator.languages"
    )

    launch_args: List[str] = Field(
        default_factory=lambda: list(HARDENING_ARGS),
        description="Browser launch arguments"
    )

    block_resources: List[str] = Field(
        default_factory=list,
        description="Resource types to block (e.g., 'image', 'font', 'media')"
    )

    blocked_domains: List[str] = Field(
        default_factory=lambda: list(DEFAULT_BLOCKED_DOMAINS),
        description="URL fragments whose requests are aborted"
    )

    user_agent: Optional[str] = Field(
        default=None,
        description="Custom user agent. If None and rotate_user_agent=True, a random one is used."
    )

    rotate_user_agent: bool = Field(
        default=False,
        description="Pick a random user agent for each new browser instance"
    )

    class Config:
        """Pydantic model configuration."""
        frozen = False
        validate_assignment = True

    def get_user_agent(self) -> str:
        """Get the user agent to use for this config."""
        if self.user_agent:
            return self.user_agent
        if self.rotate_user_agent:
            return get_random_user_agent()
        return USER_AGENTS[0]

    def context_options(self) -> Dict:
        """Keyword arguments for ``browser.new_context``."""
        return {
            "viewport": {"width": self.viewport_width, "height": self.viewport_height},
            "user_agent": self.get_user_agent(),
            "locale": self.locale,
            "extra_http_headers": {"Accept-Language": self.accept_language},
            "ignore_https_errors": True,
            "java_script_enabled": True,
        }

    def launch_options(self) -> Dict:
        """Keyword arguments for ``chromium.launch``."""
        options = {
            "headless": self.headless,
            "args": list(self.launch_args),
            "timeout": self.launch_timeout,
        }
        if self.executable_path:
            options["executable_path"] = self.executable_path
        return options

    def should_block(self, url: str, resource_type: str) -> bool:
        """Whether a request should be aborted by the route handler."""
        if resource_type in self.block_resources:
            return True
        return any(fragment in url for fragment in self.blocked_domains)


# --- Pre-configured Instances for Common Use Cases ---

DEFAULT_CONFIG = BrowserConfig()
"""
Default configuration: headless, hardened, trackers blocked.
"""

FAST_CONFIG = BrowserConfig(
    headless=True,
    timeout=30000,
    block_resources=["image", "font", "media"],
)
"""
Fast configuration optimized for speed.

Blocks heavy resources. The slider challenge still renders because its
handle and track are plain DOM elements.
"""

VISIBLE_CONFIG = BrowserConfig(
    headless=False,
    block_resources=[],
)
"""
Headed configuration so an operator can resolve a challenge by hand
during the manual-intervention window.
"""
