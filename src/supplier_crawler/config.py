from dotenv import load_dotenv
from dataclasses import dataclass, fields
from typing import Optional, Union
from pathlib import Path
import json
import os

import yaml

load_dotenv()  # Loads variables from .env file


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    HEADLESS = _env_bool("CRAWLER_HEADLESS", True)
    EXECUTABLE_PATH = os.getenv("CRAWLER_EXECUTABLE_PATH")  # Bundled Chromium, None for Playwright's own
    LOG_LEVEL = os.getenv("CRAWLER_LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("CRAWLER_LOG_FILE")
    SEARCH_ORIGIN = os.getenv("CRAWLER_SEARCH_ORIGIN", "https://www.alibaba.com")
    LOGIN_SITE_URL = os.getenv("CRAWLER_LOGIN_SITE_URL", "https://www.tianyancha.com")


settings = Settings()


@dataclass
class CrawlerConfig:
    """Tunables for the session pool, navigation, solver, extraction and orchestrator."""

    # Session pool
    max_instances: int = 2
    max_pages_per_instance: int = 5
    idle_grace_seconds: float = 300.0  # Keep the browser alive between bursts
    page_idle_timeout_seconds: float = 600.0

    # Navigation
    navigation_timeout_ms: int = 60000
    navigation_retries: int = 3
    navigation_base_delay: float = 2.0
    wait_until: str = "domcontentloaded"
    navigation_failures_before_reset: int = 2  # Consecutive skipped pages, 0 disables

    # Page stability
    stability_timeout_ms: int = 15000
    stability_poll_ms: int = 300
    stability_dwell_ms: int = 1000
    network_quiet_ms: int = 800

    # Slider challenge
    solver_max_attempts: int = 4
    solver_drag_distance_px: int = 300
    solver_min_steps: int = 15
    solver_max_steps: int = 20
    solver_jitter_px: int = 3
    solver_settle_seconds: float = 1.2
    solver_retry_base_delay: float = 0.5
    manual_window_seconds: float = 240.0
    manual_poll_seconds: float = 2.0

    # Extraction
    extraction_batch_size: int = 5
    extraction_batch_pause: float = 0.2
    extraction_field_timeout_ms: int = 2000
    results_per_page: int = 20

    # Orchestrator
    keyword_retries: int = 3
    keyword_backoff_seconds: float = 2.0
    search_origin: str = "https://www.alibaba.com"

    @classmethod
    def from_env(cls) -> "CrawlerConfig":
        """Load configuration from environment variables.

        Environment variables are prefixed with CRAWLER_,
        e.g. CRAWLER_MAX_INSTANCES=3

        Returns:
            CrawlerConfig with values from environment
        """
        config = cls()
        prefix = "CRAWLER_"

        for f in fields(config):
            env_value = os.getenv(f"{prefix}{f.name.upper()}")
            if env_value is None:
                continue
            try:
                if f.type in (int, "int"):
                    setattr(config, f.name, int(env_value))
                elif f.type in (float, "float"):
                    setattr(config, f.name, float(env_value))
                else:
                    setattr(config, f.name, env_value)
            except ValueError:
                pass  # Keep default if conversion fails

        return config

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "CrawlerConfig":
        """Load configuration from a JSON or YAML file.

        Values may sit at the top level or under a ``crawler`` key.
        Unknown keys are ignored; a missing file yields the defaults.

        Args:
            path: Path to a .json, .yaml or .yml file

        Returns:
            CrawlerConfig with values from file
        """
        config = cls()
        file_path = Path(path)

        if not file_path.exists():
            return config

        with open(file_path, 'r') as f:
            if file_path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        section = data.get('crawler', data)
        known = {f.name for f in fields(config)}

        for key, value in section.items():
            if key in known:
                setattr(config, key, value)

        return config

    def to_dict(self) -> dict:
        """Convert configuration to a dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def save_to_file(self, path: Union[str, Path]) -> None:
        """Save current configuration to a JSON file.

        Args:
            path: Path to save configuration
        """
        with open(path, 'w') as f:
            json.dump({'crawler': self.to_dict()}, f, indent=2)


def load_config(path: Optional[str] = None) -> CrawlerConfig:
    """File values when a path is given, environment values otherwise."""
    if path:
        return CrawlerConfig.from_file(path)
    config = CrawlerConfig.from_env()
    if config.search_origin == CrawlerConfig.search_origin:
        config.search_origin = settings.SEARCH_ORIGIN
    return config


# Global default configuration instance
default_config = CrawlerConfig()
