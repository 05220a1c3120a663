"""
Automation fingerprint masking and request blocking.

Init scripts run before any page script so that bot detectors reading
navigator properties see a regular desktop Chrome. The route handler aborts
blocked resource types and tracker domains to cut load time and the
detection surface.
"""

import json
import logging
from typing import Any, Optional

from ..browser_config import BrowserConfig

logger = logging.getLogger(__name__)


STEALTH_SCRIPTS = {
    "webdriver": """
        Object.defineProperty(navigator, 'webdriver', {
            get: () => undefined,
            configurable: true
        });
    """,
    "plugins": """
        Object.defineProperty(navigator, 'plugins', {
            get: () => {
                const plugins = [
                    { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
                    { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
                    { name: 'Native Client', filename: 'internal-nacl-plugin' }
                ];
                plugins.item = (index) => plugins[index];
                plugins.namedItem = (name) => plugins.find(p => p.name === name);
                plugins.refresh = () => {};
                return plugins;
            },
            configurable: true
        });
    """,
    "chrome_runtime": """
        if (!window.chrome) {
            window.chrome = {};
        }
        if (!window.chrome.runtime) {
            window.chrome.runtime = {
                id: undefined,
                connect: function() {},
                sendMessage: function() {},
                onMessage: { addListener: function() {} },
                onConnect: { addListener: function() {} }
            };
        }
    """,
    "autoplay": """
        Object.defineProperty(HTMLMediaElement.prototype, 'autoplay', {
            set: () => {},
            configurable: true
        });
    """,
}

_LANGUAGES_TEMPLATE = """
        Object.defineProperty(navigator, 'languages', {
            get: () => %s,
            configurable: true
        });
"""


def build_stealth_script(languages: Optional[list[str]] = None) -> str:
    """Combine the stealth snippets, with navigator.languages set to ``languages``."""
    languages = languages or ["en-US", "en"]
    parts = list(STEALTH_SCRIPTS.values())
    parts.append(_LANGUAGES_TEMPLATE % json.dumps(languages))
    return "\n".join(parts)


async def install_stealth(target: Any, config: BrowserConfig) -> None:
    """
    Install init scripts on a Playwright page or context.

    Args:
        target: Page or BrowserContext
        config: Browser configuration (languages, stealth_mode)
    """
    if not config.stealth_mode:
        return
    await target.add_init_script(build_stealth_script(config.languages))
    logger.debug("Stealth init script installed")


async def install_resource_blocking(target: Any, config: BrowserConfig) -> None:
    """
    Route every request through ``config.should_block``.

    Args:
        target: Page or BrowserContext
        config: Browser configuration (block_resources, blocked_domains)
    """
    if not config.block_resources and not config.blocked_domains:
        return

    async def _handle(route) -> None:
        request = route.request
        if config.should_block(request.url, request.resource_type):
            await route.abort()
        else:
            await route.continue_()

    await target.route("**/*", _handle)
    logger.debug(
        f"Resource blocking enabled (types={config.block_resources}, "
        f"domains={len(config.blocked_domains)})"
    )


async def verify_stealth(page: Any) -> dict:
    """
    Check that the masking took effect on a live page.

    Returns:
        Dict of check name -> bool (or error string), plus ``all_passed``
    """
    checks = {
        "webdriver_undefined": "() => typeof navigator.webdriver === 'undefined'",
        "plugins_non_empty": "() => navigator.plugins.length > 0",
        "languages_non_empty": "() => navigator.languages.length > 0",
        "chrome_runtime_exists": "() => typeof window.chrome !== 'undefined' && typeof window.chrome.runtime !== 'undefined'",
    }

    results: dict = {}
    for name, script in checks.items():
        try:
            results[name] = await page.evaluate(script)
        except Exception as e:
            results[name] = f"Error: {e}"

    all_passed = all(v is True for v in results.values())
    results["all_passed"] = all_passed

    if not all_passed:
        logger.warning(f"Stealth verification issues: {results}")

    return results
