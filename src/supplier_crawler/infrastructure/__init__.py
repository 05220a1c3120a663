"""
Infrastructure Package.

Provides the browser session pool, navigation with recovery, stealth
hardening and the shared retry policy.
"""

from .browser_pool import (
    SessionPool,
    BrowserInstance,
    ManagedPage,
    PageState,
    PoolState,
    PoolStatus,
)
from .navigation import NavigationDriver
from .retry import retry_async, backoff_delay
from .stealth import (
    STEALTH_SCRIPTS,
    build_stealth_script,
    install_stealth,
    install_resource_blocking,
    verify_stealth,
)

__all__ = [
    "SessionPool",
    "BrowserInstance",
    "ManagedPage",
    "PageState",
    "PoolState",
    "PoolStatus",
    "NavigationDriver",
    "retry_async",
    "backoff_delay",
    "STEALTH_SCRIPTS",
    "build_stealth_script",
    "install_stealth",
    "install_resource_blocking",
    "verify_stealth",
]
