"""Available watcher implementations."""

from typing import Callable, Optional

from ..core.config import CounterConfig
from ..core.watcher import Watcher
from .psutil_counters import (
    CATEGORIES,
    TOTAL_INSTANCE,
    CounterCategory,
    PsutilCounterWatcher,
    default_hostname,
    sanitize_instance,
)

WatcherFactory = Callable[[CounterConfig, Optional[str]], Watcher]


def create_watcher(config: CounterConfig, hostname: Optional[str] = None) -> Watcher:
    """Build the watcher for one counter entry; call ``initialize()`` before use."""
    return PsutilCounterWatcher(config, hostname=hostname)


__all__ = [
    "CATEGORIES",
    "TOTAL_INSTANCE",
    "CounterCategory",
    "PsutilCounterWatcher",
    "Watcher",
    "WatcherFactory",
    "create_watcher",
    "default_hostname",
    "sanitize_instance",
]
