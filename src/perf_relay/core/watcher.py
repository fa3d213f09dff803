"""
Base class for counter watchers.
"""

from __future__ import annotations

import abc
import logging
from typing import List

from ..exceptions import WatcherInitializationError
from .config import CounterConfig
from .metric import CollectedMetric

LOG = logging.getLogger(__name__)


class Watcher(abc.ABC):
    """Contract for a source that turns one counter template into metric samples."""

    def __init__(self, config: CounterConfig) -> None:
        self.config = config
        self._initialized = False

    @property
    def metric_path(self) -> str:
        """Template path used to identify this watcher in diagnostics."""
        return self.config.template

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        if self._initialized:
            return
        try:
            self.do_initialize()
        except WatcherInitializationError:
            raise
        except Exception as exc:
            raise WatcherInitializationError(
                f"Failed to initialize watcher for '{self.metric_path}': {exc}"
            ) from exc
        self._initialized = True
        LOG.debug("Watcher %s initialized", self.metric_path)

    def dispose(self) -> None:
        try:
            self.do_dispose()
        finally:
            self._initialized = False

    @abc.abstractmethod
    def do_initialize(self) -> None:
        """Resolve the configured template into live subscriptions."""

    @abc.abstractmethod
    def report(self, buffer: List[CollectedMetric]) -> None:
        """Sample current values and append them to ``buffer``."""

    def do_dispose(self) -> None:
        """Release subscription state."""
        pass
