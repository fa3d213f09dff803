"""
Lifecycle controller that wires watchers, the output client and the collection scheduler.
"""

from __future__ import annotations

import logging
import threading
from os import PathLike
from typing import List, Optional, Union

from .core.config import RelayConfig, load_config
from .core.culture import resolve_culture
from .core.scheduler import CollectionScheduler
from .core.stats import RelayStats
from .core.watcher import Watcher
from .exceptions import ConfigurationMissingError, RelayError, UnknownCultureError
from .output import OutputClient, OutputFactory, create_output_client, select_output_config
from .watchers import WatcherFactory, create_watcher

LOG = logging.getLogger(__name__)


class RelayService:
    """Collect performance counters on an interval and relay them to one output backend.

    Example:
        >>> with RelayService(config_path="relay.yaml") as service:
        ...     service.wait()
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        config_path: Optional[Union[str, PathLike[str]]] = None,
        watcher_factory: WatcherFactory = create_watcher,
        output_factory: OutputFactory = create_output_client,
    ) -> None:
        self._config = config
        self._config_path = config_path
        self._watcher_factory = watcher_factory
        self._output_factory = output_factory
        self._lock = threading.RLock()
        self._started = False
        self._stopped = threading.Event()
        self.config: Optional[RelayConfig] = None
        self.watchers: List[Watcher] = []
        self.output: Optional[OutputClient] = None
        self.scheduler: Optional[CollectionScheduler] = None
        self.stats = RelayStats()

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Load configuration, build watchers and the output client, then arm collection.

        Raises:
            ConfigurationMissingError: No configuration could be loaded.
            UnknownCultureError: ``default_culture`` is not a known locale.
            NoOutputConfiguredError: ``output.default`` matches no backend.
            UnknownOutputTypeError: The selected backend has an unsupported type.
        """
        with self._lock:
            if self._started:
                return

            config = self._load_config()
            try:
                culture = resolve_culture(config.default_culture)
            except UnknownCultureError as exc:
                LOG.critical("[start] Unable to find culture in configuration: %s", exc)
                raise

            watchers = self._build_watchers(config)
            try:
                output = self._output_factory(select_output_config(config.output))
                output.start()
            except RelayError as exc:
                LOG.critical("[start] %s; this service cannot start", exc)
                _dispose_all(watchers)
                raise

            scheduler = CollectionScheduler(
                watchers,
                output,
                interval=config.collection_interval,
                culture=culture,
                stats=self.stats,
            )
            scheduler.start()

            self.config = config
            self.watchers = watchers
            self.output = output
            self.scheduler = scheduler
            self._stopped.clear()
            self._started = True
            LOG.info(
                "[start] Relay service loaded %d watchers, relaying to '%s' every %.3fs",
                len(watchers),
                config.output.default,
                config.collection_interval,
            )

    def stop(self) -> None:
        """Dispose the timer, then the output client, then every watcher."""
        with self._lock:
            if not self._started:
                return
            self._started = False

            if self.scheduler is not None:
                self.scheduler.stop(wait=True)
                self.scheduler = None
            if self.output is not None:
                self.output.dispose()
            _dispose_all(self.watchers)
            self.watchers.clear()
            self._stopped.set()
            LOG.info("[stop] Relay service stopped (%s)", self.stats.snapshot())

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until :meth:`stop` is called from another thread."""
        return self._stopped.wait(timeout)

    def __enter__(self) -> "RelayService":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()

    def _load_config(self) -> RelayConfig:
        if self._config is not None:
            return self._config
        if self._config_path is None:
            LOG.critical("[start] Relay configuration is missing. This service cannot start")
            raise ConfigurationMissingError("Relay configuration is missing. This service cannot start")
        try:
            return load_config(self._config_path)
        except ConfigurationMissingError:
            LOG.critical("[start] Relay configuration %s is missing. This service cannot start", self._config_path)
            raise

    def _build_watchers(self, config: RelayConfig) -> List[Watcher]:
        watchers: List[Watcher] = []
        for counter in config.counters:
            watcher = self._watcher_factory(counter, config.hostname)
            try:
                watcher.initialize()
            except Exception as exc:
                LOG.error(
                    "[start] Failed to initialize performance counter watcher for path '%s'; "
                    "this configuration element will be skipped: %s (cause: %s)",
                    counter.template,
                    exc,
                    exc.__cause__,
                )
                continue
            watchers.append(watcher)
        return watchers


def _dispose_all(watchers: List[Watcher]) -> None:
    for watcher in watchers:
        try:
            watcher.dispose()
        except Exception:
            LOG.exception("[stop] Failed to dispose watcher for path '%s'", watcher.metric_path)
