from __future__ import annotations

import fnmatch
import logging
import re
import socket
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import psutil

from ..core.config import CounterConfig
from ..core.metric import CollectedMetric
from ..core.watcher import Watcher
from ..exceptions import WatcherInitializationError

LOG = logging.getLogger(__name__)

TOTAL_INSTANCE = "_total"

Snapshot = Dict[str, Dict[str, float]]

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]+")
_GLOB_CHARS = frozenset("*?[")
_CPU_GUEST_FIELDS = ("guest", "guest_nice")


def default_hostname() -> str:
    return socket.gethostname().split(".", 1)[0].lower() or "localhost"


def sanitize_instance(name: str) -> str:
    if name == TOTAL_INSTANCE:
        return name
    return _UNSAFE_RE.sub("_", name).strip("_") or "root"


def _read_cpu() -> Snapshot:
    snapshot: Snapshot = {TOTAL_INSTANCE: psutil.cpu_times()._asdict()}
    for index, times in enumerate(psutil.cpu_times(percpu=True)):
        snapshot[str(index)] = times._asdict()
    return snapshot


def _read_memory() -> Snapshot:
    return {TOTAL_INSTANCE: psutil.virtual_memory()._asdict()}


def _read_swap() -> Snapshot:
    return {TOTAL_INSTANCE: psutil.swap_memory()._asdict()}


def _read_disk() -> Snapshot:
    snapshot: Snapshot = {
        name: counters._asdict()
        for name, counters in (psutil.disk_io_counters(perdisk=True) or {}).items()
    }
    total = psutil.disk_io_counters()
    if total is not None:
        snapshot[TOTAL_INSTANCE] = total._asdict()
    return snapshot


def _read_network() -> Snapshot:
    snapshot: Snapshot = {
        name: counters._asdict()
        for name, counters in psutil.net_io_counters(pernic=True).items()
    }
    total = psutil.net_io_counters()
    if total is not None:
        snapshot[TOTAL_INSTANCE] = total._asdict()
    return snapshot


def _read_filesystem() -> Snapshot:
    snapshot: Snapshot = {}
    for partition in psutil.disk_partitions(all=False):
        try:
            snapshot[partition.mountpoint] = psutil.disk_usage(partition.mountpoint)._asdict()
        except OSError:
            # unmounted between listing and stat, or not readable
            continue
    return snapshot


def _read_load() -> Snapshot:
    load1, load5, load15 = psutil.getloadavg()
    return {TOTAL_INSTANCE: {"load1": load1, "load5": load5, "load15": load15}}


def _read_system() -> Snapshot:
    return {
        TOTAL_INSTANCE: {
            "uptime": time.time() - psutil.boot_time(),
            "processes": float(len(psutil.pids())),
        }
    }


@dataclass(frozen=True)
class CounterCategory:
    """A family of counters read together from one psutil call.

    ``mode`` is ``gauge`` (report as read), ``rate`` (per-second delta of a
    cumulative counter) or ``cpu`` (share of elapsed cpu time, in percent).
    """

    name: str
    counters: Tuple[str, ...]
    read: Callable[[], Snapshot]
    mode: str = "gauge"
    instanced: bool = False
    requires_instance: bool = False


CATEGORIES: Dict[str, CounterCategory] = {
    category.name: category
    for category in (
        CounterCategory(
            "cpu", ("percent", "user", "system", "idle", "iowait"), _read_cpu, mode="cpu", instanced=True
        ),
        CounterCategory("memory", ("total", "available", "used", "free", "percent"), _read_memory),
        CounterCategory("swap", ("total", "used", "free", "percent"), _read_swap),
        CounterCategory(
            "disk",
            ("read_bytes", "write_bytes", "read_count", "write_count", "read_time", "write_time"),
            _read_disk,
            mode="rate",
            instanced=True,
        ),
        CounterCategory(
            "network",
            (
                "bytes_sent",
                "bytes_recv",
                "packets_sent",
                "packets_recv",
                "errin",
                "errout",
                "dropin",
                "dropout",
            ),
            _read_network,
            mode="rate",
            instanced=True,
        ),
        CounterCategory(
            "filesystem",
            ("total", "used", "free", "percent"),
            _read_filesystem,
            instanced=True,
            requires_instance=True,
        ),
        CounterCategory("load", ("load1", "load5", "load15"), _read_load),
        CounterCategory("system", ("uptime", "processes"), _read_system),
    )
}


def _cpu_total(times: Dict[str, float]) -> float:
    # guest time is already accounted for in user/nice on Linux
    return sum(value for key, value in times.items() if key not in _CPU_GUEST_FIELDS)


class PsutilCounterWatcher(Watcher):
    """Sample one counter of one psutil category for one or more instances."""

    def __init__(self, config: CounterConfig, hostname: Optional[str] = None) -> None:
        super().__init__(config)
        self.hostname = hostname or default_hostname()
        self._category: Optional[CounterCategory] = None
        self._selector = TOTAL_INSTANCE
        self._wildcard = False
        self._instances: List[str] = []
        self._previous: Dict[str, Tuple[float, Dict[str, float]]] = {}
        self._clock: Callable[[], float] = time.monotonic

    @property
    def instances(self) -> List[str]:
        """Instances matched by the most recent initialization or report."""
        return list(self._instances)

    def paths(self) -> Dict[str, str]:
        """Map each resolved instance to the metric path it is reported under."""
        if self._category is None:
            return {}
        return {instance: self._render(instance) for instance in self._instances}

    def do_initialize(self) -> None:
        category = CATEGORIES.get(self.config.category)
        if category is None:
            raise WatcherInitializationError(
                f"Unknown counter category '{self.config.category}'; "
                f"expected one of: {', '.join(sorted(CATEGORIES))}"
            )
        if self.config.counter not in category.counters:
            raise WatcherInitializationError(
                f"Unknown counter '{self.config.counter}' for category '{category.name}'; "
                f"expected one of: {', '.join(category.counters)}"
            )

        selector = self.config.instance
        if not category.instanced:
            if selector not in (None, TOTAL_INSTANCE):
                raise WatcherInitializationError(f"Category '{category.name}' has no instances")
            selector = TOTAL_INSTANCE
        elif selector is None:
            if category.requires_instance:
                raise WatcherInitializationError(
                    f"Category '{category.name}' requires an instance (e.g. '*')"
                )
            selector = TOTAL_INSTANCE

        wildcard = any(char in _GLOB_CHARS for char in selector)
        if wildcard and "{instance}" not in self.config.template:
            raise WatcherInitializationError(
                f"Template '{self.config.template}' must contain '{{instance}}' to match '{selector}'"
            )

        self._category = category
        self._selector = selector
        self._wildcard = wildcard
        try:
            self._render(TOTAL_INSTANCE)
        except (KeyError, IndexError, ValueError) as exc:
            self._category = None
            raise WatcherInitializationError(
                f"Malformed template '{self.config.template}': {exc!r}"
            ) from exc

        try:
            snapshot = category.read()
        except psutil.AccessDenied as exc:
            self._category = None
            raise WatcherInitializationError(
                f"Permission denied reading category '{category.name}'"
            ) from exc

        if not wildcard and selector not in snapshot:
            self._category = None
            available = ", ".join(sorted(snapshot)) or "(none)"
            raise WatcherInitializationError(
                f"Instance '{selector}' not found for category '{category.name}'; available: {available}"
            )

        self._instances = self._match(snapshot)
        if category.mode != "gauge":
            now = self._clock()
            for instance in self._instances:
                self._previous[instance] = (now, snapshot[instance])
        LOG.debug(
            "Watcher %s resolved %d instance(s): %s",
            self.metric_path,
            len(self._instances),
            ", ".join(self._instances),
        )

    def report(self, buffer: List[CollectedMetric]) -> None:
        if self._category is None:
            raise RuntimeError("Watcher not initialized yet")
        timestamp = time.time()
        now = self._clock()
        snapshot = self._category.read()
        self._instances = self._match(snapshot)

        for instance in self._instances:
            value = self._value(instance, snapshot[instance], now)
            if value is None:
                continue
            buffer.append(CollectedMetric(path=self._render(instance), value=value, timestamp=timestamp))

        if self._wildcard:
            for stale in set(self._previous) - set(self._instances):
                del self._previous[stale]

    def do_dispose(self) -> None:
        self._previous.clear()
        self._instances = []
        self._category = None

    def _match(self, snapshot: Snapshot) -> List[str]:
        if self._wildcard:
            return sorted(
                name
                for name in snapshot
                if name != TOTAL_INSTANCE and fnmatch.fnmatchcase(name, self._selector)
            )
        if self._selector in snapshot:
            return [self._selector]
        LOG.debug("Watcher %s: instance '%s' is not present", self.metric_path, self._selector)
        return []

    def _render(self, instance: str) -> str:
        assert self._category is not None
        return self.config.template.format(
            host=self.hostname,
            category=self._category.name,
            counter=self.config.counter,
            instance=sanitize_instance(instance),
        )

    def _value(self, instance: str, raw: Dict[str, float], now: float) -> Optional[float]:
        assert self._category is not None
        counter = self.config.counter
        if self._category.mode == "gauge":
            value = raw.get(counter)
            return None if value is None else float(value)

        previous = self._previous.get(instance)
        self._previous[instance] = (now, raw)
        if previous is None:
            return None
        prev_time, prev_raw = previous

        if self._category.mode == "rate":
            elapsed = now - prev_time
            if elapsed <= 0:
                return None
            delta = raw.get(counter, 0) - prev_raw.get(counter, 0)
            if delta < 0:
                # counter wrapped or the device was reset
                return None
            return delta / elapsed

        total = _cpu_total(raw) - _cpu_total(prev_raw)
        if total <= 0:
            return None

        def delta_of(name: str) -> float:
            return max(0.0, raw.get(name, 0.0) - prev_raw.get(name, 0.0))

        if counter == "percent":
            busy = total - delta_of("idle") - delta_of("iowait")
            return min(100.0, max(0.0, busy / total * 100.0))
        return min(100.0, delta_of(counter) / total * 100.0)
