"""
Periodic, single-flight collection cycle that relays watcher samples to an output client.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence

from .culture import INVARIANT_CULTURE, use_culture
from .metric import CollectedMetric
from .stats import RelayStats
from .timer import PeriodicTimer
from .watcher import Watcher

if TYPE_CHECKING:
    from ..output.base import OutputClient

LOG = logging.getLogger(__name__)

CYCLE_COUNTER_MAX = 0xFFFFFFFF


@dataclass
class CycleState:
    """Private state of one scheduler; only mutated while the guard is held."""

    culture: str = INVARIANT_CULTURE
    cycle: int = 0
    guard: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def running(self) -> bool:
        return self.guard.locked()

    @property
    def current_cycle(self) -> int:
        """Number of the cycle in progress (or about to run), as used in diagnostics."""
        return (self.cycle + 1) & CYCLE_COUNTER_MAX

    def advance(self) -> None:
        self.cycle = (self.cycle + 1) & CYCLE_COUNTER_MAX


class CollectionScheduler:
    """Query every watcher on a timer and hand the results to the output client.

    Overlapping ticks are dropped rather than queued; a watcher that raises is
    skipped for that cycle; a full output buffer drops the metric instead of
    blocking.
    """

    def __init__(
        self,
        watchers: Sequence[Watcher],
        output: "OutputClient",
        interval: float,
        culture: str = INVARIANT_CULTURE,
        stats: Optional[RelayStats] = None,
        max_workers: int = 2,
    ) -> None:
        if interval <= 0:
            raise ValueError("Collection interval must be greater than 0")
        self.watchers = watchers
        self.output = output
        self.interval = float(interval)
        self.state = CycleState(culture=culture)
        self.stats = stats or RelayStats()
        self._max_workers = max_workers
        self._timer: Optional[PeriodicTimer] = None

    @property
    def armed(self) -> bool:
        return self._timer is not None and self._timer.running

    def start(self) -> None:
        """Arm the timer, using the interval as both initial delay and period."""
        if self._timer is not None:
            return
        self._timer = PeriodicTimer(
            self.tick,
            due=self.interval,
            period=self.interval,
            max_workers=self._max_workers,
            name="perf-relay-collector",
        )
        self._timer.start()
        LOG.debug("[start] Collection armed every %.3fs", self.interval)

    def stop(self, wait: bool = True) -> None:
        """Dispose the timer; with ``wait`` an in-flight cycle is allowed to finish first."""
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.dispose(wait=wait)

    def tick(self) -> bool:
        """Run one cycle unless another one is already in progress.

        Returns:
            True if the cycle ran, False if the tick was dropped.
        """
        if not self.state.guard.acquire(blocking=False):
            self.stats.record_dropped_tick()
            LOG.debug(
                "[collect_metrics] (#%d) Previous cycle still running; tick dropped",
                self.state.current_cycle,
            )
            return False
        try:
            self._collect()
        finally:
            self.state.guard.release()
        return True

    def run_cycle(self) -> List[CollectedMetric]:
        """Run one cycle synchronously and return the metrics it collected.

        Unlike :meth:`tick` this waits for a running cycle to finish.
        """
        with self.state.guard:
            return self._collect()

    def _collect(self) -> List[CollectedMetric]:
        cycle = self.state.current_cycle
        with use_culture(self.state.culture):
            metrics = self._gather(cycle)
            self._forward(metrics, cycle)
        self.state.advance()
        self.stats.record_cycle()
        return metrics

    def _gather(self, cycle: int) -> List[CollectedMetric]:
        metrics: List[CollectedMetric] = []
        for watcher in self.watchers:
            reported: List[CollectedMetric] = []
            try:
                watcher.report(reported)
            except Exception as exc:
                self.stats.record_watcher_failure()
                LOG.warning(
                    "[collect_metrics] (#%d) Failed to report on counter watcher for path '%s'; "
                    "this report will be skipped for now: %s (cause: %s)",
                    cycle,
                    watcher.metric_path,
                    exc,
                    exc.__cause__,
                )
                continue
            metrics.extend(reported)
        self.stats.record_collected(len(metrics))
        return metrics

    def _forward(self, metrics: Sequence[CollectedMetric], cycle: int) -> None:
        for item in metrics:
            if self.output.try_add(item):
                self.stats.record_forwarded()
            else:
                self.stats.increment_buffer_overruns()
                LOG.warning(
                    "[collect_metrics] (#%d) Failed to relocate collected metric '%s' to buffer for "
                    "sending, buffer may be full; increase buffer_size in configuration",
                    cycle,
                    item.path,
                )
            LOG.debug("[collect_metrics] (#%d) item stringified: %s", cycle, item)
