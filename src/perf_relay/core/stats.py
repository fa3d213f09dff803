import threading
from dataclasses import dataclass, field


@dataclass
class RelayStats:
    """Counters describing what the collection scheduler has done so far."""

    cycles_completed: int = 0
    ticks_dropped: int = 0
    watcher_failures: int = 0
    metrics_collected: int = 0
    metrics_forwarded: int = 0
    buffer_overruns: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_cycle(self) -> None:
        """Record one executed collection cycle."""
        self.cycles_completed += 1

    def record_dropped_tick(self) -> None:
        """Record a tick skipped because a cycle was already running.

        This is the only counter touched outside the scheduler guard.
        """
        with self._lock:
            self.ticks_dropped += 1

    def record_watcher_failure(self) -> None:
        self.watcher_failures += 1

    def record_collected(self, count: int) -> None:
        self.metrics_collected += count

    def record_forwarded(self) -> None:
        self.metrics_forwarded += 1

    def increment_buffer_overruns(self) -> None:
        self.buffer_overruns += 1

    def snapshot(self) -> dict:
        """Return a plain dict copy of the counters."""
        return {
            "cycles_completed": self.cycles_completed,
            "ticks_dropped": self.ticks_dropped,
            "watcher_failures": self.watcher_failures,
            "metrics_collected": self.metrics_collected,
            "metrics_forwarded": self.metrics_forwarded,
            "buffer_overruns": self.buffer_overruns,
        }
