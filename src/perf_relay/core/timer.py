from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

LOG = logging.getLogger(__name__)


class PeriodicTimer:
    """Fire ``callback`` on a worker pool at a fixed rate.

    The first call happens ``due`` seconds after :meth:`start`, then every
    ``period`` seconds. Each tick is submitted to a pool of ``max_workers``
    threads, so a callback that outlives its period overlaps with the next tick
    instead of delaying it. Callers that need single-flight semantics must
    guard the callback themselves.
    """

    def __init__(
        self,
        callback: Callable[[], object],
        due: float,
        period: float,
        max_workers: int = 2,
        name: str = "perf-relay-timer",
    ) -> None:
        if period <= 0:
            raise ValueError("Timer period must be positive")
        self._callback = callback
        self.due = max(0.0, float(due))
        self.period = float(period)
        self.name = name
        self._max_workers = max(1, int(max_workers))
        self._stop_event = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Timer already started.")
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix=f"{self.name}-worker"
        )
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def dispose(self, wait: bool = True) -> None:
        """Stop issuing ticks.

        Args:
            wait: Block until callbacks already running have returned. Ticks
                queued but not yet started are cancelled.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=True)

    def _invoke(self) -> None:
        try:
            self._callback()
        except Exception:
            LOG.exception("Timer %s callback failed", self.name)

    def _run(self) -> None:
        deadline = time.monotonic() + self.due
        while not self._stop_event.wait(max(0.0, deadline - time.monotonic())):
            try:
                self._executor.submit(self._invoke)
            except RuntimeError:
                # executor shut down underneath us
                break
            deadline += self.period
            now = time.monotonic()
            if deadline < now - self.period:
                LOG.debug("Timer %s fell behind by %.3fs, skipping missed ticks", self.name, now - deadline)
                deadline = now
