"""
Base classes for output clients.
"""

from __future__ import annotations

import abc
import logging
import queue
import threading
import time
from typing import List, Optional

from ..core.config import OutputConfig
from ..core.metric import CollectedMetric

LOG = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class OutputClient(abc.ABC):
    """Contract for a sink that buffers metrics and relays them to a backend."""

    NAME: str = ""

    @property
    @abc.abstractmethod
    def running(self) -> bool:
        """True while the delivery loop is active."""

    @abc.abstractmethod
    def start(self) -> None:
        """Begin backend-specific delivery."""

    @abc.abstractmethod
    def try_add(self, metric: CollectedMetric) -> bool:
        """Offer ``metric`` to the buffer without blocking; False if it was rejected."""

    @abc.abstractmethod
    def dispose(self) -> None:
        """Stop delivery, flush what is left and release network resources."""

    def __enter__(self) -> "OutputClient":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.dispose()


class BufferedOutputClient(OutputClient):
    """Bounded queue drained by a background thread in batches.

    Subclasses implement :meth:`deliver` (raise to signal failure) and
    optionally :meth:`close_transport`.
    """

    def __init__(self, config: OutputConfig) -> None:
        self.config = config
        self._queue: "queue.Queue[CollectedMetric]" = queue.Queue(maxsize=config.buffer_size)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._disposed = False
        self.sent = 0
        self.failed = 0
        self._last_error: Optional[Exception] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending(self) -> int:
        """Number of metrics waiting in the buffer."""
        return self._queue.qsize()

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    def start(self) -> None:
        if self._thread is not None:
            return
        if self._disposed:
            raise RuntimeError("Output client has been disposed.")
        self._thread = threading.Thread(
            target=self._run, name=f"perf-relay-{self.NAME or 'output'}-sender", daemon=True
        )
        self._thread.start()
        LOG.info("[start] Output '%s' (%s) started", self.config.name, self.NAME)

    def try_add(self, metric: CollectedMetric) -> bool:
        if self._disposed:
            return False
        try:
            self._queue.put_nowait(metric)
        except queue.Full:
            return False
        return True

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
        else:
            self.close_transport()
        LOG.info(
            "[dispose] Output '%s' stopped (sent=%d failed=%d)", self.config.name, self.sent, self.failed
        )

    @abc.abstractmethod
    def deliver(self, batch: List[CollectedMetric]) -> None:
        """Transmit ``batch``; raise on failure so the batch is retried."""

    def close_transport(self) -> None:
        """Release network resources."""
        pass

    def _drain(self, batch: List[CollectedMetric], limit: int) -> None:
        while len(batch) < limit:
            try:
                batch.append(self._queue.get_nowait())
            except queue.Empty:
                return

    def _run(self) -> None:
        batch: List[CollectedMetric] = []
        attempts = 0
        last_flush = time.monotonic()
        try:
            while not self._stop_event.is_set():
                if len(batch) < self.config.batch_size:
                    try:
                        batch.append(self._queue.get(timeout=_POLL_INTERVAL))
                    except queue.Empty:
                        pass
                    self._drain(batch, self.config.batch_size)

                now = time.monotonic()
                due = (now - last_flush) >= self.config.flush_interval
                if not batch or not (due or len(batch) >= self.config.batch_size):
                    continue

                if self._send(batch):
                    batch = []
                    attempts = 0
                    last_flush = time.monotonic()
                    continue

                attempts += 1
                if attempts > self.config.max_retries:
                    self.failed += len(batch)
                    LOG.error(
                        "[deliver] Output '%s' dropped %d metrics after %d failed attempts",
                        self.config.name,
                        len(batch),
                        attempts,
                    )
                    batch = []
                    attempts = 0
                    last_flush = time.monotonic()
                self._stop_event.wait(self.config.retry_delay)
        finally:
            self._flush_remaining(batch)
            self.close_transport()

    def _send(self, batch: List[CollectedMetric]) -> bool:
        try:
            self.deliver(batch)
        except Exception as exc:
            self._last_error = exc
            LOG.warning(
                "[deliver] Output '%s' failed to send %d metrics: %s", self.config.name, len(batch), exc
            )
            return False
        self.sent += len(batch)
        return True

    def _flush_remaining(self, batch: List[CollectedMetric]) -> None:
        self._drain(batch, self.config.buffer_size + len(batch))
        while batch:
            chunk, batch = batch[: self.config.batch_size], batch[self.config.batch_size :]
            if not self._send(chunk):
                self.failed += len(chunk) + len(batch)
                LOG.error(
                    "[dispose] Output '%s' could not flush %d metrics on shutdown",
                    self.config.name,
                    len(chunk) + len(batch),
                )
                return
