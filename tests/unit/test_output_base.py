import threading
import time
from typing import List

import pytest

from perf_relay.core.config import OutputConfig
from perf_relay.core.metric import CollectedMetric
from perf_relay.exceptions import DeliveryError
from perf_relay.output.base import BufferedOutputClient


class RecordingClient(BufferedOutputClient):
    NAME = "recording"

    def __init__(self, config: OutputConfig, fail_times: int = 0):
        super().__init__(config)
        self.batches: List[List[CollectedMetric]] = []
        self.fail_times = fail_times
        self.attempts = 0
        self.closed = False
        self.delivered = threading.Event()

    def deliver(self, batch: List[CollectedMetric]) -> None:
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise DeliveryError("backend down")
        self.batches.append(list(batch))
        self.delivered.set()

    def close_transport(self) -> None:
        self.closed = True


def _config(**overrides) -> OutputConfig:
    values = dict(name="test", type="recording", buffer_size=10, batch_size=5, flush_interval=0.0)
    values.update(overrides)
    return OutputConfig(**values)


def _metric(i: int) -> CollectedMetric:
    return CollectedMetric(path=f"m.{i}", value=float(i), timestamp=1000.0 + i)


def test_try_add_rejects_when_buffer_full():
    """Test that try_add returns False once the buffer is full."""
    client = RecordingClient(_config(buffer_size=3))
    assert [client.try_add(_metric(i)) for i in range(4)] == [True, True, True, False]
    assert client.pending == 3


def test_try_add_does_not_block_when_full():
    """Test that a rejected try_add returns immediately."""
    client = RecordingClient(_config(buffer_size=1))
    client.try_add(_metric(0))
    start = time.monotonic()
    assert client.try_add(_metric(1)) is False
    assert time.monotonic() - start < 0.05


def test_delivery_loop_sends_batches():
    """Test that the sender thread delivers added metrics."""
    client = RecordingClient(_config())
    client.start()
    assert client.running
    for i in range(3):
        client.try_add(_metric(i))
    assert client.delivered.wait(timeout=5)
    client.dispose()

    sent = [m.path for batch in client.batches for m in batch]
    assert sent == ["m.0", "m.1", "m.2"]
    assert client.sent == 3
    assert not client.running
    assert client.closed


def test_batches_respect_batch_size():
    """Test that no delivered batch exceeds batch_size."""
    client = RecordingClient(_config(batch_size=2, flush_interval=60.0))
    for i in range(5):
        client.try_add(_metric(i))
    client.start()
    client.dispose()

    assert all(len(batch) <= 2 for batch in client.batches)
    assert sum(len(batch) for batch in client.batches) == 5


def test_dispose_flushes_remaining_metrics():
    """Test that metrics still buffered are sent on dispose."""
    client = RecordingClient(_config(flush_interval=60.0))
    client.start()
    client.try_add(_metric(1))
    client.dispose()

    assert [m.path for batch in client.batches for m in batch] == ["m.1"]
    assert client.try_add(_metric(2)) is False


def test_failed_delivery_is_retried():
    """Test that a failed batch is retried and then sent."""
    client = RecordingClient(_config(retry_delay=0.01, max_retries=3), fail_times=2)
    client.start()
    client.try_add(_metric(1))
    assert client.delivered.wait(timeout=5)
    client.dispose()

    assert client.attempts == 3
    assert client.sent == 1
    assert client.failed == 0
    assert isinstance(client.last_error, DeliveryError)


def test_batch_dropped_after_max_retries():
    """Test that a batch is dropped and counted after max_retries failures."""
    client = RecordingClient(_config(retry_delay=0.01, max_retries=1), fail_times=2)
    client.start()
    client.try_add(_metric(1))
    deadline = time.monotonic() + 5
    while client.failed == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    client.dispose()

    assert client.failed == 1
    assert client.sent == 0
    assert client.batches == []


def test_dispose_without_start_closes_transport():
    """Test that disposing an unstarted client still closes its transport."""
    client = RecordingClient(_config())
    client.dispose()
    assert client.closed
    assert not client.running
    with pytest.raises(RuntimeError):
        client.start()


def test_context_manager_starts_and_disposes():
    """Test the client as a context manager."""
    with RecordingClient(_config()) as client:
        assert client.running
    assert not client.running
