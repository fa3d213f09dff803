import logging
import threading
from typing import List
from unittest.mock import MagicMock

import pytest

from perf_relay.core.config import CounterConfig
from perf_relay.core.culture import current_culture
from perf_relay.core.metric import CollectedMetric
from perf_relay.core.scheduler import CYCLE_COUNTER_MAX, CollectionScheduler
from perf_relay.core.watcher import Watcher


class StubWatcher(Watcher):
    def __init__(self, path: str, values=(1.0,), fail: bool = False):
        super().__init__(CounterConfig(template=path, category="stub", counter="value"))
        self.values = list(values)
        self.fail = fail
        self.calls = 0
        self.seen_cultures: List[str] = []

    def do_initialize(self) -> None:
        pass

    def report(self, buffer: List[CollectedMetric]) -> None:
        self.calls += 1
        self.seen_cultures.append(current_culture())
        for value in self.values:
            buffer.append(CollectedMetric(path=self.metric_path, value=value, timestamp=1000.0))
        if self.fail:
            raise RuntimeError("counter vanished")


class BlockingWatcher(StubWatcher):
    def __init__(self, path: str):
        super().__init__(path)
        self.entered = threading.Event()
        self.release = threading.Event()

    def report(self, buffer: List[CollectedMetric]) -> None:
        self.entered.set()
        self.release.wait(timeout=5)
        super().report(buffer)


def make_output(accept=True):
    output = MagicMock()
    output.try_add.return_value = accept
    return output


def test_cycle_forwards_metrics_in_watcher_order():
    """Test that metrics are forwarded in watcher then append order."""
    first = StubWatcher("a", values=(1.0, 2.0))
    second = StubWatcher("b", values=(3.0,))
    output = make_output()
    scheduler = CollectionScheduler([first, second], output, interval=1.0)

    assert scheduler.tick() is True

    forwarded = [call.args[0] for call in output.try_add.call_args_list]
    assert [(m.path, m.value) for m in forwarded] == [("a", 1.0), ("a", 2.0), ("b", 3.0)]
    assert scheduler.state.cycle == 1
    assert scheduler.stats.metrics_forwarded == 3


def test_failing_watcher_is_isolated(caplog):
    """Test that a raising watcher contributes nothing and others still report."""
    healthy_before = StubWatcher("before")
    broken = StubWatcher("broken", values=(9.0,), fail=True)
    healthy_after = StubWatcher("after")
    output = make_output()
    scheduler = CollectionScheduler([healthy_before, broken, healthy_after], output, interval=1.0)

    with caplog.at_level(logging.WARNING):
        scheduler.tick()

    paths = [call.args[0].path for call in output.try_add.call_args_list]
    # partial output from the failing watcher is discarded
    assert paths == ["before", "after"]
    assert healthy_after.calls == 1
    assert scheduler.stats.watcher_failures == 1
    assert "broken" in caplog.text
    assert "(#1)" in caplog.text


def test_rejected_metrics_produce_one_warning_each(caplog):
    """Test one backpressure warning per rejected metric."""
    watcher = StubWatcher("a", values=(1.0, 2.0, 3.0))
    output = MagicMock()
    output.try_add.side_effect = [True, False, True]
    scheduler = CollectionScheduler([watcher], output, interval=1.0)

    with caplog.at_level(logging.WARNING):
        scheduler.tick()

    warnings = [r for r in caplog.records if "buffer may be full" in r.getMessage()]
    assert len(warnings) == 1
    assert output.try_add.call_count == 3
    assert scheduler.stats.metrics_forwarded == 2
    assert scheduler.stats.buffer_overruns == 1
    assert scheduler.stats.metrics_forwarded + scheduler.stats.buffer_overruns == 3


def test_overlapping_tick_is_dropped():
    """Test that a tick during a running cycle is dropped without calling watchers."""
    blocker = BlockingWatcher("slow")
    other = StubWatcher("other")
    output = make_output()
    scheduler = CollectionScheduler([blocker, other], output, interval=1.0)

    worker = threading.Thread(target=scheduler.tick)
    worker.start()
    assert blocker.entered.wait(timeout=5)
    assert scheduler.state.running

    assert scheduler.tick() is False
    assert scheduler.state.cycle == 0
    assert other.calls == 0
    assert scheduler.stats.ticks_dropped == 1

    blocker.release.set()
    worker.join(timeout=5)
    assert scheduler.state.cycle == 1
    assert other.calls == 1
    assert not scheduler.state.running


def test_cycle_counter_wraps():
    """Test that the cycle counter wraps at its maximum."""
    scheduler = CollectionScheduler([StubWatcher("a")], make_output(), interval=1.0)
    scheduler.state.cycle = CYCLE_COUNTER_MAX

    assert scheduler.tick() is True
    assert scheduler.state.cycle == 0
    assert scheduler.tick() is True
    assert scheduler.state.cycle == 1


def test_culture_is_restored_for_each_cycle():
    """Test that watchers see the configured culture only inside the cycle."""
    watcher = StubWatcher("a")
    scheduler = CollectionScheduler([watcher], make_output(), interval=1.0, culture="de_DE")

    worker = threading.Thread(target=scheduler.tick)
    worker.start()
    worker.join()
    scheduler.tick()

    assert watcher.seen_cultures == ["de_DE", "de_DE"]
    assert current_culture() == ""


def test_run_cycle_returns_collected_metrics():
    """Test the synchronous run_cycle entry point."""
    scheduler = CollectionScheduler([StubWatcher("a", values=(5.0,))], make_output(False), interval=1.0)
    metrics = scheduler.run_cycle()
    assert [m.value for m in metrics] == [5.0]
    assert scheduler.stats.cycles_completed == 1


def test_no_watchers_still_counts_cycles():
    """Test that an empty watcher set still completes cycles."""
    output = make_output()
    scheduler = CollectionScheduler([], output, interval=1.0)
    scheduler.tick()
    scheduler.tick()
    assert scheduler.state.cycle == 2
    output.try_add.assert_not_called()


def test_interval_must_be_positive():
    """Test that a non-positive interval is rejected."""
    with pytest.raises(ValueError):
        CollectionScheduler([], make_output(), interval=0)


def test_start_and_stop_timer():
    """Test arming and disarming the scheduler timer."""
    watcher = StubWatcher("a")
    scheduler = CollectionScheduler([watcher], make_output(), interval=0.02)
    scheduler.start()
    assert scheduler.armed
    deadline = threading.Event()
    deadline.wait(0.15)
    scheduler.stop()
    assert not scheduler.armed
    calls = watcher.calls
    assert calls >= 1
    deadline.wait(0.1)
    assert watcher.calls == calls
