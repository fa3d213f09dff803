import threading

from perf_relay.core.metric import CollectedMetric
from perf_relay.core.stats import RelayStats


def test_relay_stats_initialization():
    """Test that RelayStats starts with every counter at zero."""
    stats = RelayStats()
    assert set(stats.snapshot().values()) == {0}


def test_record_counters():
    """Test that each recorder bumps its own counter."""
    stats = RelayStats()
    stats.record_cycle()
    stats.record_collected(4)
    stats.record_forwarded()
    stats.increment_buffer_overruns()
    stats.record_watcher_failure()
    stats.record_dropped_tick()
    assert stats.snapshot() == {
        "cycles_completed": 1,
        "ticks_dropped": 1,
        "watcher_failures": 1,
        "metrics_collected": 4,
        "metrics_forwarded": 1,
        "buffer_overruns": 1,
    }


def test_dropped_ticks_from_many_threads():
    """Test that concurrent dropped ticks are all counted."""
    stats = RelayStats()

    def drop():
        for _ in range(1000):
            stats.record_dropped_tick()

    threads = [threading.Thread(target=drop) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert stats.ticks_dropped == 4000


def test_collected_metric_string_form():
    """Test the plaintext rendering used in debug logs."""
    metric = CollectedMetric(path="web01.cpu.percent", value=12.5, timestamp=1700000000.9)
    assert str(metric) == "web01.cpu.percent 12.5 1700000000"
    assert metric.is_finite
    assert not CollectedMetric(path="x", value=float("nan")).is_finite


def test_collected_metric_now_coerces_value():
    """Test that now() stamps the current time and converts to float."""
    metric = CollectedMetric.now("x", 3)
    assert metric.value == 3.0
    assert isinstance(metric.value, float)
    assert metric.timestamp > 0
