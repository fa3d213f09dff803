from .config import (
    CounterConfig,
    GraphiteOutputConfig,
    InfluxDbOutputConfig,
    OutputConfig,
    OutputSection,
    RelayConfig,
    load_config,
    parse_duration,
)
from .culture import current_culture, resolve_culture, use_culture
from .metric import CollectedMetric
from .scheduler import CYCLE_COUNTER_MAX, CollectionScheduler, CycleState
from .stats import RelayStats
from .timer import PeriodicTimer
from .watcher import Watcher

__all__ = [
    "CYCLE_COUNTER_MAX",
    "CollectedMetric",
    "CollectionScheduler",
    "CounterConfig",
    "CycleState",
    "GraphiteOutputConfig",
    "InfluxDbOutputConfig",
    "OutputConfig",
    "OutputSection",
    "PeriodicTimer",
    "RelayConfig",
    "RelayStats",
    "Watcher",
    "current_culture",
    "load_config",
    "parse_duration",
    "resolve_culture",
    "use_culture",
]
