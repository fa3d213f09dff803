"""
perf-relay: host performance counter relay

Periodically samples host performance counters described by configuration
templates and relays them to Graphite (carbon plaintext) or InfluxDB (HTTP line
protocol), buffering through a bounded queue so a slow backend never stalls
collection.
"""

from perf_relay.core.config import (
    CounterConfig,
    GraphiteOutputConfig,
    InfluxDbOutputConfig,
    OutputConfig,
    RelayConfig,
    load_config,
)
from perf_relay.core.metric import CollectedMetric
from perf_relay.core.scheduler import CollectionScheduler
from perf_relay.core.watcher import Watcher
from perf_relay.output import OutputClient, create_output_client
from perf_relay.service import RelayService

__version__ = "0.1.0"

__all__ = [
    "CollectedMetric",
    "CollectionScheduler",
    "CounterConfig",
    "GraphiteOutputConfig",
    "InfluxDbOutputConfig",
    "OutputClient",
    "OutputConfig",
    "RelayConfig",
    "RelayService",
    "Watcher",
    "create_output_client",
    "load_config",
    "__version__",
]
