from perf_relay.core.config import CounterConfig, GraphiteOutputConfig, OutputSection, RelayConfig
from perf_relay.service import RelayService

# Configure collection
config = RelayConfig(
    output=OutputSection(
        default="carbon",
        backends=[GraphiteOutputConfig(name="carbon", type="graphite", host="localhost", port=2003)],
    ),
    counters=[
        CounterConfig(template="{host}.cpu.{instance}.percent", category="cpu", counter="percent", instance="*"),
        CounterConfig(template="{host}.memory.percent", category="memory", counter="percent"),
    ],
).with_interval("5s")

# Relay for one minute
with RelayService(config) as service:
    service.wait(timeout=60)
    print(service.stats.snapshot())
