"""
`perf-relay` command line interface that runs the collection service.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import time
from pathlib import Path
from typing import List, Sequence

from ..core.config import RelayConfig, load_config
from ..core.culture import resolve_culture
from ..core.metric import CollectedMetric
from ..core.scheduler import CollectionScheduler
from ..core.watcher import Watcher
from ..exceptions import RelayError
from ..output import OUTPUT_TYPES, OutputClient, select_output_config
from ..service import RelayService
from ..watchers import PsutilCounterWatcher, create_watcher


LOG = logging.getLogger("perf_relay")

COMMANDS = ("run", "check", "sample")


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="perf-relay",
        description="Collect host performance counters and relay them to Graphite or InfluxDB.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("perf-relay.yaml"),
        help="YAML configuration file (default: ./perf-relay.yaml).",
    )
    parser.add_argument(
        "--log",
        type=str,
        default="INFO",
        help="Log level (DEBUG, INFO, WARNING, ERROR).",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=1.0,
        help="Seconds between the two samples taken by `sample` (rates need two readings).",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=COMMANDS,
        help="run: start the service (default); check: validate configuration; "
        "sample: print one collection cycle as JSON lines.",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class StdoutOutput(OutputClient):
    """Collects metrics in memory so `sample` can print them."""

    NAME = "stdout"

    def __init__(self) -> None:
        self.metrics: List[CollectedMetric] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True

    def try_add(self, metric: CollectedMetric) -> bool:
        self.metrics.append(metric)
        return True

    def dispose(self) -> None:
        self._running = False


def _initialize_watchers(config: RelayConfig) -> List[Watcher]:
    watchers: List[Watcher] = []
    for counter in config.counters:
        watcher = create_watcher(counter, config.hostname)
        try:
            watcher.initialize()
        except RelayError as exc:
            LOG.error("Watcher '%s' failed: %s", counter.template, exc)
            continue
        watchers.append(watcher)
    return watchers


def run(config_path: Path) -> int:
    service = RelayService(config_path=config_path)

    def _handle_signal(signum, frame) -> None:
        del frame
        LOG.info("Received signal %d, shutting down...", signum)
        service.stop()

    service.start()
    signal.signal(signal.SIGTERM, _handle_signal)
    try:
        service.wait()
    except KeyboardInterrupt:
        LOG.info("Shutting down...")
    finally:
        service.stop()
    return 0


def check(config: RelayConfig) -> int:
    ok = True
    try:
        resolve_culture(config.default_culture)
    except RelayError as exc:
        LOG.error("%s", exc)
        ok = False

    watchers = _initialize_watchers(config)
    ok = ok and len(watchers) == len(config.counters)
    for watcher in watchers:
        paths = watcher.paths() if isinstance(watcher, PsutilCounterWatcher) else {}
        if not paths:
            print(f"{watcher.metric_path}: (no instances)")
        for instance, path in paths.items():
            print(f"{path}: {instance}")
        watcher.dispose()

    try:
        output = select_output_config(config.output)
        if output.type not in OUTPUT_TYPES:
            LOG.error("Output '%s' has unsupported type '%s'", output.name, output.type)
            ok = False
        else:
            print(f"output: {output.name} ({output.type})")
    except RelayError as exc:
        LOG.error("%s", exc)
        ok = False
    return 0 if ok else 1


def sample(config: RelayConfig, wait: float) -> int:
    watchers = _initialize_watchers(config)
    sink = StdoutOutput()
    scheduler = CollectionScheduler(
        watchers,
        sink,
        interval=config.collection_interval,
        culture=resolve_culture(config.default_culture),
    )
    sink.start()
    try:
        # first cycle only primes rate counters
        scheduler.run_cycle()
        sink.metrics.clear()
        time.sleep(max(0.0, wait))
        scheduler.run_cycle()
    finally:
        sink.dispose()
        for watcher in watchers:
            watcher.dispose()
    for metric in sink.metrics:
        print(
            json.dumps(
                {"path": metric.path, "value": metric.value, "timestamp": metric.timestamp},
                separators=(",", ":"),
            )
        )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log)

    try:
        if args.command == "run":
            return run(args.config)
        config = load_config(args.config)
        if args.command == "check":
            return check(config)
        return sample(config, args.wait)
    except RelayError as exc:
        LOG.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
