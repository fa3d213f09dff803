from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Type, Union

import yaml

from ..exceptions import ConfigurationError, ConfigurationMissingError

LOG = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^\s*(?P<amount>\d+(?:\.\d+)?)\s*(?P<unit>ms|s|m|h)?\s*$", re.IGNORECASE)
_TIMESPAN_RE = re.compile(r"^\s*(?P<h>\d+):(?P<m>\d{1,2}):(?P<s>\d{1,2}(?:\.\d+)?)\s*$")
_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[int, float, str]) -> float:
    """Convert a configured duration to seconds.

    Accepts plain numbers (seconds), suffixed strings ("500ms", "10s", "1m", "2h")
    and ``HH:MM:SS`` timespans.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value)
    match = _TIMESPAN_RE.match(text)
    if match:
        return int(match["h"]) * 3600.0 + int(match["m"]) * 60.0 + float(match["s"])
    match = _DURATION_RE.match(text)
    if match:
        unit = (match["unit"] or "s").lower()
        return float(match["amount"]) * _UNIT_SECONDS[unit]
    raise ConfigurationError(f"Invalid duration: {value!r}")


def _normalize_key(key: str) -> str:
    return _CAMEL_RE.sub("_", str(key)).replace("-", "_").lower()


def _normalize(data: Mapping[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Expected a mapping, got {type(data).__name__}")
    return {_normalize_key(key): value for key, value in data.items()}


@dataclass
class CounterConfig:
    """One watch template: which counter to sample and how to name it."""

    template: str
    category: str
    counter: str
    instance: Optional[str] = None

    def __post_init__(self) -> None:
        for name in ("template", "category", "counter"):
            if not getattr(self, name):
                raise ConfigurationError(f"Counter entry is missing '{name}'")
        self.category = str(self.category).lower()
        self.counter = str(self.counter).lower()
        if self.instance is not None:
            self.instance = str(self.instance)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CounterConfig":
        values = _normalize(data)
        if "path" in values and "template" not in values:
            values["template"] = values.pop("path")
        return _build(cls, values, "counter")


@dataclass
class OutputConfig:
    """Settings shared by all output backends."""

    name: str
    type: str
    buffer_size: int = 10000
    batch_size: int = 500
    flush_interval: float = 1.0
    max_retries: int = 3
    retry_delay: float = 1.0
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("Output entry is missing 'name'")
        if not self.type:
            raise ConfigurationError(f"Output '{self.name}' is missing 'type'")
        self.type = str(self.type).lower()
        self.buffer_size = int(self.buffer_size)
        self.batch_size = int(self.batch_size)
        self.flush_interval = parse_duration(self.flush_interval)
        self.retry_delay = parse_duration(self.retry_delay)
        self.max_retries = int(self.max_retries)
        if self.buffer_size <= 0:
            raise ConfigurationError(f"Output '{self.name}': buffer_size must be positive")
        if self.batch_size <= 0:
            raise ConfigurationError(f"Output '{self.name}': batch_size must be positive")
        if self.flush_interval < 0 or self.retry_delay < 0:
            raise ConfigurationError(f"Output '{self.name}': intervals must not be negative")
        if self.max_retries < 0:
            raise ConfigurationError(f"Output '{self.name}': max_retries must not be negative")


@dataclass
class GraphiteOutputConfig(OutputConfig):
    """Carbon plaintext protocol over TCP or UDP."""

    flush_interval: float = 0.0
    host: str = "localhost"
    port: int = 2003
    protocol: str = "tcp"
    timeout: float = 5.0

    def __post_init__(self) -> None:
        super().__post_init__()
        self.port = int(self.port)
        self.timeout = parse_duration(self.timeout)
        self.protocol = str(self.protocol).lower()
        if self.protocol not in ("tcp", "udp"):
            raise ConfigurationError(f"Output '{self.name}': protocol must be 'tcp' or 'udp'")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Output '{self.name}': invalid port {self.port}")


@dataclass
class InfluxDbOutputConfig(OutputConfig):
    """InfluxDB line protocol posted over HTTP."""

    flush_interval: float = 5.0
    url: str = "http://localhost:8086"
    database: str = "perf_relay"
    precision: str = "s"
    retention_policy: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)
    timeout: float = 10.0

    def __post_init__(self) -> None:
        super().__post_init__()
        self.timeout = parse_duration(self.timeout)
        self.precision = str(self.precision).lower()
        if self.precision not in ("s", "ms", "u", "ns"):
            raise ConfigurationError(
                f"Output '{self.name}': precision must be one of 's', 'ms', 'u', 'ns'"
            )
        if not self.database:
            raise ConfigurationError(f"Output '{self.name}': database is required")
        self.tags = {str(key): str(value) for key, value in (self.tags or {}).items()}


OUTPUT_CONFIG_TYPES: Dict[str, Type[OutputConfig]] = {
    "graphite": GraphiteOutputConfig,
    "influxdb": InfluxDbOutputConfig,
}


def parse_output_config(data: Mapping[str, Any]) -> OutputConfig:
    """Build the typed config for one backend entry.

    Entries with an unrecognised type are kept as plain ``OutputConfig`` with all
    extra keys in ``options``; selecting one of them is rejected later by the
    output factory.
    """
    values = _normalize(data)
    output_type = str(values.get("type", "")).lower()
    config_cls = OUTPUT_CONFIG_TYPES.get(output_type)
    if config_cls is None:
        known = {f.name for f in dataclasses.fields(OutputConfig)}
        options = {key: values.pop(key) for key in list(values) if key not in known}
        values.setdefault("options", {}).update(options)
        return _build(OutputConfig, values, "output")
    return _build(config_cls, values, f"{output_type} output")


@dataclass
class OutputSection:
    default: str
    backends: List[OutputConfig] = field(default_factory=list)

    def find(self, name: Optional[str] = None) -> Optional[OutputConfig]:
        target = self.default if name is None else name
        for backend in self.backends:
            if backend.name == target:
                return backend
        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OutputSection":
        values = _normalize(data)
        default = values.pop("default_output", None) or values.pop("default", None)
        raw_backends = values.pop("backends", None)
        if raw_backends is None:
            raw_backends = values.pop("outputs", [])
        if isinstance(raw_backends, Mapping):
            raw_backends = [dict(entry, name=name) for name, entry in raw_backends.items()]
        if not isinstance(raw_backends, list):
            raise ConfigurationError("'output.backends' must be a list or mapping")
        if values:
            raise ConfigurationError(f"Unknown output option(s): {', '.join(sorted(values))}")
        return cls(
            default=str(default or ""),
            backends=[parse_output_config(entry) for entry in raw_backends],
        )


@dataclass
class RelayConfig:
    """Top level configuration for the relay service."""

    output: OutputSection
    counters: List[CounterConfig] = field(default_factory=list)
    default_culture: str = "en-US"
    collection_interval: float = 10.0
    hostname: Optional[str] = None

    def __post_init__(self) -> None:
        self.collection_interval = parse_duration(self.collection_interval)
        if self.collection_interval <= 0:
            raise ConfigurationError("collection_interval must be greater than 0")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RelayConfig":
        values = _normalize(data)
        if "output" not in values:
            raise ConfigurationError("Configuration is missing the 'output' section")
        values["output"] = OutputSection.from_dict(values["output"])
        counters = values.get("counters") or []
        if not isinstance(counters, list):
            raise ConfigurationError("'counters' must be a list")
        values["counters"] = [CounterConfig.from_dict(entry) for entry in counters]
        return _build(cls, values, "relay")

    def with_interval(self, seconds: float) -> "RelayConfig":
        """Override the collection interval.

        Args:
            seconds: Interval between collection cycles

        Returns:
            Self for method chaining
        """
        self.collection_interval = parse_duration(seconds)
        return self

    def with_default_output(self, name: str) -> "RelayConfig":
        """Override which configured backend is used."""
        self.output.default = name
        return self


def _build(cls: Type[Any], values: Dict[str, Any], label: str) -> Any:
    known = {f.name for f in dataclasses.fields(cls) if f.init}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown {label} option(s): {', '.join(unknown)}")
    try:
        return cls(**values)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid {label} configuration: {exc}") from exc
    except ValueError as exc:
        if isinstance(exc, ConfigurationError):
            raise
        raise ConfigurationError(f"Invalid {label} configuration: {exc}") from exc


def load_config(path: Union[str, PathLike[str]]) -> RelayConfig:
    """Load a :class:`RelayConfig` from a YAML file.

    Raises:
        ConfigurationMissingError: If the file does not exist or is empty.
        ConfigurationError: If the YAML cannot be parsed or is structurally invalid.
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigurationMissingError(f"Configuration file not found: {config_path}")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Unable to parse {config_path}: {exc}") from exc
    if not data:
        raise ConfigurationMissingError(f"Configuration file is empty: {config_path}")
    LOG.debug("Loaded configuration from %s", config_path)
    return RelayConfig.from_dict(data)
