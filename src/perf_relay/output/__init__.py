"""Output clients and the factory that selects one from configuration."""

from typing import Callable, Dict

from ..core.config import OutputConfig, OutputSection
from ..exceptions import NoOutputConfiguredError, UnknownOutputTypeError
from .base import BufferedOutputClient, OutputClient
from .graphite import GraphiteClient
from .influxdb import InfluxDbClient

OutputFactory = Callable[[OutputConfig], OutputClient]

OUTPUT_TYPES: Dict[str, Callable[..., OutputClient]] = {
    GraphiteClient.NAME: GraphiteClient,
    InfluxDbClient.NAME: InfluxDbClient,
}


def create_output_client(config: OutputConfig) -> OutputClient:
    """Instantiate the client registered for ``config.type``.

    Raises:
        UnknownOutputTypeError: If no client handles the configured type.
    """
    client_cls = OUTPUT_TYPES.get(config.type)
    if client_cls is None:
        raise UnknownOutputTypeError(config.type, config.name)
    return client_cls(config)


def select_output_config(section: OutputSection) -> OutputConfig:
    """Return the backend entry named by ``section.default``."""
    config = section.find()
    if config is None:
        raise NoOutputConfiguredError(
            f"No output named '{section.default}' is configured, check the output section"
        )
    return config


__all__ = [
    "BufferedOutputClient",
    "GraphiteClient",
    "InfluxDbClient",
    "OUTPUT_TYPES",
    "OutputClient",
    "OutputFactory",
    "create_output_client",
    "select_output_config",
]
