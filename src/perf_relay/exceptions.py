"""Custom exceptions used by perf_relay."""


class RelayError(RuntimeError):
    """Base class for relay service errors."""


class ConfigurationError(RelayError, ValueError):
    """Raised when the relay configuration is structurally invalid."""


class ConfigurationMissingError(RelayError):
    """Raised when no configuration could be found at startup."""


class UnknownCultureError(RelayError):
    """Raised when the configured default culture is not a known locale."""


class NoOutputConfiguredError(RelayError):
    """Raised when the default output does not match any configured backend."""


class UnknownOutputTypeError(RelayError):
    """Raised when an output backend declares a type with no client implementation."""

    def __init__(self, output_type: str, name: str = "") -> None:
        self.output_type = output_type
        self.name = name
        label = f" for output '{name}'" if name else ""
        super().__init__(f"Unknown output type '{output_type}'{label}")


class WatcherInitializationError(RelayError):
    """Raised when a watcher fails to resolve its counter subscriptions."""


class DeliveryError(RelayError):
    """Raised by output clients when a batch could not be transmitted."""
