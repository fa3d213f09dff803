from __future__ import annotations

import logging
import re
import socket
from typing import Iterable, Iterator, List, Optional

from ..core.config import GraphiteOutputConfig
from ..core.metric import CollectedMetric
from ..exceptions import DeliveryError
from .base import BufferedOutputClient

LOG = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

MAX_DATAGRAM_BYTES = 1400


def sanitize_path(path: str) -> str:
    return _WHITESPACE_RE.sub("_", path.strip())


def encode_plaintext(metrics: Iterable[CollectedMetric]) -> List[bytes]:
    """Encode metrics as carbon plaintext lines (``path value timestamp\\n``).

    Non-finite values are skipped; carbon rejects them.
    """
    lines: List[bytes] = []
    for metric in metrics:
        if not metric.is_finite:
            LOG.debug("Skipping non-finite value for %s", metric.path)
            continue
        line = f"{sanitize_path(metric.path)} {float(metric.value)!r} {int(metric.timestamp)}\n"
        lines.append(line.encode("ascii", "replace"))
    return lines


def pack_datagrams(lines: Iterable[bytes], limit: int = MAX_DATAGRAM_BYTES) -> Iterator[bytes]:
    """Group whole lines into payloads no larger than ``limit`` bytes."""
    chunk = b""
    for line in lines:
        if chunk and len(chunk) + len(line) > limit:
            yield chunk
            chunk = b""
        chunk += line
    if chunk:
        yield chunk


class GraphiteClient(BufferedOutputClient):
    """Stream metrics to carbon using the plaintext protocol.

    TCP keeps one persistent connection that is re-established on the next
    delivery after any socket error; UDP sends fire-and-forget datagrams.
    """

    NAME = "graphite"

    def __init__(self, config: GraphiteOutputConfig) -> None:
        super().__init__(config)
        self.config: GraphiteOutputConfig = config
        self._sock: Optional[socket.socket] = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def _connect(self) -> socket.socket:
        if self._sock is not None:
            return self._sock
        if self.config.protocol == "udp":
            family, type_, proto, _, address = socket.getaddrinfo(
                self.config.host, self.config.port, type=socket.SOCK_DGRAM
            )[0]
            sock = socket.socket(family, type_, proto)
            sock.connect(address)
        else:
            sock = socket.create_connection(
                (self.config.host, self.config.port), timeout=self.config.timeout
            )
            LOG.info(
                "[connect] Connected to carbon at %s:%d", self.config.host, self.config.port
            )
        self._sock = sock
        return sock

    def deliver(self, batch: List[CollectedMetric]) -> None:
        lines = encode_plaintext(batch)
        if not lines:
            return
        try:
            sock = self._connect()
            if self.config.protocol == "udp":
                for datagram in pack_datagrams(lines):
                    sock.send(datagram)
            else:
                sock.sendall(b"".join(lines))
        except OSError as exc:
            self.close_transport()
            raise DeliveryError(
                f"Unable to send to carbon at {self.config.host}:{self.config.port}: {exc}"
            ) from exc

    def close_transport(self) -> None:
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError:
            pass
