from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional

import httpx

from ..core.config import InfluxDbOutputConfig
from ..core.metric import CollectedMetric
from ..exceptions import DeliveryError
from .base import BufferedOutputClient

LOG = logging.getLogger(__name__)

_PRECISION_FACTORS = {"s": 1, "ms": 10**3, "u": 10**6, "ns": 10**9}


def _escape_measurement(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,").replace(" ", "\\ ")


def _escape_tag(value: str) -> str:
    return _escape_measurement(value).replace("=", "\\=")


def encode_line_protocol(
    metrics: Iterable[CollectedMetric],
    precision: str = "s",
    tags: Optional[Mapping[str, str]] = None,
) -> str:
    """Encode metrics as InfluxDB line protocol.

    The metric path becomes the measurement, the sample is stored in the
    ``value`` field and ``tags`` are appended to every line. Non-finite values
    are skipped.
    """
    factor = _PRECISION_FACTORS[precision]
    tag_set = "".join(
        f",{_escape_tag(key)}={_escape_tag(value)}" for key, value in sorted((tags or {}).items())
    )
    lines: List[str] = []
    for metric in metrics:
        if not metric.is_finite:
            LOG.debug("Skipping non-finite value for %s", metric.path)
            continue
        timestamp = int(round(metric.timestamp * factor))
        lines.append(
            f"{_escape_measurement(metric.path)}{tag_set} value={float(metric.value)!r} {timestamp}"
        )
    return "\n".join(lines)


class InfluxDbClient(BufferedOutputClient):
    """Periodically post batches of metrics to the InfluxDB ``/write`` endpoint."""

    NAME = "influxdb"

    def __init__(
        self,
        config: InfluxDbOutputConfig,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        super().__init__(config)
        self.config: InfluxDbOutputConfig = config
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    def write_url(self) -> str:
        return f"{self.config.url.rstrip('/')}/write"

    def _params(self) -> Dict[str, str]:
        params = {"db": self.config.database, "precision": self.config.precision}
        if self.config.retention_policy:
            params["rp"] = self.config.retention_policy
        if self.config.username:
            params["u"] = self.config.username
        if self.config.password:
            params["p"] = self.config.password
        return params

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "text/plain; charset=utf-8"}
        if self.config.token:
            headers["Authorization"] = f"Token {self.config.token}"
        return headers

    def _ensure_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.config.timeout,
                headers=self._headers(),
                transport=self._transport,
            )
        return self._client

    def deliver(self, batch: List[CollectedMetric]) -> None:
        body = encode_line_protocol(batch, self.config.precision, self.config.tags)
        if not body:
            return
        client = self._ensure_client()
        try:
            response = client.post(self.write_url, params=self._params(), content=body.encode("utf-8"))
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DeliveryError(
                f"InfluxDB rejected batch with HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Unable to reach InfluxDB at {self.write_url}: {exc}") from exc
        LOG.debug("[deliver] Posted %d metrics to %s", len(batch), self.write_url)

    def close_transport(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            client.close()
