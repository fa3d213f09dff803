from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class CollectedMetric:
    """A single sampled value, ready to be relayed to an output backend."""

    path: str
    value: float
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def now(cls, path: str, value: float, timestamp: Optional[float] = None) -> "CollectedMetric":
        return cls(path=path, value=float(value), timestamp=time.time() if timestamp is None else timestamp)

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.value)

    def __str__(self) -> str:
        return f"{self.path} {self.value!r} {int(self.timestamp)}"
