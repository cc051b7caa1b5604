"""Request metrics sink for the HTTP surface."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Protocol


class RequestMetrics(Protocol):
    """Sink the HTTP routes report every request to."""

    def observe(self, method: str, path: str, status: int, duration: float) -> None: ...


@dataclass
class _Series:
    count: int = 0
    total_seconds: float = 0.0


class InMemoryRequestMetrics:
    """Request counts and durations keyed by method, route and status."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._series: dict[tuple[str, str, int], _Series] = {}

    def observe(self, method: str, path: str, status: int, duration: float) -> None:
        """Record one completed request."""
        with self._lock:
            series = self._series.setdefault((method, path, status), _Series())
            series.count += 1
            series.total_seconds += duration

    def count(self, method: str, path: str, status: int) -> int:
        """Get the number of requests observed for a series."""
        with self._lock:
            series = self._series.get((method, path, status))
            return series.count if series else 0

    @property
    def total_requests(self) -> int:
        """Get the number of requests observed across all series."""
        with self._lock:
            return sum(s.count for s in self._series.values())

    def snapshot(self) -> list[dict[str, Any]]:
        """Get all series as plain dicts."""
        with self._lock:
            return [
                {
                    "method": method,
                    "path": path,
                    "status": status,
                    "count": series.count,
                    "total_seconds": round(series.total_seconds, 6),
                }
                for (method, path, status), series in sorted(self._series.items())
            ]
