"""
Stats service - collects forwarding metrics per destination.
"""
from __future__ import annotations

import asyncio
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Optional


# Maximum number of destinations to track to prevent memory leak
MAX_DESTINATIONS = 1000


@dataclass
class DestinationStats:
    """Statistics for a single forwarding destination."""
    request_count: int = 0
    error_count: int = 0
    total_response_time_ms: float = 0.0
    errors_by_reason: Counter = field(default_factory=Counter)

    @property
    def error_rate(self) -> float:
        if self.request_count == 0:
            return 0.0
        return (self.error_count / self.request_count) * 100

    @property
    def avg_response_time_ms(self) -> float:
        if self.request_count == 0:
            return 0.0
        return self.total_response_time_ms / self.request_count

    def to_dict(self) -> Dict:
        return {
            "request_count": self.request_count,
            "error_count": self.error_count,
            "error_rate_percent": round(self.error_rate, 2),
            "avg_response_time_ms": round(self.avg_response_time_ms, 2),
            "errors_by_reason": dict(self.errors_by_reason),
        }


class StatsCollector:
    """Async-safe statistics collector for all destinations with LRU eviction."""

    def __init__(self):
        self._stats: OrderedDict[str, DestinationStats] = OrderedDict()
        self._lock = asyncio.Lock()

    async def record_forward(
        self,
        destination: str,
        response_time_ms: float,
        error_reason: Optional[str] = None
    ):
        """Record one forward attempt; error_reason is None on success."""
        async with self._lock:
            if destination not in self._stats:
                if len(self._stats) >= MAX_DESTINATIONS:
                    self._stats.popitem(last=False)
                self._stats[destination] = DestinationStats()
            else:
                self._stats.move_to_end(destination)

            stats = self._stats[destination]
            stats.request_count += 1
            stats.total_response_time_ms += response_time_ms
            if error_reason is not None:
                stats.error_count += 1
                stats.errors_by_reason[error_reason] += 1

    async def record_failure(self, destination: str, error_reason: str):
        """Record a failure on a forward that was already counted (body streaming)."""
        async with self._lock:
            stats = self._stats.get(destination)
            if stats is None:
                return
            stats.error_count += 1
            stats.errors_by_reason[error_reason] += 1

    async def get_all_stats(self) -> Dict[str, Dict]:
        """Get statistics for all destinations."""
        async with self._lock:
            return {url: stats.to_dict() for url, stats in self._stats.items()}


# Singleton instance
stats_collector = StatsCollector()
