"""
Simple in-process metrics registry for observability snapshots.
"""

from __future__ import annotations

import threading


class MetricsRegistry:
    """Thread-safe counter/gauge registry for lightweight instrumentation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {
            "chat_turns_total": 0.0,
            "chat_segments_total": 0.0,
            "chat_continuations_total": 0.0,
            "chat_turn_failures_total": 0.0,
            "dynamic_fetch_failures_total": 0.0,
            "context_reduction_failures_total": 0.0,
            "stream_duration_seconds": 0.0,
        }
        self._gauges: dict[str, float] = {"active_streams": 0.0}

    def increment(self, name: str, amount: float = 1.0) -> None:
        """Increment a counter by the given amount."""
        with self._lock:
            self._counters[name] = self._counters.get(name, 0.0) + amount

    def observe(self, name: str, value: float) -> None:
        """Record an observation (e.g., duration) for a counter."""
        self.increment(name, value)

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge value."""
        with self._lock:
            self._gauges[name] = value

    def adjust_gauge(self, name: str, delta: float) -> None:
        """Move a gauge up or down relative to its current value."""
        with self._lock:
            self._gauges[name] = self._gauges.get(name, 0.0) + delta

    def counter(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def snapshot(self) -> dict[str, dict[str, float]]:
        """Return a snapshot of current counters and gauges."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
            }


metrics = MetricsRegistry()
