from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from functools import wraps
from threading import Lock
from time import perf_counter
from typing import Any, Callable

EDITS_TRACKED = "edits_tracked"
EDITS_IGNORED = "edits_ignored"
EDITS_DROPPED_BY_LEASE = "edits_dropped_by_lease"
ROWS_PUSHED = "rows_pushed"
ROWS_FAILED = "rows_failed"
PUSH_DURATION = "push_duration"


@dataclass
class _Timing:
    count: int = 0
    total: float = 0.0
    last: float = 0.0
    max: float = 0.0

    def add(self, milliseconds: float) -> None:
        self.count += 1
        self.total += milliseconds
        self.last = milliseconds
        self.max = max(self.max, milliseconds)

    def summary(self) -> dict[str, float]:
        return {
            "count": self.count,
            "last": self.last,
            "avg": self.total / self.count if self.count else 0.0,
            "max": self.max,
        }


class MetricsRegistry:
    """Contadores y tiempos en memoria del proceso; se vuelcan a log al terminar un push."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: Counter[str] = Counter()
        self._timings: dict[str, _Timing] = {}

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] += value

    def record_timing(self, name: str, milliseconds: float) -> None:
        with self._lock:
            self._timings.setdefault(name, _Timing()).add(milliseconds)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "timings_ms": {name: timing.summary() for name, timing in self._timings.items()},
            }


metrics_registry = MetricsRegistry()


def measure_time(metric_name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                metrics_registry.record_timing(metric_name, (perf_counter() - started) * 1000)

        return wrapper

    return decorator
