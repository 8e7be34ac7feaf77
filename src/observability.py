"""In-process counters and timers for the learning engine, logged on demand."""

import threading
import time
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

logger = structlog.get_logger().bind(source="observability")


class Metrics:
    """Counters (edits processed, patterns applied, sync pushes) and timers.

    Guarded by a lock: application reads may run on other threads than the
    edit pipeline.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._timings: dict[str, list[float]] = {}

    def counter(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def count(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                self._timings.setdefault(name, []).append(elapsed)

    def summary(self) -> dict[str, Any]:
        with self._lock:
            timings = {
                name: {
                    "count": len(values),
                    "avg_ms": round(1000 * sum(values) / len(values), 3),
                    "max_ms": round(1000 * max(values), 3),
                }
                for name, values in self._timings.items()
                if values
            }
            return {"counters": dict(self._counters), "timers": timings}

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()


metrics = Metrics()


def log_metrics_summary(reset: bool = False) -> dict[str, Any]:
    """Emit the current metrics as one structured log event."""
    summary = metrics.summary()
    logger.info("metrics_summary", **summary)
    if reset:
        metrics.reset()
    return summary
