"""Performance metrics and statistics tracking."""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from .logging import get_logger

logger = get_logger("metrics")


@dataclass
class TimingStats:
    """Statistics for timing measurements."""

    count: int = 0
    total_time: float = 0.0
    min_time: float = float("inf")
    max_time: float = 0.0

    def add(self, duration: float) -> None:
        """Add a timing measurement."""
        self.count += 1
        self.total_time += duration
        self.min_time = min(self.min_time, duration)
        self.max_time = max(self.max_time, duration)

    @property
    def avg_time(self) -> float:
        """Calculate average time."""
        return self.total_time / self.count if self.count > 0 else 0.0


@dataclass
class TokenStats:
    """Statistics for token usage."""

    input_tokens: int = 0
    output_tokens: int = 0
    cached_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add_usage(
        self, input_tokens: int = 0, output_tokens: int = 0, cached_tokens: int = 0
    ) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.cached_tokens += cached_tokens


@dataclass
class OperationMetrics:
    """Metrics for one analysis run.

    Agents update it from worker threads, so every mutation goes through
    a lock.
    """

    timing: dict[str, TimingStats] = field(default_factory=dict)
    tokens: TokenStats = field(default_factory=TokenStats)
    counters: dict[str, int] = field(default_factory=dict)
    errors: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_timing(self, operation: str, duration: float) -> None:
        """Record timing for an operation."""
        with self._lock:
            if operation not in self.timing:
                self.timing[operation] = TimingStats()
            self.timing[operation].add(duration)

    def record_tokens(
        self, input_tokens: int = 0, output_tokens: int = 0, cached_tokens: int = 0
    ) -> None:
        """Record token usage of a model call."""
        with self._lock:
            self.tokens.add_usage(input_tokens, output_tokens, cached_tokens)

    def increment(self, counter: str, value: int = 1) -> None:
        """Increment a counter."""
        with self._lock:
            self.counters[counter] = self.counters.get(counter, 0) + value

    def record_error(self, error_type: str) -> None:
        """Record an error occurrence."""
        with self._lock:
            self.errors[error_type] = self.errors.get(error_type, 0) + 1

    def summary(self) -> dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "timing": {
                    name: {
                        "count": stats.count,
                        "total": stats.total_time,
                        "avg": stats.avg_time,
                        "min": stats.min_time if stats.min_time != float("inf") else 0,
                        "max": stats.max_time,
                    }
                    for name, stats in self.timing.items()
                },
                "tokens": {
                    "input": self.tokens.input_tokens,
                    "output": self.tokens.output_tokens,
                    "cached": self.tokens.cached_tokens,
                    "total": self.tokens.total_tokens,
                },
                "counters": dict(self.counters),
                "errors": dict(self.errors),
            }


@contextmanager
def timed_operation(name: str, metrics: OperationMetrics | None = None) -> Iterator[None]:
    """Context manager for timing an operation.

    Usage:
        with timed_operation("scan", run_context.metrics):
            # do work
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start
        if metrics is not None:
            metrics.record_timing(name, duration)
        logger.debug(f"{name}: {duration:.3f}s")


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Rough estimate of token count from character length."""
    return len(text) // max(chars_per_token, 1)


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


def format_tokens(count: int) -> str:
    """Format token count with appropriate suffix."""
    if count < 1000:
        return str(count)
    elif count < 1_000_000:
        return f"{count / 1000:.1f}K"
    else:
        return f"{count / 1_000_000:.1f}M"


def format_bytes(size: int) -> str:
    """Format a byte count with a binary unit suffix."""
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}GB"
