"""Operation statistics for indiserver supervision and driver management.

Tracks how long slow, externally visible operations take and how often
they fail: control server starts and restarts, package installs, crash
retries. Each operation name gets its own rolling window.

Thread-safe; the web dashboard thread may read while the event loop
records.

Example:
    stats = OperationStats()

    stats.record("start", duration_ms=2150, success=True)
    stats.record("install", duration_ms=48000, success=False,
                 error_type="DriverInstallError")

    summary = stats.get_summary("start")
    print(f"Start success rate: {summary.success_rate:.1%}")

    data = stats.to_dict()  # for /api/stats
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# =============================================================================
# Constants
# =============================================================================

#: Records kept per operation. Restarts happen at human time scales, so a
#: few hundred covers days of hot-plugging.
DEFAULT_STATS_WINDOW_SIZE: int = 500


# =============================================================================
# Helpers
# =============================================================================


def _utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _percentile(sorted_data: list[float], p: float) -> float:
    """Linear-interpolated percentile of pre-sorted data.

    Args:
        sorted_data: Ascending values. Empty input yields 0.0.
        p: Percentile in [0, 100].

    Returns:
        Interpolated value.

    Raises:
        ValueError: If p is outside [0, 100].

    Example:
        >>> _percentile([1000.0, 2000.0, 3000.0], 50)
        2000.0
    """
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {p}")

    if not sorted_data:
        return 0.0

    k = (len(sorted_data) - 1) * (p / 100)
    floor_idx = int(k)
    ceil_idx = min(floor_idx + 1, len(sorted_data) - 1)

    if floor_idx == ceil_idx:
        return sorted_data[floor_idx]

    fraction = k - floor_idx
    return sorted_data[floor_idx] * (1 - fraction) + sorted_data[ceil_idx] * fraction


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class OperationSummary:
    """Summary of one operation's recorded attempts.

    Attributes:
        operation: Operation name ("start", "restart", "install", ...).
        total: Attempts recorded since creation or reset.
        succeeded: Successful attempts.
        failed: Failed attempts.
        success_rate: succeeded / total, 0.0 when nothing recorded.
        min_duration_ms: Fastest successful attempt in the window.
        max_duration_ms: Slowest successful attempt in the window.
        avg_duration_ms: Mean successful duration in the window.
        p95_duration_ms: 95th percentile successful duration.
        error_counts: Failures by error type.
        last_attempt: UTC time of the last attempt.
        uptime_seconds: Seconds since the collector was created or reset.
    """

    operation: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    success_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)
    last_attempt: datetime | None = None
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready dict (camelCase keys, ISO timestamps)."""
        return {
            "operation": self.operation,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "successRate": self.success_rate,
            "minDurationMs": self.min_duration_ms,
            "maxDurationMs": self.max_duration_ms,
            "avgDurationMs": self.avg_duration_ms,
            "p95DurationMs": self.p95_duration_ms,
            "errorCounts": self.error_counts.copy(),
            "lastAttempt": (
                self.last_attempt.isoformat() if self.last_attempt else None
            ),
            "uptimeSeconds": self.uptime_seconds,
        }


@dataclass
class OperationRecord:
    """One recorded attempt."""

    timestamp: float  # monotonic
    duration_ms: float
    success: bool
    error_type: str | None = None


class OperationCollector:
    """Rolling window of attempts for a single operation name."""

    def __init__(
        self,
        operation: str,
        window_size: int = DEFAULT_STATS_WINDOW_SIZE,
    ) -> None:
        """Create an empty collector.

        Cumulative counters cover every attempt; duration statistics only
        cover the last ``window_size`` records so memory stays bounded.

        Args:
            operation: Operation name used as label.
            window_size: Records retained for duration statistics.
        """
        self.operation = operation
        self._records: deque[OperationRecord] = deque(maxlen=window_size)
        self._error_counts: dict[str, int] = {}
        self._total = 0
        self._succeeded = 0
        self._start_time = time.monotonic()
        self._last_attempt: datetime | None = None
        self._lock = threading.Lock()

    def record(
        self,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record one attempt.

        Args:
            duration_ms: Wall-clock duration of the attempt.
            success: Whether it completed successfully.
            error_type: Failure category (usually the exception class name).
        """
        record = OperationRecord(
            timestamp=time.monotonic(),
            duration_ms=duration_ms,
            success=success,
            error_type=error_type,
        )

        with self._lock:
            self._records.append(record)
            self._total += 1
            if success:
                self._succeeded += 1
            elif error_type:
                self._error_counts[error_type] = (
                    self._error_counts.get(error_type, 0) + 1
                )
            self._last_attempt = _utc_now()

    def get_summary(self) -> OperationSummary:
        """Compute a snapshot summary.

        Duration figures use successful attempts only; a failed install
        that aborts after a second would otherwise drag the averages down.
        """
        with self._lock:
            durations = sorted(r.duration_ms for r in self._records if r.success)
            total = self._total
            succeeded = self._succeeded
            error_counts = self._error_counts.copy()
            last_attempt = self._last_attempt
            start_time = self._start_time

        if durations:
            min_dur = durations[0]
            max_dur = durations[-1]
            avg_dur = sum(durations) / len(durations)
            p95_dur = _percentile(durations, 95)
        else:
            min_dur = max_dur = avg_dur = p95_dur = 0.0

        return OperationSummary(
            operation=self.operation,
            total=total,
            succeeded=succeeded,
            failed=total - succeeded,
            success_rate=succeeded / total if total > 0 else 0.0,
            min_duration_ms=min_dur,
            max_duration_ms=max_dur,
            avg_duration_ms=avg_dur,
            p95_duration_ms=p95_dur,
            error_counts=error_counts,
            last_attempt=last_attempt,
            uptime_seconds=time.monotonic() - start_time,
        )

    def reset(self) -> None:
        """Clear all records and counters."""
        with self._lock:
            self._records.clear()
            self._error_counts.clear()
            self._total = 0
            self._succeeded = 0
            self._start_time = time.monotonic()
            self._last_attempt = None


class OperationStats:
    """Per-operation statistics registry.

    Injected into the supervisor and the driver resolver by the
    composition root; read by the coordinator for detailed stats.

    Usage:
        stats = OperationStats()
        with stats.measure("restart"):
            await supervisor.restart(drivers)
        stats.get_summary("restart").success_rate
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Create an empty registry.

        Args:
            window_size: Window size for every collector created.
        """
        self._window_size = window_size
        self._collectors: dict[str, OperationCollector] = {}
        self._lock = threading.Lock()

    def _get_collector(self, operation: str) -> OperationCollector:
        """Return the collector for ``operation``, creating it on first use."""
        with self._lock:
            if operation not in self._collectors:
                self._collectors[operation] = OperationCollector(
                    operation, self._window_size
                )
            return self._collectors[operation]

    def record(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record one attempt of ``operation``."""
        self._get_collector(operation).record(duration_ms, success, error_type)

    def measure(self, operation: str) -> _Measurement:
        """Context manager timing a block and recording its outcome.

        An exception escaping the block is recorded as a failure with the
        exception class name as error type, then re-raised.

        Example:
            >>> with stats.measure("install"):
            ...     await resolver.install_driver("indi-asi")
        """
        return _Measurement(self, operation)

    def get_summary(self, operation: str) -> OperationSummary:
        """Summary for one operation (zeros when never recorded)."""
        return self._get_collector(operation).get_summary()

    def get_all_summaries(self) -> dict[str, OperationSummary]:
        """Summaries for every operation recorded so far."""
        with self._lock:
            collectors = list(self._collectors.items())
        return {name: collector.get_summary() for name, collector in collectors}

    def reset(self, operation: str | None = None) -> None:
        """Reset one operation, or all of them when ``operation`` is None."""
        if operation is not None:
            self._get_collector(operation).reset()
            return
        with self._lock:
            collectors = list(self._collectors.values())
        for collector in collectors:
            collector.reset()

    def to_dict(self) -> dict[str, Any]:
        """Export all summaries keyed by operation name."""
        return {
            name: summary.to_dict()
            for name, summary in self.get_all_summaries().items()
        }


class _Measurement:
    """Timing context returned by ``OperationStats.measure``."""

    def __init__(self, stats: OperationStats, operation: str) -> None:
        self._stats = stats
        self._operation = operation
        self._start = 0.0

    def __enter__(self) -> _Measurement:
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        duration_ms = (time.monotonic() - self._start) * 1000
        self._stats.record(
            self._operation,
            duration_ms,
            success=exc_type is None,
            error_type=exc_type.__name__ if exc_type is not None else None,
        )
