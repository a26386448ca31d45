"""Outcome and report dataclasses for RateStorm."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ratestorm._internal.config import RunConfig
    from ratestorm.engine.protocol import WorkerResult

__all__ = [
    "ERROR_BUCKET",
    "Outcome",
    "RunResult",
    "TallySnapshot",
]

# Bucket name under which failed requests are reported.
ERROR_BUCKET = "error"


@dataclass(frozen=True)
class Outcome:
    """Result of one request attempt: a status code or a failure reason.

    Exactly one of the two is meaningful. Successes carry a status code in
    100-599 and ``error is None``; failures carry ``status_code == 0`` and
    an error string of the form ``"<ExceptionType>: <message>"``.

    Attributes:
        status_code: HTTP response status code (0 for failures).
        error: Failure reason, or None for a response.
        latency_ms: Wall time of the request in milliseconds.
        worker_id: ID of the worker that produced the outcome.
    """

    status_code: int
    error: str | None = None
    latency_ms: float = 0.0
    worker_id: int = 0

    @classmethod
    def success(cls, status_code: int, *, latency_ms: float = 0.0, worker_id: int = 0) -> Outcome:
        """Build an outcome for a request that produced a response.

        Raises:
            ValueError: If ``status_code`` is outside 100-599.
        """
        if not 100 <= status_code <= 599:
            msg = f"status_code must be in 100-599, got {status_code}"
            raise ValueError(msg)
        return cls(status_code=status_code, latency_ms=latency_ms, worker_id=worker_id)

    @classmethod
    def failure(cls, reason: str, *, latency_ms: float = 0.0, worker_id: int = 0) -> Outcome:
        """Build an outcome for a request that failed without a response."""
        return cls(status_code=0, error=reason or "UnknownError", latency_ms=latency_ms, worker_id=worker_id)

    @property
    def is_success(self) -> bool:
        """Return True if the request produced a response."""
        return self.error is None

    @property
    def error_type(self) -> str | None:
        """Return the error class name (text before the first colon)."""
        if self.error is None:
            return None
        return self.error.split(":")[0].strip() or "UnknownError"


@dataclass
class TallySnapshot:
    """Counts for one tally window, or for the whole run.

    Window snapshots are numbered from 1. The final cumulative snapshot
    uses ``window == 0`` and also carries the dropped-outcome count.

    Attributes:
        timestamp: Monotonic timestamp of the snapshot.
        elapsed_seconds: Seconds since the run started.
        window: Window number, or 0 for the cumulative snapshot.
        interval: Seconds covered by the snapshot.
        total_requests: Outcomes tallied (responses and failures).
        total_errors: Failed requests (no response received).
        requests_per_second: ``total_requests / interval``.
        by_status: Response count per HTTP status code.
        errors_by_type: Failure count per exception class name.
        latency_min: Minimum latency (ms).
        latency_avg: Mean latency (ms).
        latency_p50: 50th percentile latency (ms).
        latency_p95: 95th percentile latency (ms).
        latency_p99: 99th percentile latency (ms).
        latency_max: Maximum latency (ms).
        dropped: Outcomes discarded by a full channel (final snapshot only).
    """

    timestamp: float
    elapsed_seconds: float
    window: int
    interval: float
    total_requests: int = 0
    total_errors: int = 0
    requests_per_second: float = 0.0
    by_status: dict[int, int] = field(default_factory=dict)
    errors_by_type: dict[str, int] = field(default_factory=dict)
    latency_min: float = 0.0
    latency_avg: float = 0.0
    latency_p50: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    latency_max: float = 0.0
    dropped: int = 0

    @property
    def is_final(self) -> bool:
        """Return True for the cumulative end-of-run snapshot."""
        return self.window == 0

    @property
    def error_rate(self) -> float:
        """Return the fraction of requests that failed (0.0 to 1.0)."""
        if self.total_requests == 0:
            return 0.0
        return self.total_errors / self.total_requests

    @property
    def buckets(self) -> list[tuple[int | str, int]]:
        """Return ``(bucket, count)`` pairs ordered by status code.

        Failures are reported in a single trailing ``"error"`` bucket.
        """
        pairs: list[tuple[int | str, int]] = sorted(self.by_status.items())
        if self.total_errors:
            pairs.append((ERROR_BUCKET, self.total_errors))
        return pairs


@dataclass
class RunResult:
    """Complete result of one load test run.

    Attributes:
        config: The configuration the run used.
        start_time: Monotonic time when the run started.
        end_time: Monotonic time when the run finished.
        duration_seconds: Wall-clock duration of the run.
        snapshots: One TallySnapshot per window, in order.
        final_summary: Cumulative snapshot over the whole run.
        dropped: Outcomes discarded by the channel's drop policy.
        permits_issued: Permits handed out by the rate limiter.
        worker_results: Per-worker request counts.
    """

    config: RunConfig
    start_time: float
    end_time: float
    duration_seconds: float
    snapshots: list[TallySnapshot] = field(default_factory=list)
    final_summary: TallySnapshot | None = None
    dropped: int = 0
    permits_issued: int = 0
    worker_results: list[WorkerResult] = field(default_factory=list)

    @property
    def total_requests(self) -> int:
        """Return the number of requests the workers performed."""
        return sum(r.total_requests for r in self.worker_results)
