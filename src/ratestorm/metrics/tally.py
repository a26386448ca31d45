"""Per-window status code tally."""

from __future__ import annotations

import time
from collections import defaultdict
from typing import TYPE_CHECKING

import numpy as np

from ratestorm.metrics.histogram import HdrHistogramWrapper
from ratestorm.metrics.models import ERROR_BUCKET, TallySnapshot

if TYPE_CHECKING:
    from ratestorm.metrics.models import Outcome

_LatencySummary = tuple[float, float, float, float, float, float]


def _compute_percentiles(latencies: list[float]) -> _LatencySummary:
    """Compute latency statistics from a list of latency values.

    Args:
        latencies: List of latency values in milliseconds.

    Returns:
        Tuple of (min, avg, p50, p95, p99, max).
    """
    if not latencies:
        return (0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    arr = np.array(latencies, dtype=np.float64)
    percentiles = np.percentile(arr, [50.0, 95.0, 99.0])

    return (
        float(np.min(arr)),
        float(np.mean(arr)),
        float(percentiles[0]),
        float(percentiles[1]),
        float(percentiles[2]),
        float(np.max(arr)),
    )


def _histogram_summary(histogram: HdrHistogramWrapper) -> _LatencySummary:
    return (
        histogram.get_min(),
        histogram.get_mean(),
        histogram.get_percentile(50.0),
        histogram.get_percentile(95.0),
        histogram.get_percentile(99.0),
        histogram.get_max(),
    )


class StatusTally:
    """Keyed counter of outcomes.

    Responses are bucketed by exact status code, failures by exception
    class name. A tally is owned by a single aggregator task and needs no
    locking.

    A window tally keeps its raw latencies; summarising one window costs a
    sort of that window only. A cumulative tally (``cumulative=True``)
    records latencies into an HDR histogram instead, so its memory stays
    bounded however long the run is. Reading percentiles from the
    histogram walks its whole bucket array, so cumulative snapshots are
    meant to be taken once, at the end of a run.

    Attributes:
        latencies: Raw latencies (ms) of a window tally.
    """

    def __init__(self, *, cumulative: bool = False) -> None:
        self.by_status: dict[int, int] = defaultdict(int)
        self.errors_by_type: dict[str, int] = defaultdict(int)
        self.total = 0
        self.errors = 0
        self.latencies: list[float] = []
        self._histogram = HdrHistogramWrapper() if cumulative else None

    def __len__(self) -> int:
        return self.total

    @property
    def cumulative(self) -> bool:
        """Return True if latencies go into an HDR histogram."""
        return self._histogram is not None

    def _record_latency(self, latency_ms: float) -> None:
        if self._histogram is not None:
            self._histogram.record_latency_ms(latency_ms)
        else:
            self.latencies.append(latency_ms)

    def record(self, outcome: Outcome) -> None:
        """Count one outcome."""
        self.total += 1
        self._record_latency(outcome.latency_ms)
        if outcome.is_success:
            self.by_status[outcome.status_code] += 1
        else:
            self.errors += 1
            self.errors_by_type[outcome.error_type or ERROR_BUCKET] += 1

    def fold(self, other: StatusTally) -> None:
        """Add every count and latency recorded in ``other`` to this tally.

        Raises:
            ValueError: If ``other`` is a cumulative tally.
        """
        if other.cumulative:
            msg = "cannot fold a cumulative tally"
            raise ValueError(msg)

        for code, count in other.by_status.items():
            self.by_status[code] += count
        for error_type, count in other.errors_by_type.items():
            self.errors_by_type[error_type] += count
        self.total += other.total
        self.errors += other.errors
        for latency_ms in other.latencies:
            self._record_latency(latency_ms)

    def reset(self) -> None:
        """Clear the tally for the next window."""
        self.by_status.clear()
        self.errors_by_type.clear()
        self.total = 0
        self.errors = 0
        self.latencies = []
        if self._histogram is not None:
            self._histogram.reset()

    def to_snapshot(
        self,
        *,
        window: int,
        elapsed_seconds: float,
        interval: float,
        dropped: int = 0,
    ) -> TallySnapshot:
        """Freeze the current counts into a ``TallySnapshot``.

        Args:
            window: Window number, or 0 for the cumulative snapshot.
            elapsed_seconds: Seconds since the run started.
            interval: Seconds the tally covers, used for the request rate.
            dropped: Dropped-outcome count to report.

        Returns:
            A snapshot that does not share state with this tally.
        """
        interval = max(interval, 0.001)
        if self._histogram is not None:
            summary = _histogram_summary(self._histogram)
        else:
            summary = _compute_percentiles(self.latencies)
        lat_min, lat_avg, p50, p95, p99, lat_max = summary

        return TallySnapshot(
            timestamp=time.monotonic(),
            elapsed_seconds=elapsed_seconds,
            window=window,
            interval=interval,
            total_requests=self.total,
            total_errors=self.errors,
            requests_per_second=self.total / interval,
            by_status=dict(self.by_status),
            errors_by_type=dict(self.errors_by_type),
            latency_min=lat_min,
            latency_avg=lat_avg,
            latency_p50=p50,
            latency_p95=p95,
            latency_p99=p99,
            latency_max=lat_max,
            dropped=dropped,
        )
