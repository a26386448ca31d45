"""Latency histogram backed by HdrHistogram.

Request latencies arrive in milliseconds; the HDR histogram only stores
integers, so values are kept as microseconds internally.
"""

from __future__ import annotations

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

# 1 microsecond to 5 minutes, which covers any request timeout we allow
_LOWEST_TRACKABLE_US = 1
_HIGHEST_TRACKABLE_US = 300_000_000
_SIGNIFICANT_DIGITS = 3


class HdrHistogramWrapper:
    """Millisecond-facing wrapper around ``HdrHistogram``.

    Every getter returns 0.0 for an empty histogram, so an empty tally
    window renders as zeros instead of raising.
    """

    def __init__(self) -> None:
        self._histogram: HdrHistogram = HdrHistogram(  # type: ignore[no-any-unimported]
            _LOWEST_TRACKABLE_US, _HIGHEST_TRACKABLE_US, _SIGNIFICANT_DIGITS
        )

    @property
    def total_count(self) -> int:
        """Return the number of recorded values."""
        return int(self._histogram.total_count)

    def record_latency_ms(self, latency_ms: float) -> None:
        """Record one latency, clamped to the trackable range.

        Args:
            latency_ms: Latency in milliseconds.
        """
        value_us = int(latency_ms * 1000)
        value_us = max(_LOWEST_TRACKABLE_US, min(value_us, _HIGHEST_TRACKABLE_US))
        self._histogram.record_value(value_us)

    def get_percentile(self, percentile: float) -> float:
        """Return the latency (ms) at ``percentile`` (0.0 to 100.0)."""
        if self.total_count == 0:
            return 0.0
        return float(self._histogram.get_value_at_percentile(percentile)) / 1000.0

    def get_min(self) -> float:
        if self.total_count == 0:
            return 0.0
        return float(self._histogram.get_min_value()) / 1000.0

    def get_max(self) -> float:
        if self.total_count == 0:
            return 0.0
        return float(self._histogram.get_max_value()) / 1000.0

    def get_mean(self) -> float:
        if self.total_count == 0:
            return 0.0
        return float(self._histogram.get_mean_value()) / 1000.0

    def reset(self) -> None:
        """Clear all recorded values."""
        self._histogram.reset()

