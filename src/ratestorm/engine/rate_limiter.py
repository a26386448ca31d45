"""Fixed-cadence tick limiter shared by all workers."""

from __future__ import annotations

import asyncio
import time

from ratestorm._internal.errors import ConfigError


class TickRateLimiter:
    """Async ticker that hands out one permit every ``1 / rate`` seconds.

    Tick ``k`` (k >= 1) fires at ``start + k / rate``, where ``start`` is
    the time the limiter was created. Ticks sit on an absolute schedule, so
    a slow consumer never pushes later ticks back.

    Like a ticker with a one-slot buffer, at most one tick that fired while
    nobody was waiting stays available; older missed ticks are dropped.
    Ticks that come due while callers are already queued are not missed:
    if the event loop was busy when they fired, they are handed to the
    queued callers in order once it is free again.
    Either way ``issued`` never exceeds the number of ticks due so far.

    Any number of coroutines may call ``next()`` at once. Each returning
    call consumes a distinct tick; which waiter gets which tick is not
    defined. A waiter cancelled before its tick fires consumes nothing.

    Attributes:
        rate: Permits per second.
        interval: Seconds between ticks.
    """

    def __init__(self, rate: int) -> None:
        """Initialize the limiter and start its clock.

        Args:
            rate: Permits per second. Must be an integer >= 1.

        Raises:
            ConfigError: If rate is not a positive integer.
        """
        if isinstance(rate, bool) or not isinstance(rate, int):
            msg = f"rate must be an integer, got {rate!r}"
            raise ConfigError(msg)
        if rate <= 0:
            msg = f"rate must be positive, got {rate}"
            raise ConfigError(msg)

        self._rate = rate
        self._interval = 1.0 / rate
        self._start = time.monotonic()
        self._tick_index = 1
        self._issued = 0
        self._waiting = 0
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> int:
        """Return the configured permits per second."""
        return self._rate

    @property
    def interval(self) -> float:
        """Return the number of seconds between ticks."""
        return self._interval

    @property
    def issued(self) -> int:
        """Return how many permits have been handed out so far."""
        return self._issued

    def _tick_time(self, index: int) -> float:
        return self._start + index * self._interval

    async def next(self) -> None:
        """Wait for the next tick and consume it.

        Returns immediately if a tick already fired and nobody took it.
        Ticks are only consumed on return, so cancelling the caller while
        it waits leaves the schedule untouched.
        """
        idle = self._waiting == 0
        self._waiting += 1
        try:
            async with self._lock:
                now = time.monotonic()
                due = self._tick_time(self._tick_index)
                if due > now:
                    await asyncio.sleep(due - now)
                elif idle:
                    # Keep only the most recent tick that fired while nobody waited
                    latest = int((now - self._start) / self._interval)
                    self._tick_index = max(self._tick_index, latest)
                self._tick_index += 1
                self._issued += 1
        finally:
            self._waiting -= 1
