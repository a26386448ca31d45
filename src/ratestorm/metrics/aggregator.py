"""Periodic status-code aggregation over the result channel.

The ``StatusAggregator`` runs as an asyncio task next to the workers. On
every tick it drains the result channel without waiting, tallies the
drained outcomes into the current window, emits a ``TallySnapshot`` and
folds the window into a cumulative tally used for the final summary.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING

from ratestorm._internal.errors import ProgrammingError
from ratestorm._internal.logging import get_logger
from ratestorm.metrics.tally import StatusTally

if TYPE_CHECKING:
    from collections.abc import Callable

    from ratestorm.engine.channel import ResultChannel
    from ratestorm.metrics.models import TallySnapshot

logger = get_logger("metrics.aggregator")


class StatusAggregator:
    """Drains a ``ResultChannel`` once per interval and reports tallies.

    Two tallies are maintained:
    - **Window**: reset after each snapshot, counts one interval.
    - **Cumulative**: never reset, used for the final summary.

    Ticks are scheduled on absolute times (``start + k * interval``) so
    slow callbacks do not make the windows drift. The drain never waits on
    the channel: an empty channel produces a zero snapshot.

    The aggregator keeps ticking until ``finish()`` is called. The
    coordinator calls it only after every worker has exited and the
    channel is closed, so the final drain sees every accepted outcome.

    Attributes:
        interval: Seconds per tally window.
    """

    def __init__(
        self,
        channel: ResultChannel,
        *,
        interval: float = 1.0,
        on_snapshot: Callable[[TallySnapshot], None] | None = None,
        on_final: Callable[[TallySnapshot], None] | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            channel: Channel to drain outcomes from.
            interval: Seconds per tally window. Must be positive.
            on_snapshot: Optional callback invoked with each window snapshot.
            on_final: Optional callback invoked with the final cumulative
                snapshot.

        Raises:
            ValueError: If interval is not positive.
        """
        if interval <= 0:
            msg = f"interval must be positive, got {interval}"
            raise ValueError(msg)

        self._channel = channel
        self.interval = interval
        self._on_snapshot = on_snapshot
        self._on_final = on_final

        self._finish_event = asyncio.Event()
        self._task: asyncio.Task[TallySnapshot] | None = None
        self._start_time = 0.0
        self._window_start = 0.0
        self._window_index = 0

        self._window = StatusTally()
        self._cumulative = StatusTally(cumulative=True)
        self._snapshots: list[TallySnapshot] = []
        self._final: TallySnapshot | None = None

    @property
    def snapshots(self) -> list[TallySnapshot]:
        """Return a copy of the window snapshots emitted so far."""
        return list(self._snapshots)

    @property
    def final_snapshot(self) -> TallySnapshot | None:
        """Return the cumulative snapshot, or None before the final pass."""
        return self._final

    @property
    def running(self) -> bool:
        """Return True while the aggregator task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the aggregator task on the running event loop.

        Raises:
            ProgrammingError: If the aggregator was already started.
        """
        if self._task is not None:
            msg = "StatusAggregator.start() called twice"
            raise ProgrammingError(msg)

        self._start_time = time.monotonic()
        self._window_start = self._start_time
        self._task = asyncio.create_task(self._run_loop(), name="ratestorm-aggregator")
        logger.debug("Aggregator started: interval=%.3fs", self.interval)

    def finish(self) -> None:
        """Ask the aggregator to run its final drain and exit."""
        self._finish_event.set()

    async def wait(self) -> TallySnapshot:
        """Wait for the final pass and return the cumulative snapshot.

        Raises:
            ProgrammingError: If the aggregator was never started.
        """
        if self._task is None:
            msg = "StatusAggregator.wait() called before start()"
            raise ProgrammingError(msg)
        return await self._task

    async def stop(self) -> TallySnapshot:
        """Run the final pass and return the cumulative snapshot."""
        self.finish()
        return await self.wait()

    def drain(self) -> int:
        """Move every available outcome from the channel into the window.

        Never waits and never raises on an empty channel.

        Returns:
            Number of outcomes tallied by this call.
        """
        outcomes = self._channel.drain()
        for outcome in outcomes:
            self._window.record(outcome)
        return len(outcomes)

    def report_window(self) -> TallySnapshot:
        """Drain, snapshot the current window, and start a new one.

        Returns:
            The snapshot for the window that just ended.
        """
        self.drain()

        now = time.monotonic()
        self._window_index += 1
        snapshot = self._window.to_snapshot(
            window=self._window_index,
            elapsed_seconds=now - self._start_time,
            interval=now - self._window_start,
        )
        self._snapshots.append(snapshot)

        self._cumulative.fold(self._window)
        self._window.reset()
        self._window_start = now

        logger.debug(
            "Window %d: total=%d, errors=%d, buckets=%s",
            snapshot.window,
            snapshot.total_requests,
            snapshot.total_errors,
            snapshot.buckets,
            extra={"window": snapshot.window},
        )
        self._notify(self._on_snapshot, snapshot)
        return snapshot

    async def _run_loop(self) -> TallySnapshot:
        """Tick until finished, then run the final drain-and-report."""
        next_tick = self._start_time + self.interval
        while not self._finish_event.is_set():
            timeout = max(0.0, next_tick - time.monotonic())
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._finish_event.wait(), timeout=timeout)
            if self._finish_event.is_set():
                break

            self.report_window()
            next_tick += self.interval

        return self._final_pass()

    def _final_pass(self) -> TallySnapshot:
        """Collect what is left and build the cumulative snapshot."""
        self.drain()
        if self._window.total:
            self.report_window()

        elapsed = time.monotonic() - self._start_time
        dropped = self._channel.dropped
        self._final = self._cumulative.to_snapshot(
            window=0,
            elapsed_seconds=elapsed,
            interval=elapsed,
            dropped=dropped,
        )
        if dropped:
            logger.warning("Result channel dropped %d outcomes (capacity=%d)", dropped, self._channel.capacity)

        logger.debug(
            "Aggregator finished: windows=%d, total=%d, errors=%d",
            len(self._snapshots),
            self._final.total_requests,
            self._final.total_errors,
        )
        self._notify(self._on_final, self._final)
        return self._final

    def _notify(
        self,
        callback: Callable[[TallySnapshot], None] | None,
        snapshot: TallySnapshot,
    ) -> None:
        if callback is None:
            return
        try:
            callback(snapshot)
        except Exception:
            logger.exception("Snapshot callback failed for window %d", snapshot.window)
