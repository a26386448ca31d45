"""Bounded conduit carrying outcomes from workers to the aggregator."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from ratestorm._internal.errors import ChannelClosedError
from ratestorm._internal.logging import get_logger

if TYPE_CHECKING:
    from ratestorm.metrics.models import Outcome

logger = get_logger("engine.channel")

DEFAULT_CAPACITY = 100


class ResultChannel:
    """Fixed-capacity, drop-when-full queue of ``Outcome`` objects.

    Workers call ``push()``, which never waits: when the channel is full
    the outcome is discarded and counted in ``dropped``. A worker can
    therefore never get stuck on a slow aggregator past the run deadline.

    The aggregator calls ``drain()``, which pops until the underlying
    queue reports empty. It never waits for more outcomes to arrive.

    Only the coordinator closes the channel, after every worker has exited.
    Pushing after ``close()`` raises ``ChannelClosedError``; draining after
    close is allowed so the final pass can collect what is left.

    Attributes:
        capacity: Maximum number of buffered outcomes.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        """Initialize an empty channel.

        Args:
            capacity: Maximum number of buffered outcomes. Must be >= 1.

        Raises:
            ValueError: If capacity is less than 1.
        """
        if capacity < 1:
            msg = f"capacity must be >= 1, got {capacity}"
            raise ValueError(msg)

        self._capacity = capacity
        self._queue: asyncio.Queue[Outcome] = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self._pushed = 0
        self._dropped = 0

    @property
    def capacity(self) -> int:
        """Return the maximum number of buffered outcomes."""
        return self._capacity

    @property
    def closed(self) -> bool:
        """Return True once ``close()`` has been called."""
        return self._closed

    @property
    def pending(self) -> int:
        """Return the number of outcomes waiting to be drained."""
        return self._queue.qsize()

    @property
    def pushed(self) -> int:
        """Return the number of outcomes accepted so far."""
        return self._pushed

    @property
    def dropped(self) -> int:
        """Return the number of outcomes discarded because the channel was full."""
        return self._dropped

    def push(self, outcome: Outcome) -> bool:
        """Offer an outcome to the channel without waiting.

        Args:
            outcome: The outcome of one request.

        Returns:
            True if the outcome was queued, False if it was dropped.

        Raises:
            ChannelClosedError: If the channel has been closed.
        """
        if self._closed:
            msg = "push() called on a closed result channel"
            raise ChannelClosedError(msg)

        try:
            self._queue.put_nowait(outcome)
        except asyncio.QueueFull:
            self._dropped += 1
            if self._dropped == 1:
                logger.debug("Result channel full (capacity=%d), dropping outcomes", self._capacity)
            return False

        self._pushed += 1
        return True

    def drain(self) -> list[Outcome]:
        """Remove and return every outcome available right now.

        Stops only when the queue itself reports empty, so an outcome pushed
        while draining is either returned now or left for the next call.

        Returns:
            The drained outcomes in arrival order. Empty if nothing is queued.
        """
        drained: list[Outcome] = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return drained

    def close(self) -> None:
        """Close the channel to further pushes. Idempotent."""
        if not self._closed:
            self._closed = True
            logger.debug(
                "Result channel closed: pushed=%d, dropped=%d, pending=%d",
                self._pushed,
                self._dropped,
                self.pending,
            )
