"""Worker loop: wait for a permit, send one request, emit one outcome."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from ratestorm._internal.logging import get_logger
from ratestorm.engine.protocol import WorkerResult
from ratestorm.metrics.models import Outcome

if TYPE_CHECKING:
    from ratestorm._internal.config import RunConfig
    from ratestorm.engine.channel import ResultChannel
    from ratestorm.engine.protocol import Sender
    from ratestorm.engine.rate_limiter import TickRateLimiter
    from ratestorm.transport.payload import Payload

logger = get_logger("engine.worker")


class Worker:
    """One unit of concurrent execution in a run.

    Loops until the shared cancel event fires. Each iteration waits for
    whichever comes first, a permit from the shared limiter or the cancel
    event, then performs exactly one request and pushes exactly one
    ``Outcome`` onto the result channel. Requests from one worker never
    overlap.

    A failed request is logged and becomes a failure outcome. It never
    ends the loop and is never retried.

    Attributes:
        worker_id: Identifier used in logs and outcomes.
    """

    def __init__(
        self,
        worker_id: int,
        config: RunConfig,
        limiter: TickRateLimiter,
        channel: ResultChannel,
        sender: Sender,
        cancel_event: asyncio.Event,
        payload: Payload,
    ) -> None:
        """Initialize the worker.

        Args:
            worker_id: Identifier used in logs and outcomes.
            config: Run configuration (read-only).
            limiter: Rate limiter shared by all workers.
            channel: Result channel shared by all workers.
            sender: Transport used to send requests.
            cancel_event: One-shot broadcast signal that ends the run.
            payload: Request body and headers sent with every request.
        """
        self.worker_id = worker_id
        self._config = config
        self._limiter = limiter
        self._channel = channel
        self._sender = sender
        self._cancel_event = cancel_event
        self._payload = payload

        self._total_requests = 0
        self._error_count = 0
        self._dropped = 0

    @property
    def total_requests(self) -> int:
        """Return the number of requests performed so far."""
        return self._total_requests

    def result(self, *, cancelled: bool = False) -> WorkerResult:
        """Return the worker's counters as a ``WorkerResult``."""
        return WorkerResult(
            worker_id=self.worker_id,
            total_requests=self._total_requests,
            error_count=self._error_count,
            dropped=self._dropped,
            cancelled=cancelled,
        )

    async def run(self) -> WorkerResult:
        """Run the permit/request loop until cancellation.

        Returns:
            The worker's counters.
        """
        logger.debug("Worker %d started", self.worker_id, extra={"worker_id": self.worker_id})

        while not self._cancel_event.is_set():
            if not await self._wait_for_permit():
                break

            outcome = await self._perform_request()
            if not self._channel.push(outcome):
                self._dropped += 1

        logger.debug(
            "Worker %d stopped: requests=%d, errors=%d",
            self.worker_id,
            self._total_requests,
            self._error_count,
            extra={"worker_id": self.worker_id},
        )
        return self.result()

    async def _wait_for_permit(self) -> bool:
        """Race the limiter against the cancel event.

        Returns:
            True if a permit was obtained and the run is still live, False
            if cancellation was observed. Cancellation wins a tie.
        """
        permit = asyncio.ensure_future(self._limiter.next())
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _pending = await asyncio.wait(
                {permit, cancelled},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (permit, cancelled):
                if not task.done():
                    task.cancel()

        if self._cancel_event.is_set():
            return False
        return permit in done

    async def _perform_request(self) -> Outcome:
        """Send one request and convert the result into an ``Outcome``."""
        config = self._config
        start = time.monotonic()
        try:
            status_code, error = await self._sender.send(
                config.method,
                config.url,
                self._payload.body,
                dict(self._payload.headers),
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            status_code, error = 0, f"{type(exc).__name__}: {exc}"
        latency_ms = (time.monotonic() - start) * 1000
        self._total_requests += 1

        if error is None and not 100 <= status_code <= 599:
            error = f"InvalidStatus: server returned status {status_code}"

        if error is not None:
            self._error_count += 1
            logger.warning(
                "Worker %d: error sending request: %s",
                self.worker_id,
                error,
                extra={"worker_id": self.worker_id},
            )
            return Outcome.failure(error, latency_ms=latency_ms, worker_id=self.worker_id)

        return Outcome.success(status_code, latency_ms=latency_ms, worker_id=self.worker_id)
