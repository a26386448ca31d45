"""Run coordinator: deadline, workers, aggregator and orderly shutdown."""

from __future__ import annotations

import asyncio
import signal
import sys
import time
from typing import TYPE_CHECKING

from ratestorm._internal.config import RateStormSettings
from ratestorm._internal.errors import EngineError
from ratestorm._internal.logging import get_logger
from ratestorm.engine.channel import ResultChannel
from ratestorm.engine.rate_limiter import TickRateLimiter
from ratestorm.engine.worker import Worker
from ratestorm.metrics.aggregator import StatusAggregator
from ratestorm.metrics.models import RunResult
from ratestorm.transport.payload import build_payload

if TYPE_CHECKING:
    from collections.abc import Callable

    from ratestorm._internal.config import RunConfig
    from ratestorm.engine.protocol import Sender, WorkerResult
    from ratestorm.metrics.models import TallySnapshot
    from ratestorm.transport.payload import Payload

logger = get_logger("engine.coordinator")


class RunCoordinator:
    """Owns one run from start to final report.

    Arms a deadline timer that fires the shared cancel event, starts the
    aggregator and then ``config.concurrency`` workers sharing one rate
    limiter, one result channel and one cancel event.

    Shutdown order: wait for the workers (bounded by the deadline plus
    ``settings.shutdown_grace``; workers still stuck in a request after
    that are cancelled), close the channel, let the aggregator run its
    final drain, return a ``RunResult``.

    Attributes:
        config: The run configuration.
    """

    def __init__(
        self,
        config: RunConfig,
        sender: Sender,
        *,
        settings: RateStormSettings | None = None,
        payload: Payload | None = None,
        on_snapshot: Callable[[TallySnapshot], None] | None = None,
        on_final: Callable[[TallySnapshot], None] | None = None,
        handle_signals: bool = False,
    ) -> None:
        """Initialize the coordinator.

        Args:
            config: Validated run configuration.
            sender: Transport used by every worker.
            settings: Engine settings. Defaults apply if None.
            payload: Request payload. Defaults to ``build_payload()``.
            on_snapshot: Optional callback for each window snapshot.
            on_final: Optional callback for the final cumulative snapshot.
            handle_signals: Install SIGINT/SIGTERM handlers that abort the
                run early. Only valid on the main thread.
        """
        self.config = config
        self._sender = sender
        self._settings = settings or RateStormSettings()
        self._payload = payload or build_payload()
        self._on_snapshot = on_snapshot
        self._on_final = on_final
        self._handle_signals = handle_signals

        self._cancel_event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        """Return True once the cancel signal has fired."""
        return self._cancel_event.is_set()

    def abort(self) -> None:
        """Fire the cancel signal before the deadline."""
        if not self._cancel_event.is_set():
            logger.info("Abort requested, stopping workers")
            self._cancel_event.set()

    def _on_deadline(self) -> None:
        logger.debug("Deadline reached after %.1fs", self.config.duration_seconds)
        self._cancel_event.set()

    async def run(self) -> RunResult:
        """Execute the run and return its result.

        Returns:
            RunResult with every window snapshot and the final summary.

        Raises:
            EngineError: If the run fails for a reason other than a
                request failure.
        """
        config = self.config
        settings = self._settings
        loop = asyncio.get_running_loop()

        limiter = TickRateLimiter(config.rate)
        channel = ResultChannel(settings.channel_capacity)
        aggregator = StatusAggregator(
            channel,
            interval=settings.report_interval,
            on_snapshot=self._on_snapshot,
            on_final=self._on_final,
        )

        logger.info(
            "Starting load test: url=%s, method=%s, rate=%d/s, concurrency=%d, duration=%.1fs",
            config.url,
            config.method,
            config.rate,
            config.concurrency,
            config.duration_seconds,
        )

        start_time = time.monotonic()
        deadline = loop.time() + config.duration_seconds
        timer = loop.call_at(deadline, self._on_deadline)
        if self._handle_signals:
            self._install_signal_handlers()

        aggregator.start()
        workers = [
            Worker(
                worker_id=i,
                config=config,
                limiter=limiter,
                channel=channel,
                sender=self._sender,
                cancel_event=self._cancel_event,
                payload=self._payload,
            )
            for i in range(config.concurrency)
        ]
        tasks = [
            asyncio.create_task(worker.run(), name=f"ratestorm-worker-{worker.worker_id}")
            for worker in workers
        ]

        try:
            worker_results = await self._wait_for_workers(workers, tasks, deadline)
        except Exception as exc:
            logger.exception("Load test failed")
            raise EngineError("Load test failed") from exc
        finally:
            timer.cancel()
            self._cancel_event.set()
            if self._handle_signals:
                self._remove_signal_handlers()
            # Only reached with live workers if the wait itself failed
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

            channel.close()
            final_summary = await aggregator.stop()

        end_time = time.monotonic()
        total_duration = end_time - start_time

        logger.info(
            "Load test completed: duration=%.1fs, requests=%d, errors=%d, dropped=%d, permits=%d",
            total_duration,
            final_summary.total_requests,
            final_summary.total_errors,
            channel.dropped,
            limiter.issued,
        )

        return RunResult(
            config=config,
            start_time=start_time,
            end_time=end_time,
            duration_seconds=total_duration,
            snapshots=aggregator.snapshots,
            final_summary=final_summary,
            dropped=channel.dropped,
            permits_issued=limiter.issued,
            worker_results=worker_results,
        )

    async def _wait_for_workers(
        self,
        workers: list[Worker],
        tasks: list[asyncio.Task[WorkerResult]],
        deadline: float,
    ) -> list[WorkerResult]:
        """Wait for every worker, cancelling stragglers after the grace period.

        Args:
            workers: The workers, index-aligned with ``tasks``.
            tasks: The tasks running ``Worker.run()``.
            deadline: Loop time at which the cancel signal fires.

        Returns:
            One WorkerResult per worker, in worker order.
        """
        loop = asyncio.get_running_loop()
        timeout = max(0.0, deadline - loop.time()) + self._settings.shutdown_grace
        _done, pending = await asyncio.wait(tasks, timeout=timeout)

        if pending:
            logger.warning(
                "%d workers still busy %.1fs after the deadline, cancelling",
                len(pending),
                self._settings.shutdown_grace,
            )
            for task in pending:
                task.cancel()
            await asyncio.wait(pending)

        results: list[WorkerResult] = []
        for worker, task in zip(workers, tasks, strict=True):
            if task.cancelled():
                results.append(worker.result(cancelled=True))
                continue
            exc = task.exception()
            if exc is not None:
                logger.error(
                    "Worker %d crashed: %s",
                    worker.worker_id,
                    exc,
                    exc_info=exc,
                    extra={"worker_id": worker.worker_id},
                )
                results.append(worker.result())
            else:
                results.append(task.result())
        return results

    def _install_signal_handlers(self) -> None:
        """Abort the run on SIGINT and SIGTERM."""
        loop = asyncio.get_running_loop()

        def _signal_handler() -> None:
            logger.info("Signal received, initiating graceful shutdown")
            self.abort()

        if sys.platform != "win32":
            loop.add_signal_handler(signal.SIGINT, _signal_handler)
            loop.add_signal_handler(signal.SIGTERM, _signal_handler)
        else:
            # Windows doesn't support add_signal_handler
            signal.signal(signal.SIGINT, lambda _s, _f: loop.call_soon_threadsafe(_signal_handler))
            signal.signal(signal.SIGTERM, lambda _s, _f: loop.call_soon_threadsafe(_signal_handler))

    def _remove_signal_handlers(self) -> None:
        """Restore default signal handling."""
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)
