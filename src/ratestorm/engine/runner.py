"""Top-level entry point: run one load test to completion."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import TYPE_CHECKING

from ratestorm._internal.config import load_settings
from ratestorm._internal.logging import get_logger, setup_logging
from ratestorm.engine.coordinator import RunCoordinator
from ratestorm.transport.selector import TransportSelector

if TYPE_CHECKING:
    from collections.abc import Callable

    from ratestorm._internal.config import RateStormSettings, RunConfig
    from ratestorm.engine.protocol import Sender
    from ratestorm.metrics.models import RunResult, TallySnapshot

logger = get_logger("engine.runner")


def _loop_factory() -> Callable[[], asyncio.AbstractEventLoop] | None:
    """Return uvloop's event loop constructor if available.

    Returns None on Windows or if uvloop is not installed, which makes
    ``asyncio.Runner`` use the default asyncio event loop. The global
    event loop policy is left untouched.
    """
    if sys.platform == "win32":
        return None

    try:
        import uvloop
    except ImportError:
        logger.debug("uvloop not available, using default asyncio event loop")
        return None

    logger.debug("Using uvloop event loop")
    return uvloop.new_event_loop


def run_load_test(
    config: RunConfig,
    *,
    settings: RateStormSettings | None = None,
    sender: Sender | None = None,
    on_snapshot: Callable[[TallySnapshot], None] | None = None,
    on_final: Callable[[TallySnapshot], None] | None = None,
    log_level: int = logging.INFO,
    json_logs: bool = False,
    handle_signals: bool = True,
) -> RunResult:
    """Run a load test in the current process and block until it ends.

    Args:
        config: Validated run configuration.
        settings: Engine settings. Loaded from the environment if None.
        sender: Transport to use. Defaults to a ``TransportSelector``.
        on_snapshot: Optional callback for each window snapshot.
        on_final: Optional callback for the final cumulative snapshot.
        log_level: Logging level for the ``ratestorm`` logger.
        json_logs: Emit structured JSON logs.
        handle_signals: Abort gracefully on SIGINT/SIGTERM.

    Returns:
        RunResult with every window snapshot and the final summary.

    Raises:
        ConfigError: If the environment settings are invalid.
        EngineError: If the run fails.
    """
    setup_logging(level=log_level, json_format=json_logs)
    if settings is None:
        settings = load_settings()
    with asyncio.Runner(loop_factory=_loop_factory()) as runner:
        return runner.run(
            _run(
                config,
                settings=settings,
                sender=sender,
                on_snapshot=on_snapshot,
                on_final=on_final,
                handle_signals=handle_signals,
            )
        )


async def _run(
    config: RunConfig,
    *,
    settings: RateStormSettings,
    sender: Sender | None,
    on_snapshot: Callable[[TallySnapshot], None] | None,
    on_final: Callable[[TallySnapshot], None] | None,
    handle_signals: bool,
) -> RunResult:
    """Async entry point that opens the transports and runs the coordinator."""
    async with contextlib.AsyncExitStack() as stack:
        if sender is None:
            sender = await stack.enter_async_context(
                TransportSelector(settings, pool_size=config.concurrency)
            )
        coordinator = RunCoordinator(
            config,
            sender,
            settings=settings,
            on_snapshot=on_snapshot,
            on_final=on_final,
            handle_signals=handle_signals,
        )
        return await coordinator.run()
