"""RateStorm — rate-limited concurrent HTTP stress testing."""

from __future__ import annotations

from ratestorm._internal.config import RateStormSettings, RunConfig, build_run_config
from ratestorm._internal.errors import ConfigError, RateStormError
from ratestorm.engine.channel import ResultChannel
from ratestorm.engine.coordinator import RunCoordinator
from ratestorm.engine.rate_limiter import TickRateLimiter
from ratestorm.engine.runner import run_load_test
from ratestorm.metrics.aggregator import StatusAggregator
from ratestorm.metrics.models import Outcome, RunResult, TallySnapshot
from ratestorm.transport.selector import TransportSelector

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "Outcome",
    "RateStormError",
    "RateStormSettings",
    "ResultChannel",
    "RunConfig",
    "RunCoordinator",
    "RunResult",
    "StatusAggregator",
    "TallySnapshot",
    "TickRateLimiter",
    "TransportSelector",
    "build_run_config",
    "run_load_test",
]
