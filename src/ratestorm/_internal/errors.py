"""Custom exception hierarchy for RateStorm."""

from __future__ import annotations


class RateStormError(Exception):
    """Base exception for all RateStorm errors.

    All custom exceptions in RateStorm inherit from this class, making it
    easy to catch any RateStorm-specific error with a single except clause.
    """


class ConfigError(RateStormError):
    """Raised when run configuration is invalid or missing.

    Always raised before any worker starts, so a run that fails with this
    error has performed zero requests.

    Examples:
        - The target URL cannot be parsed or uses an unsupported scheme.
        - Rate, concurrency, or duration is not positive.
        - An environment variable has an invalid value.
    """


class EngineError(RateStormError):
    """Raised when a load test fails for a reason other than configuration."""


class ProgrammingError(RateStormError):
    """Raised when the engine's components are wired together incorrectly.

    Signals a bug in the caller (usually the coordinator), not a runtime
    condition such as a failed request.
    """


class ChannelClosedError(ProgrammingError):
    """Raised when an outcome is pushed onto a closed result channel."""
