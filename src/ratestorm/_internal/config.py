"""Run configuration and environment settings for RateStorm."""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from ratestorm._internal.errors import ConfigError

# URL schemes the transport selector knows how to serve.
SUPPORTED_SCHEMES = ("http", "https", "h2", "h3")

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


@dataclass(frozen=True)
class RunConfig:
    """Immutable description of one load test run.

    Build instances with ``build_run_config()``, which validates every
    field. The coordinator owns the config; workers only read it.

    Attributes:
        url: Target URL. Its scheme selects the transport.
        method: Upper-case HTTP method.
        rate: Requests per second shared by all workers.
        concurrency: Number of concurrent workers.
        duration_seconds: Total run time in seconds.
    """

    url: str
    method: str = "GET"
    rate: int = 10
    concurrency: int = 5
    duration_seconds: float = 30.0

    @property
    def scheme(self) -> str:
        """Return the lower-case URL scheme."""
        return urlsplit(self.url).scheme.lower()


@dataclass(frozen=True)
class RateStormSettings:
    """Engine settings that are not part of a run's identity.

    Attributes:
        request_timeout: Total timeout for one request in seconds.
        channel_capacity: Capacity of the result channel.
        report_interval: Seconds per tally window.
        shutdown_grace: Seconds to wait for in-flight requests after the
            deadline before they are cancelled.
    """

    request_timeout: float = 30.0
    channel_capacity: int = 100
    report_interval: float = 1.0
    shutdown_grace: float = 5.0


def parse_duration(value: str | float) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go-style duration strings made of
    one or more ``<number><unit>`` parts, e.g. ``"30s"``, ``"1m30s"``,
    ``"500ms"``, ``"1.5h"``.

    Args:
        value: Seconds as a number, or a duration string.

    Returns:
        Duration in seconds.

    Raises:
        ConfigError: If the value cannot be parsed.
    """
    if isinstance(value, bool):
        msg = f"invalid duration: {value!r}"
        raise ConfigError(msg)
    if isinstance(value, int | float):
        return float(value)

    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass

    if not text:
        msg = "invalid duration: empty string"
        raise ConfigError(msg)

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        msg = f"invalid duration: {value!r}"
        raise ConfigError(msg)
    return total


def validate_url(url: str) -> str:
    """Check that ``url`` is absolute and uses a supported scheme.

    Args:
        url: Target URL as given by the user.

    Returns:
        The URL, stripped of surrounding whitespace.

    Raises:
        ConfigError: If the URL is empty, unparseable, has no host, or uses
            a scheme no transport serves.
    """
    url = url.strip()
    if not url:
        msg = "URL is required"
        raise ConfigError(msg)

    try:
        parts = urlsplit(url)
        # Accessing .port validates the port component
        _ = parts.port
    except ValueError as exc:
        msg = f"Invalid URL: {url!r} ({exc})"
        raise ConfigError(msg) from None

    scheme = parts.scheme.lower()
    if scheme not in SUPPORTED_SCHEMES:
        msg = (
            f"Invalid URL: unsupported scheme {parts.scheme!r} in {url!r}; "
            f"expected one of: {', '.join(SUPPORTED_SCHEMES)}"
        )
        raise ConfigError(msg)

    if not parts.hostname:
        msg = f"Invalid URL: missing host in {url!r}"
        raise ConfigError(msg)

    return url


def _require_positive_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{name} must be an integer, got: {value!r}"
        raise ConfigError(msg)
    if value < 1:
        msg = f"{name} must be positive, got: {value}"
        raise ConfigError(msg)
    return value


def build_run_config(
    url: str,
    *,
    method: str = "GET",
    rate: int = 10,
    concurrency: int = 5,
    duration: str | float = 30.0,
) -> RunConfig:
    """Validate user input and build a ``RunConfig``.

    Args:
        url: Target URL.
        method: HTTP method, any case.
        rate: Requests per second. Must be >= 1.
        concurrency: Worker count. Must be >= 1.
        duration: Run time in seconds or as a duration string.

    Returns:
        A validated RunConfig.

    Raises:
        ConfigError: If any value is invalid.
    """
    url = validate_url(url)

    method = method.strip().upper()
    if not method.isalpha():
        msg = f"method must be an HTTP method name, got: {method!r}"
        raise ConfigError(msg)

    rate = _require_positive_int("rate", rate)
    concurrency = _require_positive_int("concurrency", concurrency)

    duration_seconds = parse_duration(duration)
    if not 0 < duration_seconds < math.inf:
        msg = f"duration must be positive, got: {duration!r}"
        raise ConfigError(msg)

    return RunConfig(
        url=url,
        method=method,
        rate=rate,
        concurrency=concurrency,
        duration_seconds=duration_seconds,
    )


def _env_number(name: str, default: str, cast: type[int] | type[float]) -> int | float:
    raw = os.environ.get(name, default)
    try:
        value = cast(raw)
    except ValueError:
        kind = "an integer" if cast is int else "a number"
        msg = f"{name} must be {kind}, got: {raw!r}"
        raise ConfigError(msg) from None
    if not math.isfinite(value) or not value > 0:
        msg = f"{name} must be a finite positive number, got: {value}"
        raise ConfigError(msg)
    return value


def load_settings() -> RateStormSettings:
    """Load engine settings from environment variables with defaults.

    Environment variables:
        RATESTORM_TIMEOUT: Request timeout in seconds (default: 30.0).
        RATESTORM_CHANNEL_CAPACITY: Result channel capacity (default: 100).
        RATESTORM_REPORT_INTERVAL: Seconds per tally window (default: 1.0).
        RATESTORM_SHUTDOWN_GRACE: Seconds to wait for in-flight requests
            after the deadline (default: 5.0).

    Returns:
        Populated RateStormSettings instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    return RateStormSettings(
        request_timeout=float(_env_number("RATESTORM_TIMEOUT", "30.0", float)),
        channel_capacity=int(_env_number("RATESTORM_CHANNEL_CAPACITY", "100", int)),
        report_interval=float(_env_number("RATESTORM_REPORT_INTERVAL", "1.0", float)),
        shutdown_grace=float(_env_number("RATESTORM_SHUTDOWN_GRACE", "5.0", float)),
    )
