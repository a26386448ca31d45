"""Shared type aliases for RateStorm."""

from __future__ import annotations

# HTTP headers dictionary.
Headers = dict[str, str]

# Result of one send: (status_code, error). status_code is 0 when error is set.
SendResult = tuple[int, str | None]
