"""Logging setup for RateStorm.

Everything logs under the ``ratestorm`` namespace through stdlib
``logging``. The CLI installs one stderr handler via ``setup_logging()``;
library users who never call it get Python's default behaviour.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

_ROOT_LOGGER = "ratestorm"
_HANDLER_NAME = "ratestorm-stderr"
_TEXT_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# LogRecord attributes passed through ``extra=`` that the JSON formatter keeps.
_EXTRA_FIELDS = ("worker_id", "window", "status_code")


class _JsonFormatter(logging.Formatter):
    """Formats each record as one JSON object per line.

    Keys: timestamp, level, logger, message, any of ``_EXTRA_FIELDS`` the
    record carries, and ``exception`` when exc_info is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({name: getattr(record, name) for name in _EXTRA_FIELDS if hasattr(record, name)})
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _make_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return _JsonFormatter()
    return logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT)


def _find_handler(logger: logging.Logger) -> logging.Handler | None:
    for handler in logger.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return handler
    return None


def setup_logging(
    level: int = logging.INFO,
    *,
    json_format: bool = False,
) -> logging.Logger:
    """Configure and return the ``ratestorm`` logger.

    Installs one handler on the current ``sys.stderr``. A later call
    replaces that handler instead of adding a second one, so level, format
    and stream always reflect the most recent call.

    Args:
        level: Logging level, e.g. ``logging.DEBUG``.
        json_format: Emit one JSON object per line instead of plain text.

    Returns:
        The configured ``ratestorm`` logger.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(level)

    previous = _find_handler(logger)
    if previous is not None:
        logger.removeHandler(previous)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setLevel(level)
    handler.setFormatter(_make_formatter(json_format))
    logger.addHandler(handler)

    # Records stop here; the root logger would print them twice
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``ratestorm.<name>``, e.g. ``get_logger("engine.worker")``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")
