"""Request payload sent with every load test request."""

from __future__ import annotations

import gzip
from dataclasses import dataclass, field

from ratestorm._internal.types import Headers

DEFAULT_MESSAGE = b"This is a stress test payload"


@dataclass(frozen=True)
class Payload:
    """Pre-built request body and the headers describing it.

    Attributes:
        body: Encoded request body.
        headers: Headers sent with every request.
    """

    body: bytes
    headers: Headers = field(default_factory=dict)


def build_payload(message: bytes = DEFAULT_MESSAGE) -> Payload:
    """Build the gzip-compressed payload sent by every worker.

    Built once per run; workers share the result read-only.

    Args:
        message: Uncompressed body content.

    Returns:
        Payload with a gzip body and matching ``Content-Encoding`` and
        ``Content-Type`` headers.
    """
    return Payload(
        body=gzip.compress(message),
        headers={
            "Content-Encoding": "gzip",
            "Content-Type": "application/json",
        },
    )
