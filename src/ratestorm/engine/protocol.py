"""Types exchanged between the engine, its workers and the transport layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ratestorm._internal.types import Headers, SendResult


class Sender(Protocol):
    """Anything that can send one HTTP request.

    ``TransportSelector`` is the production implementation. Tests plug in
    fakes with the same coroutine signature.
    """

    async def send(
        self,
        method: str,
        url: str,
        body: bytes,
        headers: Headers,
    ) -> SendResult:
        """Send one request and fully read the response.

        Returns:
            ``(status_code, None)`` for a response, or ``(0, reason)`` when
            the request failed before a response arrived.
        """
        ...


@dataclass(frozen=True)
class WorkerResult:
    """Counters reported by a worker when it exits.

    Attributes:
        worker_id: Identifier of the worker that produced this result.
        total_requests: Requests the worker performed.
        error_count: Requests that failed without a response.
        dropped: Outcomes the channel refused because it was full.
        cancelled: True if the worker was hard-cancelled at shutdown.
    """

    worker_id: int
    total_requests: int
    error_count: int
    dropped: int = 0
    cancelled: bool = False
