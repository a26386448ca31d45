"""HTTP/3 transport over QUIC, built on aioquic."""

from __future__ import annotations

import asyncio
import contextlib
import ssl
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from aioquic.asyncio.client import connect
from aioquic.asyncio.protocol import QuicConnectionProtocol
from aioquic.h3.connection import H3_ALPN, H3Connection
from aioquic.h3.events import DataReceived, H3Event, HeadersReceived
from aioquic.h3.exceptions import H3Error
from aioquic.quic.configuration import QuicConfiguration
from aioquic.quic.events import ConnectionTerminated, QuicEvent, StreamReset

from ratestorm._internal.logging import get_logger
from ratestorm.transport.clients import describe_error

if TYPE_CHECKING:
    from ratestorm._internal.types import Headers, SendResult

logger = get_logger("transport.http3")

_DEFAULT_PORT = 443
_USER_AGENT = "ratestorm"


class H3ClientProtocol(QuicConnectionProtocol):
    """QUIC connection that carries HTTP/3 requests on its streams.

    Each request gets its own bidirectional stream; the connection is
    shared by every request to the same origin. A request resolves with
    the final status code once the server ends the stream, so the whole
    body has been read by then.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._http = H3Connection(self._quic)
        self._waiters: dict[int, asyncio.Future[int]] = {}
        self._statuses: dict[int, int] = {}
        self._terminated: str | None = None

    @property
    def terminated(self) -> bool:
        """Return True once the QUIC connection has closed."""
        return self._terminated is not None

    def quic_event_received(self, event: QuicEvent) -> None:
        if isinstance(event, ConnectionTerminated):
            self._terminated = event.reason_phrase or f"error code {event.error_code}"
            self._fail_all(ConnectionError(f"QUIC connection closed: {self._terminated}"))
            return
        if isinstance(event, StreamReset):
            self._fail(event.stream_id, ConnectionResetError(f"stream reset by peer (code {event.error_code})"))
            return

        for http_event in self._http.handle_event(event):
            self._http_event_received(http_event)

    def _http_event_received(self, event: H3Event) -> None:
        if isinstance(event, HeadersReceived):
            for name, value in event.headers:
                if name == b":status":
                    self._statuses[event.stream_id] = int(value)
        if not isinstance(event, HeadersReceived | DataReceived) or not event.stream_ended:
            return

        waiter = self._waiters.pop(event.stream_id, None)
        status = self._statuses.pop(event.stream_id, None)
        if waiter is None or waiter.done():
            return
        if status is None:
            waiter.set_exception(ConnectionError("stream ended without a response status"))
        else:
            waiter.set_result(status)

    def _fail(self, stream_id: int, exc: Exception) -> None:
        self._statuses.pop(stream_id, None)
        waiter = self._waiters.pop(stream_id, None)
        if waiter is not None and not waiter.done():
            waiter.set_exception(exc)

    def _fail_all(self, exc: Exception) -> None:
        for stream_id in list(self._waiters):
            self._fail(stream_id, exc)

    async def request(
        self,
        method: str,
        authority: str,
        path: str,
        body: bytes,
        headers: Headers,
    ) -> int:
        """Send one request and wait for the end of its response.

        Returns:
            The final response status code.

        Raises:
            ConnectionError: If the connection or the stream closes first.
        """
        if self._terminated is not None:
            msg = f"QUIC connection closed: {self._terminated}"
            raise ConnectionError(msg)

        stream_id = self._quic.get_next_available_stream_id()
        h3_headers = [
            (b":method", method.encode()),
            (b":scheme", b"https"),
            (b":authority", authority.encode()),
            (b":path", path.encode()),
            (b"user-agent", _USER_AGENT.encode()),
        ]
        h3_headers.extend((name.lower().encode(), value.encode()) for name, value in headers.items())

        waiter: asyncio.Future[int] = self._loop.create_future()
        self._waiters[stream_id] = waiter
        self._http.send_headers(stream_id=stream_id, headers=h3_headers, end_stream=not body)
        if body:
            self._http.send_data(stream_id=stream_id, data=body, end_stream=True)
        self.transmit()

        try:
            return await waiter
        finally:
            self._waiters.pop(stream_id, None)
            self._statuses.pop(stream_id, None)


class Http3Transport:
    """HTTP/3 transport: one multiplexed QUIC connection per origin.

    Connections are opened on first use and reopened if the server closes
    them. Certificate checks are off by default because the tool is aimed
    at test servers.
    """

    def __init__(self, *, timeout: float = 30.0, verify_tls: bool = False) -> None:
        """Initialize the transport.

        Args:
            timeout: Total timeout for one request in seconds, including
                the QUIC handshake when a connection has to be opened.
            verify_tls: Verify server certificates.
        """
        self._timeout = timeout
        self._verify_tls = verify_tls
        self._connections: dict[tuple[str, int], H3ClientProtocol] = {}
        self._stack: contextlib.AsyncExitStack | None = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> Http3Transport:
        self._stack = contextlib.AsyncExitStack()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close every QUIC connection that was opened."""
        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None
        self._connections.clear()

    def _configuration(self) -> QuicConfiguration:
        configuration = QuicConfiguration(
            is_client=True,
            alpn_protocols=H3_ALPN,
            idle_timeout=max(self._timeout, 1.0),
        )
        if not self._verify_tls:
            configuration.verify_mode = ssl.CERT_NONE
        return configuration

    async def _connection_for(self, host: str, port: int) -> H3ClientProtocol:
        if self._stack is None:
            msg = "Http3Transport must be used as an async context manager"
            raise RuntimeError(msg)

        async with self._lock:
            protocol = self._connections.get((host, port))
            if protocol is None or protocol.terminated:
                protocol = await self._stack.enter_async_context(
                    connect(
                        host,
                        port,
                        configuration=self._configuration(),
                        create_protocol=H3ClientProtocol,
                    )
                )
                self._connections[(host, port)] = protocol
                logger.debug("Opened QUIC connection to %s:%d", host, port)
            return protocol

    async def send(self, method: str, url: str, body: bytes, headers: Headers) -> SendResult:
        """Send one request over HTTP/3.

        Args:
            method: HTTP method.
            url: ``https`` URL of the target.
            body: Request body.
            headers: Request headers.

        Returns:
            ``(status, None)`` on a response, ``(0, reason)`` on failure.

        Raises:
            RuntimeError: If used outside of an async context manager.
        """
        if self._stack is None:
            msg = "Http3Transport must be used as an async context manager"
            raise RuntimeError(msg)

        parts = urlsplit(url)
        host = parts.hostname or ""
        port = parts.port or _DEFAULT_PORT
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        try:
            async with asyncio.timeout(self._timeout):
                protocol = await self._connection_for(host, port)
                status = await protocol.request(method, parts.netloc, path, body, headers)
        except (OSError, H3Error) as exc:
            return 0, describe_error(exc)
        return status, None
