"""Scheme-based transport selection."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

from ratestorm._internal.config import SUPPORTED_SCHEMES, RateStormSettings
from ratestorm._internal.errors import ConfigError
from ratestorm._internal.logging import get_logger
from ratestorm.transport.clients import AiohttpTransport, Http2Transport
from ratestorm.transport.http3 import Http3Transport

if TYPE_CHECKING:
    from ratestorm._internal.types import Headers, SendResult

logger = get_logger("transport.selector")

_Transport = AiohttpTransport | Http2Transport | Http3Transport

# scheme -> (transport kind, scheme actually sent on the wire)
_SCHEME_ROUTES: dict[str, tuple[str, str]] = {
    "http": ("http1", "http"),
    "https": ("http1", "https"),
    "h2": ("http2", "https"),
    "h3": ("http3", "https"),
}


def supported_schemes() -> tuple[str, ...]:
    """Return the URL schemes a ``TransportSelector`` can serve."""
    return SUPPORTED_SCHEMES


def resolve_url(url: str) -> tuple[str, str]:
    """Map a target URL onto a transport kind and a wire URL.

    ``h2://host/path`` is sent as ``https://host/path`` over HTTP/2 and
    ``h3://host/path`` the same way over HTTP/3 (QUIC). ``https`` stays on
    HTTP/1.1 over TLS; other supported schemes are sent unchanged.

    Args:
        url: Target URL.

    Returns:
        ``(kind, wire_url)`` where kind is ``"http1"``, ``"http2"`` or
            ``"http3"``.

    Raises:
        ConfigError: If the scheme is not supported.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in _SCHEME_ROUTES:
        msg = f"No transport for URL scheme {parts.scheme!r}"
        raise ConfigError(msg)

    kind, wire_scheme = _SCHEME_ROUTES[scheme]
    if wire_scheme != scheme:
        url = urlunsplit(parts._replace(scheme=wire_scheme))
    return kind, url


class TransportSelector:
    """Sends requests over the transport that matches each URL's scheme.

    Transports are opened lazily, one per kind, and shared by every worker
    of the run. Use as an async context manager; leaving the context closes
    every transport that was opened.

    ``send()`` never raises for request-level failures: they come back as
    ``(0, reason)``.
    """

    def __init__(self, settings: RateStormSettings | None = None, *, pool_size: int = 100) -> None:
        """Initialize the selector.

        Args:
            settings: Engine settings (request timeout). Defaults apply if None.
            pool_size: Connection limit handed to each transport.
        """
        self._settings = settings or RateStormSettings()
        self._pool_size = pool_size
        self._transports: dict[str, _Transport] = {}
        self._stack: contextlib.AsyncExitStack | None = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> TransportSelector:
        self._stack = contextlib.AsyncExitStack()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None
        self._transports.clear()

    async def _transport_for(self, kind: str) -> _Transport:
        if self._stack is None:
            msg = "TransportSelector must be used as an async context manager"
            raise RuntimeError(msg)

        async with self._lock:
            transport = self._transports.get(kind)
            if transport is None:
                timeout = self._settings.request_timeout
                if kind == "http2":
                    transport = Http2Transport(timeout=timeout, pool_size=self._pool_size)
                elif kind == "http3":
                    transport = Http3Transport(timeout=timeout)
                else:
                    transport = AiohttpTransport(timeout=timeout, pool_size=self._pool_size)
                await self._stack.enter_async_context(transport)
                self._transports[kind] = transport
                logger.debug("Opened %s transport (pool_size=%d)", kind, self._pool_size)
            return transport

    async def send(self, method: str, url: str, body: bytes, headers: Headers) -> SendResult:
        """Send one request over the transport chosen by the URL scheme.

        Args:
            method: HTTP method.
            url: Target URL (``http``, ``https``, ``h2`` or ``h3``).
            body: Request body.
            headers: Request headers.

        Returns:
            ``(status_code, None)`` or ``(0, reason)``.

        Raises:
            ConfigError: If the URL scheme is not supported.
            RuntimeError: If used outside of an async context manager.
        """
        kind, wire_url = resolve_url(url)
        transport = await self._transport_for(kind)
        return await transport.send(method, wire_url, body, headers)
