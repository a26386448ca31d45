"""HTTP transports: aiohttp for HTTP/1.1 (plain or TLS), httpx for HTTP/2."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiohttp
import httpx

if TYPE_CHECKING:
    from ratestorm._internal.types import Headers, SendResult


def describe_error(exc: BaseException) -> str:
    """Render an exception as ``"<ExceptionType>: <message>"``."""
    message = str(exc)
    if not message:
        return type(exc).__name__
    return f"{type(exc).__name__}: {message}"


class AiohttpTransport:
    """HTTP/1.1 transport wrapping ``aiohttp.ClientSession``.

    Serves both ``http`` and ``https`` URLs. One instance is shared by all
    workers of a run.

    Attributes:
        pool_size: Maximum simultaneous connections.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        pool_size: int = 100,
        verify_tls: bool = True,
    ) -> None:
        """Initialize the transport.

        Args:
            timeout: Total timeout for one request in seconds.
            pool_size: Maximum simultaneous connections.
            verify_tls: Verify server certificates for ``https`` URLs.
        """
        self.pool_size = pool_size
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._verify_tls = verify_tls
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> AiohttpTransport:
        """Open the underlying aiohttp session."""
        connector = aiohttp.TCPConnector(
            limit=self.pool_size,
            ssl=self._verify_tls,
        )
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            connector=connector,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def send(self, method: str, url: str, body: bytes, headers: Headers) -> SendResult:
        """Send one request and read the whole response body.

        Returns:
            ``(status, None)`` on a response, ``(0, reason)`` on failure.

        Raises:
            RuntimeError: If used outside of an async context manager.
        """
        if self._session is None:
            msg = "AiohttpTransport must be used as an async context manager"
            raise RuntimeError(msg)

        try:
            async with self._session.request(method, url, data=body, headers=headers) as resp:
                await resp.read()
                return resp.status, None
        except (aiohttp.ClientError, OSError) as exc:
            return 0, describe_error(exc)


class Http2Transport:
    """HTTP/2 transport wrapping ``httpx.AsyncClient``.

    Requests are multiplexed over TLS connections. Certificate checks are
    off by default because the tool is aimed at test servers.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        pool_size: int = 100,
        verify_tls: bool = False,
    ) -> None:
        """Initialize the transport.

        Args:
            timeout: Total timeout for one request in seconds.
            pool_size: Maximum simultaneous connections.
            verify_tls: Verify server certificates.
        """
        self.pool_size = pool_size
        self._timeout = httpx.Timeout(timeout)
        self._verify_tls = verify_tls
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Http2Transport:
        """Open the underlying httpx client."""
        self._client = httpx.AsyncClient(
            http2=True,
            verify=self._verify_tls,
            timeout=self._timeout,
            limits=httpx.Limits(max_connections=self.pool_size),
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close the underlying httpx client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, method: str, url: str, body: bytes, headers: Headers) -> SendResult:
        """Send one request; httpx reads the whole body before returning.

        Returns:
            ``(status, None)`` on a response, ``(0, reason)`` on failure.

        Raises:
            RuntimeError: If used outside of an async context manager.
        """
        if self._client is None:
            msg = "Http2Transport must be used as an async context manager"
            raise RuntimeError(msg)

        try:
            resp = await self._client.request(method, url, content=body, headers=headers)
        except (httpx.HTTPError, OSError) as exc:
            return 0, describe_error(exc)
        return resp.status_code, None
