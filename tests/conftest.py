"""Shared test fixtures for the RateStorm test suite."""

from __future__ import annotations

import asyncio
import itertools
import json
import socket
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

import pytest
import trustme
from aiohttp import web
from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from ratestorm._internal.config import RateStormSettings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterator

    from ratestorm._internal.types import Headers, SendResult


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


def _get_free_udp_port() -> int:
    """Find an available UDP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def _wait_for_port(host: str, port: int, timeout: float = 5.0) -> None:
    """Wait until a TCP server accepts connections on (host, port)."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        try:
            _reader, writer = await asyncio.open_connection(host, port)
        except OSError:
            if asyncio.get_running_loop().time() > deadline:
                raise
            await asyncio.sleep(0.05)
        else:
            writer.close()
            await writer.wait_closed()
            return


@pytest.fixture
def refused_url() -> str:
    """URL of a local port nobody listens on."""
    return f"http://127.0.0.1:{_get_free_port()}/"


# =============================================================================
# Target server handlers
# =============================================================================

HITS = web.AppKey("hits", list[str])


@web.middleware
async def _count_hits(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    """Record the path of every request the target receives."""
    request.app[HITS].append(request.path)
    return await handler(request)


async def _echo_handler(request: web.Request) -> web.Response:
    """Echo back request details as JSON."""
    body = await request.read()
    return web.json_response(
        {
            "method": request.method,
            "path": str(request.path),
            "headers": dict(request.headers),
            "body_length": len(body),
        },
        status=200,
    )


async def _status_handler(request: web.Request) -> web.Response:
    """Return a configurable status (query param: ?code=503)."""
    code = int(request.query.get("code", "200"))
    return web.Response(text="status", status=code)


async def _slow_handler(request: web.Request) -> web.Response:
    """Respond after a configurable delay (query param: ?delay=0.5)."""
    delay = float(request.query.get("delay", "0.5"))
    await asyncio.sleep(delay)
    return web.Response(text="slow")


def _create_target_app() -> web.Application:
    """Build the target server app with all test routes."""
    flaky_codes = itertools.cycle((200, 503))

    async def _flaky_handler(request: web.Request) -> web.Response:
        """Alternate between 200 and 503."""
        return web.Response(text="flaky", status=next(flaky_codes))

    app = web.Application(middlewares=[_count_hits])
    app[HITS] = []
    app.router.add_route("*", "/echo{path:.*}", _echo_handler)
    app.router.add_route("*", "/status", _status_handler)
    app.router.add_route("*", "/slow", _slow_handler)
    app.router.add_route("*", "/flaky", _flaky_handler)
    return app


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def target_server() -> AsyncIterator[str]:
    """Aiohttp target server running on the test's event loop.

    Returns the base URL (e.g., 'http://127.0.0.1:54321').
    """
    app = _create_target_app()
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    yield f"http://127.0.0.1:{port}"
    await runner.cleanup()


@dataclass
class SyncTarget:
    """Handle on a target server running in a background thread."""

    url: str
    hits: list[str] = field(default_factory=list)


@pytest.fixture
def sync_target() -> Iterator[SyncTarget]:
    """Target server running in a background thread for sync tests.

    Needed wherever the code under test calls ``asyncio.run`` itself and
    blocks the main thread (the runner and the CLI). ``hits`` lists the
    path of every request the server received.
    """
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []
    app = _create_target_app()

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        runner = web.AppRunner(app)
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)

    yield SyncTarget(url=f"http://127.0.0.1:{port}", hits=app[HITS])

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)


@pytest.fixture
def sync_target_server(sync_target: SyncTarget) -> str:
    """Base URL of the background-thread target server."""
    return sync_target.url


# =============================================================================
# TLS target server (HTTP/2 over TCP, HTTP/3 over QUIC)
# =============================================================================


def _create_asgi_target(requests: list[dict[str, Any]]) -> Callable[..., Awaitable[None]]:
    """Build an ASGI app answering ``?code=`` with that status.

    Every request is appended to ``requests`` with its HTTP version,
    method, headers and body, so tests can see which protocol was used.
    """

    async def app(scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope["type"] == "lifespan":
            while True:
                message = await receive()
                if message["type"] == "lifespan.startup":
                    await send({"type": "lifespan.startup.complete"})
                elif message["type"] == "lifespan.shutdown":
                    await send({"type": "lifespan.shutdown.complete"})
                    return

        body = b""
        more_body = True
        while more_body:
            message = await receive()
            body += message.get("body", b"")
            more_body = message.get("more_body", False)

        headers = {name.decode(): value.decode() for name, value in scope["headers"]}
        requests.append(
            {
                "http_version": scope["http_version"],
                "method": scope["method"],
                "path": scope["path"],
                "headers": headers,
                "body": body,
            }
        )

        query = parse_qs(scope["query_string"].decode())
        status = int(query.get("code", ["200"])[0])
        response = json.dumps({"http_version": scope["http_version"]}).encode()
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [(b"content-type", b"application/json")],
            }
        )
        await send({"type": "http.response.body", "body": response})

    return app


@dataclass
class TlsTarget:
    """Handle on the TLS target server.

    The same app is served over TLS on ``tcp_port`` (HTTP/2 and HTTP/1.1
    through ALPN) and over QUIC on ``udp_port`` (HTTP/3).
    """

    host: str
    tcp_port: int
    udp_port: int
    requests: list[dict[str, Any]] = field(default_factory=list)

    def https_url(self, path: str = "/") -> str:
        return f"https://{self.host}:{self.tcp_port}{path}"

    def h2_url(self, path: str = "/") -> str:
        return f"h2://{self.host}:{self.tcp_port}{path}"

    def quic_url(self, path: str = "/") -> str:
        return f"https://{self.host}:{self.udp_port}{path}"

    def h3_url(self, path: str = "/") -> str:
        return f"h3://{self.host}:{self.udp_port}{path}"

    @property
    def http_versions(self) -> list[str]:
        return [request["http_version"] for request in self.requests]


@pytest.fixture(scope="session")
def tls_cert_files(tmp_path_factory: pytest.TempPathFactory) -> tuple[str, str]:
    """Self-signed certificate and key for 127.0.0.1, as PEM file paths."""
    ca = trustme.CA()
    server_cert = ca.issue_cert("127.0.0.1", "localhost")
    directory = tmp_path_factory.mktemp("tls")
    cert_path = directory / "server.pem"
    key_path = directory / "server.key"
    for blob in server_cert.cert_chain_pems:
        blob.write_to_path(str(cert_path), append=True)
    server_cert.private_key_pem.write_to_path(str(key_path))
    return str(cert_path), str(key_path)


@pytest.fixture
async def tls_target_server(tls_cert_files: tuple[str, str]) -> AsyncIterator[TlsTarget]:
    """Hypercorn server on the test's event loop speaking HTTP/2 and HTTP/3."""
    certfile, keyfile = tls_cert_files
    target = TlsTarget(host="127.0.0.1", tcp_port=_get_free_port(), udp_port=_get_free_udp_port())

    config = HypercornConfig()
    config.bind = [f"{target.host}:{target.tcp_port}"]
    config.quic_bind = [f"{target.host}:{target.udp_port}"]
    config.certfile = certfile
    config.keyfile = keyfile

    shutdown = asyncio.Event()
    server = asyncio.create_task(serve(_create_asgi_target(target.requests), config, shutdown_trigger=shutdown.wait))
    await _wait_for_port(target.host, target.tcp_port)
    yield target

    shutdown.set()
    await asyncio.wait_for(server, timeout=5.0)


# =============================================================================
# Fake senders
# =============================================================================


class FakeSender:
    """In-memory sender that answers from a fixed cycle of results.

    Records every call so tests can count requests and check timing.
    """

    def __init__(self, results: list[SendResult] | None = None, *, delay: float = 0.0) -> None:
        self._results = itertools.cycle(results or [(200, None)])
        self._delay = delay
        self.calls: list[tuple[str, str, bytes, Headers]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, method: str, url: str, body: bytes, headers: Headers) -> SendResult:
        self.calls.append((method, url, body, headers))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
            else:
                await asyncio.sleep(0)
            return next(self._results)
        finally:
            self.in_flight -= 1


@pytest.fixture
def fast_settings() -> RateStormSettings:
    """Settings with short windows and grace for quick engine tests."""
    return RateStormSettings(
        request_timeout=2.0,
        channel_capacity=100,
        report_interval=0.25,
        shutdown_grace=1.0,
    )


@pytest.fixture
def make_sender() -> type[FakeSender]:
    """Return the ``FakeSender`` class so tests can build configured fakes."""
    return FakeSender
