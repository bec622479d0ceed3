"""Shared fixtures: a recording upstream server, a fake transport, and gateway clients."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from overlay_proxy.proxy_service.server import create_app
from overlay_proxy.proxy_service.upstream.base_transport import UpstreamTransport
from overlay_proxy.shared.config import Settings
from overlay_proxy.shared.models import OutboundRequest, UpstreamResponse

CONFIG_ENV_VARS = (
    "ALLOW_ORIGIN",
    "ALLOWED_HOSTS",
    "AUTH_TOKEN",
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "REQUEST_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the host environment out of Settings."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@dataclass
class ReceivedRequest:
    method: str
    path: str
    query_string: str
    headers: dict[str, str]
    body: str
    body_exists: bool


@dataclass
class RecordingUpstream:
    """Real aiohttp server standing in for the third-party API."""

    server: TestServer
    received: list[ReceivedRequest] = field(default_factory=list)
    disconnected: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def host(self) -> str:
        return f"{self.server.host}:{self.server.port}"

    def url(self, path: str) -> str:
        return f"http://{self.host}{path}"


class RecordingTransport(UpstreamTransport):
    """Transport double that records outbound requests instead of sending them."""

    def __init__(
        self,
        response: UpstreamResponse | None = None,
        error: Exception | None = None,
    ) -> None:
        self.response = response or UpstreamResponse(status=200, body='{"ok":true}')
        self.error = error
        self.sent: list[OutboundRequest] = []

    async def send(self, request: OutboundRequest) -> UpstreamResponse:
        self.sent.append(request)
        if self.error is not None:
            raise self.error
        return self.response


def _build_upstream_app(
    received: list[ReceivedRequest], disconnected: asyncio.Event
) -> web.Application:
    async def record(request: web.Request) -> None:
        body = await request.text()
        received.append(
            ReceivedRequest(
                method=request.method,
                path=request.path,
                query_string=request.query_string,
                headers=dict(request.headers),
                body=body,
                body_exists=request.body_exists,
            )
        )

    async def echo(request: web.Request) -> web.Response:
        await record(request)
        return web.json_response({"method": request.method})

    async def status(request: web.Request) -> web.Response:
        await record(request)
        code = int(request.match_info["code"])
        return web.Response(text=f"status {code}", status=code, content_type="text/plain")

    async def redirect(request: web.Request) -> web.Response:
        await record(request)
        return web.Response(status=302, headers={"Location": "/echo"})

    async def slow(request: web.Request) -> web.Response:
        await record(request)
        await asyncio.sleep(1)
        return web.Response(text="late")

    async def hang(request: web.Request) -> web.Response:
        """Hold the request open until the caller goes away."""
        await record(request)
        try:
            for _ in range(500):
                if request.transport is None or request.transport.is_closing():
                    disconnected.set()
                    break
                await asyncio.sleep(0.01)
        except asyncio.CancelledError:
            disconnected.set()
            raise
        return web.Response(text="gone")

    app = web.Application()
    app.router.add_route("*", "/echo", echo)
    app.router.add_route("*", "/status/{code}", status)
    app.router.add_get("/redirect", redirect)
    app.router.add_get("/slow", slow)
    app.router.add_get("/hang", hang)
    return app


@pytest.fixture
async def upstream() -> AsyncIterator[RecordingUpstream]:
    received: list[ReceivedRequest] = []
    disconnected = asyncio.Event()
    server = TestServer(_build_upstream_app(received, disconnected))
    await server.start_server()
    try:
        yield RecordingUpstream(server=server, received=received, disconnected=disconnected)
    finally:
        await server.close()


GatewayFactory = Callable[..., Awaitable[TestClient]]


@pytest.fixture
async def make_gateway() -> AsyncIterator[GatewayFactory]:
    """Start gateway clients on demand; every client is closed after the test."""
    clients: list[TestClient] = []

    async def _make(
        settings: Settings | None = None,
        transport: UpstreamTransport | None = None,
    ) -> TestClient:
        app = create_app(settings or Settings(), transport)
        client = TestClient(TestServer(app))
        await client.start_server()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.close()


@pytest.fixture
async def proxied(
    upstream: RecordingUpstream, make_gateway: GatewayFactory
) -> TestClient:
    """Gateway whose allowlist contains the recording upstream."""
    return await make_gateway(Settings(allowed_hosts=upstream.host))
