"""
Overlay Proxy - CORS forwarding gateway
Lets browser front ends reach allowlisted upstream APIs.
"""

import asyncio

import uvloop
from aiohttp import web

from overlay_proxy.proxy_service.handlers import ForwardingGateway
from overlay_proxy.proxy_service.upstream.base_transport import UpstreamTransport
from overlay_proxy.proxy_service.upstream.http.transport import HTTPUpstreamTransport
from overlay_proxy.shared.config import Settings, get_settings
from overlay_proxy.shared.logging import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    transport: UpstreamTransport | None = None,
) -> web.Application:
    """Create the application with every method and path routed to the gateway."""
    settings = settings or get_settings()
    transport = transport or HTTPUpstreamTransport(timeout=settings.request_timeout)

    gateway = ForwardingGateway(settings, transport)

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", gateway.handle)

    return app


class ProxyServer:
    """Main server class binding the gateway application to a TCP site."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    async def start(self) -> None:
        """Start the proxy server."""
        app = create_app(self.settings)

        runner = web.AppRunner(app)
        await runner.setup()

        site = web.TCPSite(runner, self.settings.host, self.settings.port)
        await site.start()

        logger.info(f"Overlay proxy started on http://{self.settings.host}:{self.settings.port}")
        logger.info(f"Allowed upstream hosts: {', '.join(sorted(self.settings.allowed_host_set))}")
        logger.info(f"Token check {'enabled' if self.settings.auth_token else 'disabled'}")

        # Keep running
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()
            logger.info("Overlay proxy stopped")


def main() -> None:
    """Entry point for the server."""
    settings = get_settings()
    setup_logging(settings.log_level)
    server = ProxyServer(settings)

    try:
        uvloop.run(server.start())
    except KeyboardInterrupt:
        logger.info("Server stopped by user")


if __name__ == "__main__":
    main()
