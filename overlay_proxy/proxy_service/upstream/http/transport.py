"""aiohttp transport implementation for upstream calls."""

import aiohttp

from overlay_proxy.proxy_service.upstream.base_transport import UpstreamError, UpstreamTransport
from overlay_proxy.shared.logging import get_logger
from overlay_proxy.shared.models import OutboundRequest, UpstreamResponse

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/json"


class HTTPUpstreamTransport(UpstreamTransport):
    """Issues each outbound call on its own short-lived ClientSession."""

    def __init__(self, timeout: float | None = None):
        """
        Initialize HTTP transport.

        Args:
            timeout: Total request timeout in seconds, None for no limit
        """
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def send(self, request: OutboundRequest) -> UpstreamResponse:
        """Send request over HTTP without following redirects."""
        data = request.body.encode("utf-8") if request.body is not None else None

        logger.debug(f"Sending {request.method} upstream", extra={"url": request.url})

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.request(
                    method=request.method,
                    url=request.url,
                    headers=request.headers,
                    data=data,
                    allow_redirects=False,
                ) as response:
                    content_type = response.headers.get("Content-Type") or DEFAULT_CONTENT_TYPE
                    body = await response.read()
        except TimeoutError:
            raise
        except aiohttp.ClientError as exc:
            raise UpstreamError(f"{request.method} {request.url} failed: {exc}") from exc

        logger.debug(f"Received {response.status} from upstream", extra={"url": request.url})

        return UpstreamResponse(
            status=response.status,
            content_type=content_type,
            body=body.decode("utf-8", errors="replace"),
        )
