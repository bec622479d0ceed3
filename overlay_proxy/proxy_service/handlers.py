import json
import secrets
from functools import partial

from aiohttp import hdrs, web
from yarl import URL

from overlay_proxy.proxy_service.upstream.base_transport import UpstreamError, UpstreamTransport
from overlay_proxy.shared.config import Settings
from overlay_proxy.shared.logging import get_logger
from overlay_proxy.shared.models import OutboundRequest, UpstreamResponse

logger = get_logger(__name__)

PROXY_PATH = "/overlay-proxy"
TARGET_PARAM = "u"
TOKEN_HEADER = "X-Proxy-Token"
DEFAULT_CONTENT_TYPE = "application/json"

BODYLESS_METHODS = frozenset({hdrs.METH_GET, hdrs.METH_HEAD})
WEB_SCHEMES = frozenset({"http", "https"})

_compact_dumps = partial(json.dumps, separators=(",", ":"))


def cors_headers(allow_origin: str) -> dict[str, str]:
    """Access-Control headers attached to every published response."""
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Proxy-Token",
    }


def serialize_host(url: URL) -> str:
    """
    Serialize the host of an absolute URL the way browsers expose ``URL.host``.

    The port is kept only when it differs from the scheme's default, so
    ``https://example.com:443/`` yields ``example.com`` while
    ``https://example.com:8443/`` yields ``example.com:8443``.
    """
    host = url.raw_host or ""
    if ":" in host:
        host = f"[{host}]"
    if not url.is_default_port():
        host = f"{host}:{url.port}"
    return host


def parse_target(raw: str) -> URL | None:
    """Parse the ``u`` parameter, returning None unless it is an absolute web URL."""
    try:
        url = URL(raw.strip())
        # out-of-range ports only raise once the port is read
        url.port
    except ValueError:
        return None
    if not url.absolute or url.scheme not in WEB_SCHEMES or not url.raw_host:
        return None
    return url


class ForwardingGateway:
    """
    Validates one inbound request and forwards it to an allowlisted upstream.

    Every gate either returns a terminal response or falls through to the
    next one. Only a request that clears all of them produces an outbound
    call, and its response is relayed with CORS headers attached.
    """

    def __init__(self, settings: Settings, transport: UpstreamTransport):
        self.__settings = settings
        self.__transport = transport
        self.__allowed_hosts = settings.allowed_host_set
        self.__cors = cors_headers(settings.allow_origin)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Public entry point used by the aiohttp router."""
        if request.method == hdrs.METH_OPTIONS:
            return web.Response(status=204, headers=self.__cors)

        if request.path != PROXY_PATH:
            logger.info(f"Rejected {request.method} {request.path}: unknown path")
            return web.Response(text="Not found", status=404)

        if not self._is_authorized(request):
            logger.warning(f"Rejected {request.method} {request.path}: bad or missing {TOKEN_HEADER}")
            return self._error(401, "Unauthorized")

        raw_target = request.query.get(TARGET_PARAM)
        if not raw_target:
            return self._error(400, 'Missing "u" query param')

        target = parse_target(raw_target)
        if target is None:
            logger.info(f"Rejected malformed target {raw_target!r}")
            return self._error(400, 'Invalid "u" query param')

        host = serialize_host(target)
        if host not in self.__allowed_hosts:
            logger.warning(f"Rejected target host {host!r}: not in allowlist")
            return self._error(400, "Host not allowed")

        outbound = await self._build_outbound_request(request, target)

        logger.info(f"Forwarding {outbound.method} to {host}{target.raw_path}")

        try:
            upstream = await self.__transport.send(outbound)
        except TimeoutError:
            logger.error(f"{outbound.method} to {host} timed out")
            return self._error(504, "Upstream request timed out")
        except UpstreamError as exc:
            logger.exception(f"{outbound.method} to {host} failed: {exc}")
            return self._error(502, "Upstream request failed")

        logger.info(f"Relaying {upstream.status} from {host}")

        return self._relay(upstream)

    def _is_authorized(self, request: web.Request) -> bool:
        """Compare X-Proxy-Token against the configured secret, if any."""
        expected = self.__settings.auth_token
        if not expected:
            return True

        received = request.headers.get(TOKEN_HEADER)
        if received is None:
            return False

        # header values carry undecodable bytes as surrogates
        return secrets.compare_digest(
            received.encode("utf-8", "surrogateescape"), expected.encode("utf-8")
        )

    async def _build_outbound_request(self, request: web.Request, target: URL) -> OutboundRequest:
        """Derive the forwarded request: method, a minimal header set, and the body as text."""
        headers = {
            hdrs.CONTENT_TYPE: request.headers.get(hdrs.CONTENT_TYPE) or DEFAULT_CONTENT_TYPE,
        }

        authorization = request.headers.get(hdrs.AUTHORIZATION)
        if authorization:
            headers[hdrs.AUTHORIZATION] = authorization

        body = None
        if request.method not in BODYLESS_METHODS:
            body_bytes = await request.read()
            body = body_bytes.decode("utf-8", errors="replace")

        return OutboundRequest(
            method=request.method,
            url=str(target),
            headers=headers,
            body=body,
        )

    def _relay(self, upstream: UpstreamResponse) -> web.Response:
        """Copy upstream status, content type and body, adding CORS headers."""
        return web.Response(
            body=upstream.body.encode("utf-8"),
            status=upstream.status,
            headers={hdrs.CONTENT_TYPE: upstream.content_type, **self.__cors},
        )

    def _error(self, status: int, message: str) -> web.Response:
        """Structured JSON error carrying CORS headers."""
        return web.json_response(
            {"error": message},
            status=status,
            headers=self.__cors,
            dumps=_compact_dumps,
        )
