"""
Artifact virtual-host proxy.

Every request is resolved by its Host header: the leftmost label is the
project slug, and the path is looked up under that slug in the artifact
store. Responses are streamed back verbatim with permissive CORS headers.

There is no caching and no authorization, and a slug that was never built
looks the same as a transient upstream failure.
"""
import logging
from typing import AsyncIterator, Optional
from urllib.parse import quote, unquote

import httpx
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from app.core.errors import ProxyUpstreamError
from app.core.metrics import metrics
from app.core.slugs import is_valid_slug

logger = logging.getLogger(__name__)

PROXY_ERROR_MESSAGE = "Something went wrong with the proxy."

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, POST, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}

# Connection-scoped headers that must not be forwarded (RFC 7230 6.1)
HOP_BY_HOP_HEADERS = frozenset([
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
])

# Not forwarded upstream: host is rewritten to the store's host
REQUEST_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length"}


def extract_slug(host: str) -> str:
    """Leftmost label of a Host header value, port stripped."""
    hostname = (host or "").strip().lower()
    if hostname.startswith("["):
        return ""
    hostname = hostname.split(":", 1)[0]
    return hostname.split(".", 1)[0]


def raw_request_path(request: Request) -> str:
    """
    Request path exactly as sent, still percent-encoded.

    The decoded path would turn %2F into a real separator and %3F into a
    query delimiter, moving the lookup to a different key.
    """
    raw = request.scope.get("raw_path")
    if raw:
        return raw.decode("latin-1").split("?", 1)[0]
    return quote(request.url.path)


def has_dot_segments(path: str) -> bool:
    """True if any literal path segment is '.' or '..' (the store would collapse it)."""
    return any(unquote(segment) in (".", "..") for segment in path.split("/"))


def rewrite_path(path: str) -> str:
    """Map the site root to its index document."""
    return "/index.html" if path in ("", "/") else path


def resolve_target(base_url: str, slug: str, path: str, query: str = "") -> str:
    """Artifact URL for a request: <base>/<slug><path>[?query]"""
    target = f"{base_url.rstrip('/')}/{slug}{rewrite_path(path)}"
    if query:
        target = f"{target}?{query}"
    return target


def _with_cors(headers: dict[str, str]) -> dict[str, str]:
    merged = dict(headers)
    merged.update(CORS_HEADERS)
    return merged


class ArtifactProxy:
    """Forwards requests to the artifact store and relays the responses."""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=False)

    async def aclose(self) -> None:
        await self._client.aclose()

    def forward_headers(self, request: Request) -> list[tuple[str, str]]:
        return [
            (name, value)
            for name, value in request.headers.items()
            if name.lower() not in REQUEST_EXCLUDED_HEADERS
        ]

    async def open_upstream(self, request: Request, target: str) -> httpx.Response:
        """
        Send the forwarded request and return the streaming upstream response.

        Raises:
            ProxyUpstreamError: If the store cannot be reached
        """
        body = await request.body()
        upstream_request = self._client.build_request(
            request.method,
            target,
            headers=self.forward_headers(request),
            content=body or None,
        )
        try:
            return await self._client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            raise ProxyUpstreamError(f"{type(e).__name__}: {e}") from e

    async def _relay(self, upstream: httpx.Response, target: str) -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except (httpx.HTTPError, httpx.StreamError) as e:
            # Status and headers are already on the wire; only logging is left
            metrics.inc("proxy_upstream_error_total")
            logger.error(f"proxy_stream_interrupted target={target} error_type={type(e).__name__}")
        finally:
            await upstream.aclose()

    async def handle(self, request: Request) -> Response:
        """Resolve, forward and relay one request."""
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        slug = extract_slug(request.headers.get("host", ""))
        if not slug:
            return PlainTextResponse("Missing Host header.", status_code=400, headers=CORS_HEADERS)
        if not is_valid_slug(slug):
            return PlainTextResponse("Invalid Host header.", status_code=400, headers=CORS_HEADERS)

        path = raw_request_path(request)
        if has_dot_segments(path):
            return PlainTextResponse("Invalid path.", status_code=400, headers=CORS_HEADERS)

        target = resolve_target(self.base_url, slug, path, request.url.query)
        metrics.inc("proxy_requests_total")

        try:
            upstream = await self.open_upstream(request, target)
        except ProxyUpstreamError as e:
            metrics.inc("proxy_upstream_error_total")
            logger.error(f"proxy_upstream_failed target={target} error={e}")
            return PlainTextResponse(PROXY_ERROR_MESSAGE, status_code=500, headers=CORS_HEADERS)

        headers = {
            name: value
            for name, value in upstream.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        }
        return StreamingResponse(
            self._relay(upstream, target),
            status_code=upstream.status_code,
            headers=_with_cors(headers),
        )
