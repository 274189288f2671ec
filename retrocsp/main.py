"""FastAPI reverse proxy that retrofits CSP on the way out."""

from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import Response

from retrocsp.config.loader import get_settings, load_settings, register_reload_handler
from retrocsp.health import router as health_router
from retrocsp.logging_config import setup_logging
from retrocsp.middleware.csp_retrofitter import CSPRetrofitter
from retrocsp.middleware.pipeline import MiddlewarePipeline, RequestContext

logger = structlog.get_logger()

_http_client: httpx.AsyncClient | None = None
_pipeline: MiddlewarePipeline | None = None


def _build_pipeline() -> MiddlewarePipeline:
    pipeline = MiddlewarePipeline()
    pipeline.add(CSPRetrofitter())
    return pipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    global _http_client, _pipeline

    settings = load_settings()
    setup_logging(log_level=settings.log_level, json_format=settings.log_json)
    register_reload_handler()

    _http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.proxy_timeout),
        follow_redirects=settings.upstream_follow_redirects,
        limits=httpx.Limits(
            max_connections=settings.upstream_max_connections,
            max_keepalive_connections=settings.upstream_max_keepalive,
        ),
    )
    _pipeline = _build_pipeline()

    logger.info("proxy_started", upstream=settings.upstream_url, port=settings.listen_port)

    yield

    logger.info("proxy_shutting_down")
    if _http_client:
        await _http_client.aclose()
    logger.info("proxy_stopped")


app = FastAPI(title="retrocsp", lifespan=lifespan)
app.include_router(health_router)


HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# httpx hands back a decoded body, so the upstream framing no longer applies
_DECODED_BODY_HEADERS = frozenset({"content-length", "content-encoding"})


@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"])
async def proxy_request(request: Request, path: str) -> Response:
    """Catch-all reverse proxy handler."""
    if _http_client is None:
        return Response(content="Proxy not initialized", status_code=503)

    settings = get_settings()
    context = RequestContext()

    if _pipeline:
        short_circuit = await _pipeline.process_request(request, context)
        if short_circuit is not None:
            return await _pipeline.process_response(short_circuit, context)

    upstream_url = f"{settings.upstream_url.rstrip('/')}/{path}"
    if request.url.query:
        upstream_url = f"{upstream_url}?{request.url.query}"

    headers = {}
    for key, value in request.headers.items():
        lower = key.lower()
        if lower in HOP_BY_HOP_HEADERS or lower == "host":
            continue
        headers[key] = value
    headers["x-request-id"] = context.request_id

    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > settings.max_body_bytes:
                return Response(content="Request body too large", status_code=413)
        except (ValueError, OverflowError):
            return Response(content="Invalid Content-Length", status_code=400)
    body = await request.body()
    if len(body) > settings.max_body_bytes:
        return Response(content="Request body too large", status_code=413)

    try:
        upstream_resp = await _http_client.request(
            method=request.method,
            url=upstream_url,
            headers=headers,
            content=body,
        )
    except httpx.TimeoutException:
        logger.error("upstream_timeout", url=upstream_url, request_id=context.request_id)
        return Response(content="Upstream timeout", status_code=504)
    except httpx.ConnectError:
        logger.error("upstream_connect_error", url=upstream_url, request_id=context.request_id)
        return Response(content="Upstream unreachable", status_code=502)
    except httpx.HTTPError as exc:
        logger.error("upstream_error", url=upstream_url, request_id=context.request_id, error=str(exc))
        return Response(content="Upstream error", status_code=502)

    if len(upstream_resp.content) > settings.max_body_bytes:
        logger.error(
            "upstream_response_too_large",
            actual_size=len(upstream_resp.content),
            max=settings.max_body_bytes,
            request_id=context.request_id,
        )
        return Response(content="Upstream response too large", status_code=502)

    response = Response(content=upstream_resp.content, status_code=upstream_resp.status_code)
    # multi_items keeps repeated headers (several CSP or Set-Cookie lines) apart
    for key, value in upstream_resp.headers.multi_items():
        lower = key.lower()
        if lower in HOP_BY_HOP_HEADERS or lower in _DECODED_BODY_HEADERS:
            continue
        response.headers.append(key, value)
    response.headers["x-request-id"] = context.request_id

    if _pipeline:
        response = await _pipeline.process_response(response, context)

    return response
