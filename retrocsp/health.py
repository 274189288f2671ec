"""Health and readiness endpoints."""

from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from retrocsp import __version__
from retrocsp.config.loader import get_settings

logger = structlog.get_logger()
router = APIRouter()


async def _check_upstream() -> bool:
    """Check if upstream is reachable with a HEAD request."""
    settings = get_settings()
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.head(settings.upstream_url)
            return resp.status_code < 500
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning("upstream_health_check_failed", error=str(exc))
        return False


@router.get("/health")
async def health():
    """Health check: proxy status, upstream reachability and active retrofitters."""
    upstream_ok = await _check_upstream()
    return {
        "status": "healthy" if upstream_ok else "degraded",
        "proxy": "up",
        "upstream": "up" if upstream_ok else "down",
        "version": __version__,
        "retrofitters": [kind.value for kind in get_settings().enabled_retrofitters],
    }


@router.get("/ready")
async def ready():
    """Readiness check: 200 only when the upstream answers."""
    if await _check_upstream():
        return {"status": "ready"}
    return JSONResponse(status_code=503, content={"status": "not_ready", "upstream": "down"})
