"""CSP retrofitting middleware: rewrites HTML responses and their policies."""

from __future__ import annotations

from functools import partial

import structlog
from starlette.requests import Request
from starlette.responses import Response

from retrocsp.config.loader import get_settings
from retrocsp.middleware.pipeline import Middleware, RequestContext
from retrocsp.policy.model import ContentSecurityPolicy
from retrocsp.policy.nonce import generate_nonce
from retrocsp.retrofit.engine import retrofit_csp
from retrocsp.retrofit.plans import NavigateToPlan
from retrocsp.utils.html import (
    collect_policy_text,
    inject_head_scripts,
    neutralize_meta_refresh,
    render_bootstrap_script,
)

logger = structlog.get_logger()

CSP_HEADER = "content-security-policy"

# Invalidated by the body rewrite
_STALE_HEADERS = frozenset({"content-length", "content-encoding", CSP_HEADER})


def _is_html(response: Response) -> bool:
    content_type = response.headers.get("content-type", "")
    return content_type.split(";", 1)[0].strip().lower() == "text/html"


class CSPRetrofitter(Middleware):
    """Backport strict-dynamic, unsafe-hashes and navigate-to into HTML responses.

    The upstream policy (headers plus <meta> tags) is rewritten so that older
    browsers still enforce something sensible, and the page receives the
    retrofit plans as nonced bootstrap scripts for the runtime to pick up.
    """

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        origin = get_settings().public_origin
        if not origin:
            origin = f"{request.url.scheme}://{request.url.netloc}"
        context.document_origin = origin.rstrip("/")
        return None

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        if not _is_html(response):
            return response

        body = getattr(response, "body", None)
        if not body:
            return response

        try:
            html = body.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("csp_retrofit_skipped", reason="body not utf-8", request_id=context.request_id)
            return response

        try:
            return self._retrofit(response, html, context)
        except Exception as exc:
            logger.error("csp_retrofit_error", error=str(exc), request_id=context.request_id)
            return response

    def _retrofit(self, response: Response, html: str, context: RequestContext) -> Response:
        settings = get_settings()
        html, policy_text = collect_policy_text(response.headers.getlist(CSP_HEADER), html)
        if policy_text is None:
            return response

        nonce_factory = partial(generate_nonce, settings.nonce_length)
        csp = ContentSecurityPolicy.from_string(policy_text, nonce_factory)
        if csp is None:
            logger.warning("csp_unparseable", policy=policy_text[:500], request_id=context.request_id)
            return response

        outcome = retrofit_csp(csp, settings.enabled_retrofitters, nonce_factory)

        if any(isinstance(plan, NavigateToPlan) for plan in outcome.plans):
            html = neutralize_meta_refresh(html)
        html = inject_head_scripts(
            html,
            outcome.csp.retrofitting_nonce,
            [render_bootstrap_script(plan) for plan in outcome.plans],
        )

        rewritten = Response(content=html.encode("utf-8"), status_code=response.status_code)
        for key, value in response.headers.items():
            if key.lower() not in _STALE_HEADERS:
                rewritten.headers.append(key, value)
        rewritten.headers[CSP_HEADER] = outcome.header

        logger.info(
            "response_retrofitted",
            request_id=context.request_id,
            origin=context.document_origin,
            plans=[plan.kind.value for plan in outcome.plans],
        )
        return rewritten
