"""Ordered middleware chain around the upstream request."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from uuid import uuid4

import structlog
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

PROXY_ERROR_STATUS = 502


def _short_request_id() -> str:
    return uuid4().hex[:8]


@dataclass
class RequestContext:
    """State one exchange carries from its request phase to its response phase."""

    request_id: str = field(default_factory=_short_request_id)
    document_origin: str = ""


class Middleware(abc.ABC):
    """One step of the proxy chain.

    ``process_request`` may answer the client directly by returning a
    Response; ``process_response`` rewrites what goes back.
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    @abc.abstractmethod
    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        ...

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        return response


class MiddlewarePipeline:
    """Runs request steps first to last and response steps last to first."""

    def __init__(self) -> None:
        self._steps: list[Middleware] = []

    def add(self, middleware: Middleware) -> None:
        self._steps.append(middleware)
        logger.info("middleware_registered", name=middleware.name, position=len(self._steps))

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        """Return the first short-circuit response, or None to forward upstream."""
        for step in self._steps:
            try:
                answer = await step.process_request(request, context)
            except Exception:
                logger.exception("middleware_request_error", middleware=step.name, request_id=context.request_id)
                return Response(content="Internal proxy error", status_code=PROXY_ERROR_STATUS)
            if answer is not None:
                logger.info("middleware_short_circuit", middleware=step.name, request_id=context.request_id)
                return answer
        return None

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        """A step that raises is skipped; the response it was given carries on."""
        for step in reversed(self._steps):
            try:
                response = await step.process_response(response, context)
            except Exception:
                logger.exception("middleware_response_error", middleware=step.name, request_id=context.request_id)
        return response
