"""
Trailgate — CORS Stage
=======================

What:  Cross-origin headers for simple requests and uniform answers to
       preflight requests.
When:  First in the pipeline, so error responses from the body stages carry
       the origin header and a preflight is answered before its body is read.

Simple requests (GET, POST with simple headers):
    Access-Control-Allow-Origin is attached and the request continues.

Preflight:
    Browsers send OPTIONS before PUT/PATCH/DELETE or non-simple headers.
    Every OPTIONS request, on any path, is answered here with 204 and the
    allowed methods/headers. It never reaches routing.

Origins:
    ["*"]            → Access-Control-Allow-Origin: *
    explicit list    → the request Origin is echoed back when listed,
                       with Vary: Origin
"""

import logging
from typing import Iterable, Optional

from starlette.responses import Response

from trailgate.pipeline.context import RequestContext, append_vary
from trailgate.pipeline.stage import Continuation, Stage

logger = logging.getLogger(__name__)

DEFAULT_ALLOW_METHODS = "GET,HEAD,PUT,PATCH,POST,DELETE"


class CorsStage(Stage):
    def __init__(
        self,
        origins: Iterable[str] = ("*",),
        allow_methods: str = DEFAULT_ALLOW_METHODS,
        max_age: Optional[int] = None,
    ):
        self.origins = tuple(origins) or ("*",)
        self.allow_all = "*" in self.origins
        self.allow_methods = allow_methods
        self.max_age = max_age

    def _allowed_origin(self, ctx: RequestContext) -> Optional[str]:
        if self.allow_all:
            return "*"
        append_vary(ctx.response_headers, "Origin")
        origin = ctx.headers.get("origin")
        if origin and origin in self.origins:
            return origin
        return None

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        origin = self._allowed_origin(ctx)
        if origin:
            ctx.response_headers["Access-Control-Allow-Origin"] = origin

        if ctx.method != "OPTIONS":
            nxt.proceed()
            return

        ctx.response_headers["Access-Control-Allow-Methods"] = self.allow_methods
        requested = ctx.headers.get("access-control-request-headers")
        if requested:
            ctx.response_headers["Access-Control-Allow-Headers"] = requested
            append_vary(ctx.response_headers, "Access-Control-Request-Headers")
        if self.max_age is not None:
            ctx.response_headers["Access-Control-Max-Age"] = str(self.max_age)

        logger.debug("Answered preflight for %s", ctx.path)
        nxt.complete(Response(status_code=204))
