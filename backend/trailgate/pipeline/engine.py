"""
Trailgate — ASGI Adapter
=========================

What:  Pure ASGI middleware that answers every HTTP request through a
       Pipeline.
How:   Wraps the Starlette application; HTTP scopes never reach the inner
       app, lifespan (and any other scope type) passes through so Starlette
       still runs the startup/shutdown hooks.

Per request:
    1. Assign a request id (client's X-Request-ID or a short uuid) and
       store it in `request_id_var` for log correlation
    2. Build the RequestContext
    3. Traverse the pipeline and send the finalized response
"""

import uuid

from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from trailgate.pipeline.builder import Pipeline
from trailgate.pipeline.context import RequestContext, request_id_var


class PipelineMiddleware:
    def __init__(self, app: ASGIApp, pipeline: Pipeline) -> None:
        self.app = app
        self.pipeline = pipeline

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        token = request_id_var.set(rid)
        try:
            ctx = RequestContext.from_request(request, request_id=rid)
            response = await self.pipeline.handle(ctx)
            await response(scope, receive, send)
        finally:
            request_id_var.reset(token)
