"""
Trailgate — Request Logging Stage
==================================

What:  One access log line per request, written when the response is final.
Who:   Registered only in development (APP_ENV=development).
When:  Logs from a response hook, so error responses produced by the
       translator are logged with their real status.

Log line:
    GET /api/v1/tours?sort=price 200 12.3ms [a1b2c3d4] from 127.0.0.1

Level by status:
    5xx → ERROR, 4xx → WARNING, everything else → INFO

Not logged: request bodies, cookies, authorization headers.
"""

import logging
import time
from typing import Optional

from starlette.responses import Response

from trailgate.pipeline.context import RequestContext
from trailgate.pipeline.stage import Continuation, Stage

logger = logging.getLogger("trailgate.access")


class RequestLoggingStage(Stage):
    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        ctx.add_response_hook(self.log_response)
        nxt.proceed()

    def log_response(self, ctx: RequestContext, response: Response) -> Optional[Response]:
        duration_ms = (time.perf_counter() - ctx.started_at) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            ctx.method,
            ctx.original_url,
            status,
            duration_ms,
            ctx.request_id,
            ctx.client_ip,
            extra={
                "request_id": ctx.request_id,
                "method": ctx.method,
                "path": ctx.path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": ctx.client_ip,
            },
        )
        return None
