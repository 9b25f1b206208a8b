"""
Trailgate — Health Check Router
================================

What:  Liveness endpoint for Docker health checks and load balancers.
How:   A regular Router mounted under the API prefix, so it travels the
       same stages as every business router.

    GET /api/v1/health → {"status": "healthy", "version": ..., "uptime_seconds": ...}
"""

import logging
import time

from starlette.responses import JSONResponse

from trailgate import __version__
from trailgate.pipeline import Continuation, RequestContext, Router

logger = logging.getLogger(__name__)

_start_time = time.time()


async def health_check(ctx: RequestContext, nxt: Continuation) -> None:
    nxt.complete(
        JSONResponse(
            {
                "status": "healthy",
                "version": __version__,
                "uptime_seconds": round(time.time() - _start_time, 2),
            }
        )
    )


router = Router(name="health")
router.get("/", health_check)
