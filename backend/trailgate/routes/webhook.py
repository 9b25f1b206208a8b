"""
Trailgate — Payment Webhook Handler
====================================

What:  Receives POST /webhook-checkout from the payment provider.
How:   Runs right after RawBodyStage. The event callback gets the body
       exactly as sent plus the request headers, so it can verify the
       provider's signature; booking creation lives in that callback.

    async def on_checkout(raw_body: bytes, headers: Headers) -> None:
        event = provider.construct_event(raw_body, headers["stripe-signature"], secret)
        ...

A callback that raises answers 400 "Webhook error: <reason>"; otherwise
the provider gets {"received": true}.
"""

import logging
from typing import Awaitable, Callable, Optional

from starlette.datastructures import Headers
from starlette.responses import JSONResponse

from trailgate.exceptions import BadRequestError
from trailgate.pipeline import Continuation, RequestContext, Stage

logger = logging.getLogger(__name__)

CheckoutCallback = Callable[[bytes, Headers], Awaitable[None]]


async def acknowledge(raw_body: bytes, headers: Headers) -> None:
    logger.info("Checkout webhook received (%d bytes)", len(raw_body))


class WebhookCheckoutStage(Stage):
    def __init__(self, on_event: Optional[CheckoutCallback] = None):
        self.on_event = on_event or acknowledge

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        if ctx.raw_body is None:
            raise BadRequestError("Webhook error: expected an application/json body")
        try:
            await self.on_event(ctx.raw_body, ctx.headers)
        except Exception as exc:
            logger.warning("[%s] Webhook rejected: %s", ctx.request_id, exc)
            raise BadRequestError(f"Webhook error: {exc}") from exc
        nxt.complete(JSONResponse({"received": True}))
