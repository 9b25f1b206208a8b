# Routes package init
"""
Trailgate — Default Collaborators
==================================

Business routers (tours, users, reviews, bookings, views) are supplied by
the caller of `create_app(bindings=...)`. Without them the app mounts:

    /api/v1/health   → health.router
    /webhook-checkout → webhook.WebhookCheckoutStage (acknowledges events)
"""

from typing import List, Tuple

from trailgate.pipeline import Router
from trailgate.routes import health


def default_bindings() -> List[Tuple[str, Router]]:
    return [("/api/v1/health", health.router)]
