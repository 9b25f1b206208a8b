"""
Trailgate — Application Factory
================================

What:  Builds the stage list and wraps it in a Starlette application.
How:   Factory pattern: create_app() returns a configured ASGI app.
Who:   uvicorn (`uvicorn trailgate.main:app`) and the test suite.
When:  Once at server startup. The stage list is frozen from then on;
       a misordered list stops the process here, before any request.

Stage order (load-bearing):
    ┌──────────────────────────────────────────────────────────────┐
    │ 1  CORS                    answers every OPTIONS             │
    │ 2  Static files            serves public/                    │
    │ 3  Raw body                POST /webhook-checkout only       │
    │ 4  Webhook handler         POST /webhook-checkout only       │
    │ 5  Body limit  (10 KB)     every other body                  │
    │ 6  JSON body                                                 │
    │ 7  Form body                                                 │
    │ 8  Cookies                                                   │
    │ 9  Sanitize                after parsing                     │
    │ 10 XSS clean                                                 │
    │ 11 Parameter pollution                                       │
    │ 12 Compression                                               │
    │ 13 Security headers                                          │
    │ 14 Request logging         development only                  │
    │ 15 Rate limit              /api only                         │
    │ 16 Router dispatch         first prefix match wins           │
    │ 17 Not found                                                 │
    │ ⇢  Error translator        error track, always last          │
    └──────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, log the stage list
    Shutdown: log shutdown
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Sequence, Tuple

from starlette.applications import Starlette
from starlette.middleware import Middleware

from trailgate.config import Settings, settings as default_settings
from trailgate.middleware import (
    BodyLimitStage,
    CompressionStage,
    CookieParserStage,
    CorsStage,
    ErrorTranslatorStage,
    JsonBodyStage,
    NotFoundStage,
    ParameterPollutionStage,
    RateLimitStage,
    RateLimitStore,
    RawBodyStage,
    RequestLoggingStage,
    SanitizeStage,
    SecurityHeadersStage,
    StaticFilesStage,
    UrlencodedBodyStage,
    XssCleanStage,
)
from trailgate.pipeline import (
    Pipeline,
    PipelineBuilder,
    PipelineMiddleware,
    Router,
    RouterDispatchStage,
    request_id_var,
)
from trailgate.routes import default_bindings
from trailgate.routes.webhook import CheckoutCallback, WebhookCheckoutStage

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

class RequestIdFilter(logging.Filter):
    """Stamps every record with the id of the request being processed ("-" outside one)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once, before anything else logs."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Pipeline Assembly
# ══════════════════════════════════════════════════════════════════════════

def build_default_pipeline(
    config: Settings,
    bindings: Optional[Sequence[Tuple[str, Router]]] = None,
    on_checkout: Optional[CheckoutCallback] = None,
    rate_limit_store: Optional[RateLimitStore] = None,
) -> Pipeline:
    """
    Assemble the production stage list from configuration.

    Args:
        config:            Settings driving limits, origins, verbosity
        bindings:          (prefix, Router) pairs in match order
        on_checkout:       payment webhook callback (raw body, headers)
        rate_limit_store:  shared counter store; in-memory when omitted
    """
    builder = PipelineBuilder()

    builder.use(CorsStage(origins=config.cors_origins_list))
    builder.use(StaticFilesStage(config.static_root))

    builder.use(
        RawBodyStage(limit=config.raw_body_limit),
        path=config.webhook_path, methods=["POST"], exact=True,
    )
    builder.use(
        WebhookCheckoutStage(on_checkout),
        path=config.webhook_path, methods=["POST"], exact=True,
    )

    builder.use(BodyLimitStage(limit=config.body_limit))
    builder.use(JsonBodyStage(limit=config.body_limit))
    builder.use(UrlencodedBodyStage(limit=config.body_limit))
    builder.use(CookieParserStage())

    builder.use(SanitizeStage())
    builder.use(XssCleanStage())
    builder.use(ParameterPollutionStage(whitelist=config.hpp_whitelist_list))

    builder.use(CompressionStage(threshold=config.compression_threshold))
    builder.use(SecurityHeadersStage())

    if config.is_development:
        builder.use(RequestLoggingStage())

    builder.use(
        RateLimitStage(
            max_requests=config.rate_limit_requests,
            window=config.rate_limit_window,
            message=config.rate_limit_message,
            store=rate_limit_store,
            trust_proxy=config.trust_proxy,
        ),
        path=config.rate_limit_prefix,
    )

    builder.use(RouterDispatchStage(default_bindings() if bindings is None else bindings))
    builder.use(NotFoundStage())
    builder.use(ErrorTranslatorStage(verbose=config.is_development))

    return builder.build()


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    config: Optional[Settings] = None,
    bindings: Optional[Sequence[Tuple[str, Router]]] = None,
    on_checkout: Optional[CheckoutCallback] = None,
    rate_limit_store: Optional[RateLimitStore] = None,
    pipeline: Optional[Pipeline] = None,
) -> Starlette:
    """
    Create the ASGI application.

    Either pass a ready `pipeline` or let the default one be assembled from
    `config` and the collaborator arguments.
    """
    config = config or default_settings
    if pipeline is None:
        pipeline = build_default_pipeline(config, bindings, on_checkout, rate_limit_store)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        setup_logging(config.log_level)
        logger.info("=" * 60)
        logger.info("Trailgate starting up (%s)", config.app_env)
        for position, registration in enumerate(pipeline.registrations, start=1):
            scope = registration.path or "*"
            logger.info("  %2d. %-28s %s", position, registration.stage.name, scope)
        logger.info("Server ready at http://%s:%d", config.backend_host, config.backend_port)
        logger.info("=" * 60)

        yield

        logger.info("Trailgate shutting down.")

    return Starlette(
        lifespan=lifespan,
        middleware=[Middleware(PipelineMiddleware, pipeline=pipeline)],
    )


app = create_app()
