# Middleware package init
"""
Trailgate — Stage Package
==========================

What:  The cross-cutting stages every request traverses, in their default
       registration order (see `trailgate.main.build_default_pipeline`):

    Request
      → [CORS: answers every OPTIONS] → [Static files]
      → [Raw body: POST /webhook-checkout] → [Webhook handler]
      → [Body limit] → [JSON body] → [Form body] → [Cookies]
      → [Sanitize] → [XSS clean] → [Parameter pollution]
      → [Compression] → [Security headers] → [Request logging (dev)]
      → [Rate limit: /api]
      → [Router dispatch] → [Not found]
      ⇢ [Error translator]   (error track)
"""

from trailgate.middleware.body import (
    BodyLimitStage,
    CookieParserStage,
    JsonBodyStage,
    RawBodyStage,
    UrlencodedBodyStage,
)
from trailgate.middleware.compression import CompressionStage
from trailgate.middleware.cors import CorsStage
from trailgate.middleware.logging import RequestLoggingStage
from trailgate.middleware.rate_limit import MemoryStore, RateLimitStage, RateLimitStore
from trailgate.middleware.security import (
    ParameterPollutionStage,
    SanitizeStage,
    SecurityHeadersStage,
    XssCleanStage,
)
from trailgate.middleware.static import StaticFilesStage
from trailgate.middleware.terminal import ErrorTranslatorStage, NotFoundStage

__all__ = [
    "BodyLimitStage",
    "CompressionStage",
    "CookieParserStage",
    "CorsStage",
    "ErrorTranslatorStage",
    "JsonBodyStage",
    "MemoryStore",
    "NotFoundStage",
    "ParameterPollutionStage",
    "RateLimitStage",
    "RateLimitStore",
    "RawBodyStage",
    "RequestLoggingStage",
    "SanitizeStage",
    "SecurityHeadersStage",
    "StaticFilesStage",
    "UrlencodedBodyStage",
    "XssCleanStage",
]
