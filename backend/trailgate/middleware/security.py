"""
Trailgate — Security Stage Group
=================================

What:  Four independent stages registered in a fixed order after body
       parsing:

    SanitizeStage            strips operator-shaped keys ("$gt", "a.b")
    XssCleanStage            escapes markup in every string
    SecurityHeadersStage     defensive response headers
    ParameterPollutionStage  collapses repeated parameters

Query injection example:
    POST /api/v1/users/login  {"email": {"$gt": ""}, "password": "..."}
    → {"email": {}, "password": "..."}
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from trailgate.pipeline.context import RequestContext
from trailgate.pipeline.stage import Continuation, Stage, StageRole

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Key sanitation
# ══════════════════════════════════════════════════════════════════════════

def is_dangerous_key(key: str) -> bool:
    return key.startswith("$") or "." in key


def strip_dangerous_keys(value: Any, removed: Optional[List[str]] = None) -> Any:
    """Return a copy of `value` without operator-shaped mapping keys, at any depth."""
    if isinstance(value, dict):
        clean = {}
        for key, item in value.items():
            if isinstance(key, str) and is_dangerous_key(key):
                if removed is not None:
                    removed.append(key)
                continue
            clean[key] = strip_dangerous_keys(item, removed)
        return clean
    if isinstance(value, list):
        return [strip_dangerous_keys(item, removed) for item in value]
    return value


class SanitizeStage(Stage):
    role = StageRole.SANITIZER

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        removed: List[str] = []
        ctx.body = strip_dangerous_keys(ctx.body, removed)
        ctx.query = strip_dangerous_keys(ctx.query, removed)
        ctx.params = strip_dangerous_keys(ctx.params, removed)
        if removed:
            logger.warning(
                "[%s] Removed %d suspicious key(s) from %s %s: %s",
                ctx.request_id, len(removed), ctx.method, ctx.path, ", ".join(removed),
            )
        nxt.proceed()


# ══════════════════════════════════════════════════════════════════════════
# XSS filtering
# ══════════════════════════════════════════════════════════════════════════

def escape_markup(value: Any) -> Any:
    """
    Escape '<' in every string, mapping keys included.

    Without '<' no tag can open, so '<script>' becomes inert text
    ('&lt;script>') when the value is later rendered into HTML.
    """
    if isinstance(value, str):
        return value.replace("<", "&lt;")
    if isinstance(value, dict):
        return {escape_markup(k): escape_markup(v) for k, v in value.items()}
    if isinstance(value, list):
        return [escape_markup(item) for item in value]
    return value


class XssCleanStage(Stage):
    role = StageRole.SANITIZER

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        ctx.body = escape_markup(ctx.body)
        ctx.query = escape_markup(ctx.query)
        ctx.params = escape_markup(ctx.params)
        nxt.proceed()


# ══════════════════════════════════════════════════════════════════════════
# Security headers
# ══════════════════════════════════════════════════════════════════════════

DEFAULT_SECURITY_HEADERS: Tuple[Tuple[str, str], ...] = (
    ("X-DNS-Prefetch-Control", "off"),
    ("X-Frame-Options", "SAMEORIGIN"),
    ("Strict-Transport-Security", "max-age=15552000; includeSubDomains"),
    ("X-Download-Options", "noopen"),
    ("X-Content-Type-Options", "nosniff"),
    ("X-XSS-Protection", "1; mode=block"),
)


class SecurityHeadersStage(Stage):
    """Adds the defensive header set to whatever response this request ends with."""

    def __init__(self, headers: Iterable[Tuple[str, str]] = DEFAULT_SECURITY_HEADERS):
        self.headers = tuple(headers)

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        for name, value in self.headers:
            ctx.response_headers[name] = value
        nxt.proceed()


# ══════════════════════════════════════════════════════════════════════════
# HTTP parameter pollution
# ══════════════════════════════════════════════════════════════════════════

def collapse_repeats(
    params: Mapping[str, Any], whitelist: Iterable[str]
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Keep the last value of every repeated top-level parameter.

    Returns (collapsed, polluted) where `polluted` holds the original lists
    that were collapsed. Whitelisted names keep their list.

        ?sort=a&sort=b       → {"sort": "b"}
        ?price=5&price=9     → {"price": ["5", "9"]}   (whitelisted)
    """
    allowed = set(whitelist)
    collapsed: Dict[str, Any] = {}
    polluted: Dict[str, Any] = {}
    for key, value in params.items():
        if isinstance(value, list) and key not in allowed:
            polluted[key] = value
            collapsed[key] = value[-1] if value else value
        else:
            collapsed[key] = value
    return collapsed, polluted


class ParameterPollutionStage(Stage):
    role = StageRole.SANITIZER

    def __init__(self, whitelist: Iterable[str] = ()):
        self.whitelist = tuple(whitelist)

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        ctx.query, polluted = collapse_repeats(ctx.query, self.whitelist)
        ctx.query_polluted.update(polluted)

        if ctx.content_type == "application/x-www-form-urlencoded" and isinstance(ctx.body, dict):
            ctx.body, polluted = collapse_repeats(ctx.body, self.whitelist)
            ctx.body_polluted.update(polluted)

        nxt.proceed()
