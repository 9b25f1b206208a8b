"""
Trailgate — Body-Handling Stages
=================================

What:  Raw-body capture for the payment webhook, size-bounded JSON and form
       parsing for everything else, and cookie parsing.

Ordering:
    RawBodyStage is registered for POST /webhook-checkout ahead of the
    parsers. It stores the body bytes untouched in `ctx.raw_body` so the
    payment collaborator can verify the provider's signature over the exact
    bytes that were sent. Once a body has been consumed every later parser
    leaves it alone.

Limits:
    BodyLimitStage bounds every body the raw capture did not take, so a
    text/plain or untyped body is held to the same 10 KB as JSON. The
    declared Content-Length is rejected up front; otherwise the stream is
    cut off as soon as it crosses the limit. Both raise
    PayloadTooLargeError (413).
"""

import json
import logging
from typing import Iterable
from urllib.parse import parse_qsl

from starlette.requests import cookie_parser

from trailgate.exceptions import BadRequestError
from trailgate.pipeline.context import RequestContext
from trailgate.pipeline.stage import Continuation, Stage, StageRole
from trailgate.utils.querystring import DEFAULT_DEPTH, parse_pairs

logger = logging.getLogger(__name__)


def is_json_type(content_type: str) -> bool:
    return content_type == "application/json" or content_type.endswith("+json")


def _decode(ctx: RequestContext, data: bytes) -> str:
    try:
        return data.decode(ctx.charset)
    except LookupError:
        raise BadRequestError(f"Unsupported charset \"{ctx.charset.upper()}\"")
    except UnicodeDecodeError:
        raise BadRequestError("Request body is not valid text for its charset")


class RawBodyStage(Stage):
    """Captures the body as opaque bytes for the configured content types."""

    role = StageRole.RAW_BODY

    def __init__(self, limit: int, content_types: Iterable[str] = ("application/json",)):
        self.limit = limit
        self.content_types = frozenset(t.lower() for t in content_types)

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        if not ctx.body_consumed and ctx.content_type in self.content_types:
            ctx.raw_body = await ctx.read_body(self.limit)
            logger.debug("Captured %d raw body bytes for %s", len(ctx.raw_body), ctx.path)
        nxt.proceed()


class BodyLimitStage(Stage):
    """
    Bounds every body no earlier stage consumed, whatever its content type.

    The body is buffered (at most `limit` bytes) so parsers and collaborators
    read it from memory; anything larger is a 413 before routing.
    """

    role = StageRole.BODY_LIMIT

    def __init__(self, limit: int):
        self.limit = limit

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        if not ctx.body_consumed and ctx.has_body:
            await ctx.read_body(self.limit, consume=False)
        nxt.proceed()


class JsonBodyStage(Stage):
    """
    Parses JSON bodies into `ctx.body`.

    Only objects and arrays are accepted at the top level; anything else,
    and malformed JSON, is a 400.
    """

    role = StageRole.BODY_PARSER

    def __init__(self, limit: int):
        self.limit = limit

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        if ctx.body_consumed or not is_json_type(ctx.content_type) or not ctx.has_body:
            nxt.proceed()
            return

        raw = await ctx.read_body(self.limit)
        text = _decode(ctx, raw)
        if not text.strip():
            ctx.body = {}
            nxt.proceed()
            return

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise BadRequestError(
                f"Malformed JSON body: {exc.msg} at position {exc.pos}",
                context={"position": exc.pos},
            )
        if not isinstance(parsed, (dict, list)):
            raise BadRequestError("JSON body must be an object or an array")

        ctx.body = parsed
        nxt.proceed()


class UrlencodedBodyStage(Stage):
    """Parses form-encoded bodies, nested keys included (`a[b]=c`)."""

    role = StageRole.BODY_PARSER

    def __init__(self, limit: int, depth: int = DEFAULT_DEPTH):
        self.limit = limit
        self.depth = depth

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        if (
            ctx.body_consumed
            or ctx.content_type != "application/x-www-form-urlencoded"
            or not ctx.has_body
        ):
            nxt.proceed()
            return

        raw = await ctx.read_body(self.limit)
        pairs = parse_qsl(_decode(ctx, raw), keep_blank_values=True)
        ctx.body = parse_pairs(pairs, self.depth)
        nxt.proceed()


class CookieParserStage(Stage):
    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        header = ctx.headers.get("cookie")
        ctx.cookies = cookie_parser(header) if header else {}
        nxt.proceed()
