"""
Trailgate — Compression Stage
==============================

What:  Negotiates a content encoding for textual responses.
How:   Registers a response hook; the body is compressed when the final
       response is known, whichever stage produced it.

Compressed only when all hold:
    - the client accepts gzip (preferred) or deflate
    - the media type is textual (text/*, JSON, JavaScript, XML)
    - the body has at least `threshold` bytes
    - the method is not HEAD, Cache-Control has no `no-transform`
    - the response is not already encoded

File and streaming responses (static assets) are never touched.
"""

import gzip
import re
import zlib
from typing import Dict, Optional

from starlette.responses import FileResponse, Response, StreamingResponse

from trailgate.pipeline.context import RequestContext, append_vary
from trailgate.pipeline.stage import Continuation, Stage

_COMPRESSIBLE_RE = re.compile(
    r"^(text/.+|application/(json|javascript|x-javascript|xml|ld\+json)|.+\+(json|xml))$"
)

SUPPORTED_ENCODINGS = ("gzip", "deflate")


def is_compressible(content_type: str) -> bool:
    media_type = content_type.split(";")[0].strip().lower()
    return bool(media_type) and bool(_COMPRESSIBLE_RE.match(media_type))


def negotiate_encoding(accept_encoding: str) -> Optional[str]:
    """Pick the best supported encoding; ties go to gzip."""
    weights: Dict[str, float] = {}
    for part in accept_encoding.split(","):
        token, _, params = part.strip().partition(";")
        token = token.strip().lower()
        if not token:
            continue
        q = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                q = float(params[2:])
            except ValueError:
                q = 0.0
        weights[token] = q

    best: Optional[str] = None
    best_q = 0.0
    for encoding in SUPPORTED_ENCODINGS:
        q = weights.get(encoding, weights.get("*", 0.0))
        if q > best_q:
            best, best_q = encoding, q
    return best


class CompressionStage(Stage):
    def __init__(self, threshold: int = 1024, level: int = 6):
        self.threshold = threshold
        self.level = level

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        ctx.add_response_hook(self.compress)
        nxt.proceed()

    def compress(self, ctx: RequestContext, response: Response) -> Optional[Response]:
        if isinstance(response, (FileResponse, StreamingResponse)):
            return None
        body = getattr(response, "body", None)
        if not body or not is_compressible(response.headers.get("content-type", "")):
            return None

        append_vary(response.headers, "Accept-Encoding")

        if ctx.method == "HEAD" or "content-encoding" in response.headers:
            return None
        if "no-transform" in response.headers.get("cache-control", "").lower():
            return None
        if len(body) < self.threshold:
            return None

        encoding = negotiate_encoding(ctx.headers.get("accept-encoding", ""))
        if encoding is None:
            return None

        if encoding == "gzip":
            compressed = gzip.compress(body, compresslevel=self.level)
        else:
            compressed = zlib.compress(body, self.level)

        response.body = compressed
        response.headers["Content-Encoding"] = encoding
        response.headers["Content-Length"] = str(len(compressed))
        return response
