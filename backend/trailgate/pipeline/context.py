"""
Trailgate — Request Context
============================

What:  Per-request state container mutated by stages as the request travels
       the pipeline.
How:   Built once from the Starlette `Request` by the ASGI adapter; handed to
       every stage; discarded after `finalize()` produced the response.

Response side:
    Stages that run before a response exists cannot touch it directly.
    They record headers in `response_headers` and register response hooks
    (compression, access logging). `finalize()` applies both, in the order
    they were registered, to whichever response the traversal produced:
    a stage's own response or the error translator's.
"""

import logging
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from starlette.datastructures import Headers, MutableHeaders
from starlette.requests import Request
from starlette.responses import Response

from trailgate.exceptions import PayloadTooLargeError
from trailgate.utils.querystring import parse_query_string

logger = logging.getLogger(__name__)

# Coroutine-local id of the request being processed, for log correlation
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

ResponseHook = Callable[["RequestContext", Response], Optional[Response]]


def append_vary(headers: MutableHeaders, value: str) -> None:
    """Add `value` to the Vary header without duplicating tokens."""
    current = [v.strip() for v in headers.get("vary", "").split(",") if v.strip()]
    if value.lower() not in {v.lower() for v in current}:
        current.append(value)
    headers["Vary"] = ", ".join(current)


@dataclass
class RequestContext:
    """Mutable state of one request's traversal."""

    request: Request
    method: str
    path: str
    original_url: str
    headers: Headers
    client_ip: str
    request_id: str = ""
    query: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)

    # Body: raw bytes when captured verbatim, parsed mapping otherwise
    raw_body: Optional[bytes] = None
    body: Dict[str, Any] = field(default_factory=dict)
    body_consumed: bool = False
    _buffered: Optional[bytes] = field(default=None, repr=False)

    # Repeated parameters collapsed by the pollution guard
    query_polluted: Dict[str, Any] = field(default_factory=dict)
    body_polluted: Dict[str, Any] = field(default_factory=dict)

    # Path prefix of the router currently handling the request
    base_path: str = ""

    response_headers: MutableHeaders = field(default_factory=MutableHeaders)
    response: Optional[Response] = None
    state: Dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.perf_counter)
    _hooks: List[ResponseHook] = field(default_factory=list, repr=False)

    @classmethod
    def from_request(cls, request: Request, request_id: str = "") -> "RequestContext":
        query_string = request.url.query
        path = request.url.path
        # Undecoded path, as the client sent it
        raw_path = request.scope.get("raw_path")
        sent_path = raw_path.split(b"?", 1)[0].decode("latin-1") if raw_path else path
        return cls(
            request=request,
            method=request.method.upper(),
            path=path,
            original_url=f"{sent_path}?{query_string}" if query_string else sent_path,
            headers=request.headers,
            client_ip=request.client.host if request.client else "unknown",
            request_id=request_id,
            query=parse_query_string(query_string),
        )

    @property
    def content_type(self) -> str:
        """Media type of the request body, lowercased, without parameters."""
        return self.headers.get("content-type", "").split(";")[0].strip().lower()

    @property
    def charset(self) -> str:
        for part in self.headers.get("content-type", "").split(";")[1:]:
            name, _, value = part.strip().partition("=")
            if name.lower() == "charset" and value:
                return value.strip('"').lower()
        return "utf-8"

    @property
    def has_body(self) -> bool:
        """True when the request announces a body (Content-Length or chunked)."""
        if "transfer-encoding" in self.headers:
            return True
        length = self.headers.get("content-length")
        return bool(length) and length != "0"

    async def read_body(self, limit: int, consume: bool = True) -> bytes:
        """
        Read the whole request body, refusing anything larger than `limit`.

        The declared Content-Length is checked before reading; the running
        total is checked while streaming, so at most `limit` bytes (plus one
        chunk) are ever buffered. The bytes are kept, so later readers
        (including `await ctx.request.body()`) see the same body.

        `consume=False` buffers without claiming the body for a parser.
        """
        if self._buffered is None:
            declared = self.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > limit:
                raise PayloadTooLargeError(limit=limit, length=int(declared))

            buffer = bytearray()
            async for chunk in self.request.stream():
                buffer.extend(chunk)
                if len(buffer) > limit:
                    raise PayloadTooLargeError(limit=limit, length=len(buffer))
            self._buffered = bytes(buffer)
            # Starlette serves request.body() and request.stream() from _body
            self.request._body = self._buffered
        elif len(self._buffered) > limit:
            raise PayloadTooLargeError(limit=limit, length=len(self._buffered))

        if consume:
            self.body_consumed = True
        return self._buffered

    # ── Response side ─────────────────────────────────────────────────────

    def add_response_hook(self, hook: ResponseHook) -> None:
        self._hooks.append(hook)

    def finalize(self, response: Response) -> Response:
        """Apply pending headers and response hooks to the outgoing response."""
        for key, value in self.response_headers.items():
            if key == "vary":
                append_vary(response.headers, value)
            elif key not in response.headers:
                response.headers[key] = value

        if self.request_id:
            response.headers["X-Request-ID"] = self.request_id

        for hook in self._hooks:
            replacement = hook(self, response)
            if replacement is not None:
                response = replacement
        return response
