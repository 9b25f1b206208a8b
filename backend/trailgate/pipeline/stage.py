"""
Trailgate — Stage Contract
===========================

What:  The uniform unit of request processing and the traversal loop that
       drives a sequence of stages.

Contract:
    Every stage is a coroutine `stage(ctx, nxt)`. It must resolve `nxt`
    exactly once:

        nxt.complete(response)  → response written, traversal stops
        nxt.proceed()           → next matching stage runs
        nxt.fail(error)         → jump to the error translator

    Raising an exception is the same as `nxt.fail(exc)`. Resolving twice
    raises ContinuationError; returning without resolving is a
    PipelineStalledError. Both are non-operational faults.

Two tracks:
    normal:  stage₁ → stage₂ → … → not-found
    error:   error translator
    The switch from normal to error happens once and is never undone.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    FrozenSet,
    Iterable,
    Optional,
)

from starlette.responses import Response

from trailgate.exceptions import ContinuationError, PipelineStalledError
from trailgate.pipeline.context import RequestContext


class Outcome(str, enum.Enum):
    PENDING = "pending"
    CONTINUE = "continue"
    COMPLETE = "complete"
    FAIL = "fail"
    EXHAUSTED = "exhausted"


class StageRole(str, enum.Enum):
    """Roles the pipeline builder checks ordering invariants against."""

    RAW_BODY = "raw_body"
    BODY_LIMIT = "body_limit"
    BODY_PARSER = "body_parser"
    SANITIZER = "sanitizer"
    ROUTER_DISPATCH = "router_dispatch"
    NOT_FOUND = "not_found"


class Continuation:
    """Two-track continuation handed to a single stage invocation."""

    __slots__ = ("_ctx", "_outcome", "_error")

    def __init__(self, ctx: RequestContext):
        self._ctx = ctx
        self._outcome = Outcome.PENDING
        self._error: Optional[BaseException] = None

    @property
    def outcome(self) -> Outcome:
        return self._outcome

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def _resolve(self, outcome: Outcome) -> None:
        if self._outcome is not Outcome.PENDING:
            raise ContinuationError(
                f"Continuation already resolved as '{self._outcome.value}', "
                f"cannot resolve again as '{outcome.value}'"
            )
        self._outcome = outcome

    def proceed(self) -> None:
        self._resolve(Outcome.CONTINUE)

    def complete(self, response: Response) -> None:
        if not isinstance(response, Response):
            raise ContinuationError(
                f"complete() needs a Response, got {type(response).__name__}"
            )
        self._resolve(Outcome.COMPLETE)
        self._ctx.response = response

    def fail(self, error: BaseException) -> None:
        self._resolve(Outcome.FAIL)
        self._error = error


class Stage(ABC):
    """Base class for pipeline stages."""

    role: ClassVar[Optional[StageRole]] = None

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        ...


class ErrorStage(ABC):
    """The error-track stage. Turns an error into a response."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def __call__(self, ctx: RequestContext, error: BaseException) -> Response:
        ...


Handler = Callable[[RequestContext, Continuation], Awaitable[None]]


class FunctionStage(Stage):
    """Adapts a plain `async def handler(ctx, nxt)` to the Stage interface."""

    def __init__(self, fn: Handler):
        self._fn = fn

    @property
    def name(self) -> str:
        return getattr(self._fn, "__qualname__", repr(self._fn))

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        await self._fn(ctx, nxt)


def as_stage(handler: Any) -> Stage:
    if isinstance(handler, Stage):
        return handler
    if callable(handler):
        return FunctionStage(handler)
    raise TypeError(f"Not a stage or handler: {handler!r}")


def normalize_path(path: str) -> str:
    """Collapse a trailing slash: '/api/' → '/api', '' → '/'."""
    if not path or path == "/":
        return "/"
    return "/" + path.strip("/")


def path_matches_prefix(prefix: str, path: str) -> bool:
    """
    Segment-aware, case-insensitive prefix match.

    '/api' matches '/api' and '/api/v1/tours' but not '/apiary'.
    '/' matches every path.
    """
    prefix = normalize_path(prefix).lower()
    if prefix == "/":
        return True
    path = path.lower()
    return path == prefix or path.startswith(prefix + "/")


@dataclass(frozen=True)
class StageRegistration:
    """
    One entry of a stage list.

    path=None    → every request
    exact=False  → `path` is a prefix (segment-aware)
    exact=True   → `path` must equal the request path
    methods=None → every method
    """

    stage: Any
    path: Optional[str] = None
    methods: Optional[FrozenSet[str]] = None
    exact: bool = False

    binds_params: ClassVar[bool] = False

    def match(self, method: str, path: str) -> Optional[Dict[str, Any]]:
        if self.methods is not None and method not in self.methods:
            return None
        if self.path is not None:
            if self.exact:
                if normalize_path(path).lower() != normalize_path(self.path).lower():
                    return None
            elif not path_matches_prefix(self.path, path):
                return None
        return {}


@dataclass
class TraversalResult:
    outcome: Outcome
    error: Optional[BaseException] = None


async def traverse(
    registrations: Iterable[Any],
    ctx: RequestContext,
    path: str,
) -> TraversalResult:
    """
    Run matching registrations in order until one completes or fails.

    Returns EXHAUSTED when every matching stage proceeded.
    """
    for registration in registrations:
        params = registration.match(ctx.method, path)
        if params is None:
            continue
        if registration.binds_params:
            ctx.params = params

        stage = registration.stage
        nxt = Continuation(ctx)
        try:
            await stage(ctx, nxt)
        except Exception as exc:
            return TraversalResult(Outcome.FAIL, exc)

        if nxt.outcome is Outcome.COMPLETE:
            return TraversalResult(Outcome.COMPLETE)
        if nxt.outcome is Outcome.FAIL:
            return TraversalResult(Outcome.FAIL, nxt.error)
        if nxt.outcome is Outcome.PENDING:
            return TraversalResult(Outcome.FAIL, PipelineStalledError(stage.name))

    return TraversalResult(Outcome.EXHAUSTED)
