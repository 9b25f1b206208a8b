"""
Trailgate — Routers and Router Dispatch
========================================

What:  The handler-registration interface business collaborators plug into,
       and the stage that delegates to them by path prefix.

Router:
    A sub-pipeline. Handlers share the stage contract (`handler(ctx, nxt)`)
    and are matched against the path remaining after the mount prefix.
    Path templates use Starlette syntax: "/{id}", "/{slug:path}".

        tours = Router()
        tours.get("/", list_tours)
        tours.get("/{id}", get_tour)
        tours.patch("/{id}", protect, restrict_to("admin"), update_tour)

Dispatch rules:
    - bindings are tried in registration order, first prefix match wins
      (not longest prefix)
    - a matched router that exhausts without completing proceeds to the
      not-found stage; later bindings are never tried
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from starlette.routing import compile_path

from trailgate.pipeline.context import RequestContext
from trailgate.pipeline.stage import (
    Continuation,
    Outcome,
    Stage,
    StageRegistration,
    StageRole,
    TraversalResult,
    as_stage,
    normalize_path,
    path_matches_prefix,
    traverse,
)

logger = logging.getLogger(__name__)


class RouteEntry:
    """One handler bound to a path template and a method set."""

    binds_params = True

    def __init__(self, path: str, methods: Optional[Iterable[str]], stage: Stage):
        self.path = normalize_path(path)
        self.methods = frozenset(m.upper() for m in methods) if methods else None
        if self.methods is not None and "GET" in self.methods:
            self.methods = self.methods | {"HEAD"}
        self.stage = stage
        self._regex, _, self._convertors = compile_path(self.path)
        self._regex = re.compile(self._regex.pattern, re.IGNORECASE)

    def match(self, method: str, path: str) -> Optional[Dict[str, Any]]:
        if self.methods is not None and method not in self.methods:
            return None
        found = self._regex.match(normalize_path(path))
        if not found:
            return None
        return {
            name: self._convertors[name].convert(value)
            for name, value in found.groupdict().items()
        }


class Router:
    """Ordered collection of middleware and route handlers for one resource family."""

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name or "router"
        self._entries: List[Any] = []

    @property
    def entries(self) -> Tuple[Any, ...]:
        return tuple(self._entries)

    def use(self, handler, path: Optional[str] = None) -> "Router":
        """Register router-level middleware, optionally under a sub-prefix."""
        self._entries.append(StageRegistration(stage=as_stage(handler), path=path))
        return self

    def route(self, path: str, methods: Optional[Iterable[str]], *handlers) -> "Router":
        if not handlers:
            raise ValueError(f"Route '{path}' needs at least one handler")
        for handler in handlers:
            self._entries.append(RouteEntry(path, methods, as_stage(handler)))
        return self

    def all(self, path: str, *handlers) -> "Router":
        return self.route(path, None, *handlers)

    def get(self, path: str, *handlers) -> "Router":
        return self.route(path, ["GET"], *handlers)

    def post(self, path: str, *handlers) -> "Router":
        return self.route(path, ["POST"], *handlers)

    def put(self, path: str, *handlers) -> "Router":
        return self.route(path, ["PUT"], *handlers)

    def patch(self, path: str, *handlers) -> "Router":
        return self.route(path, ["PATCH"], *handlers)

    def delete(self, path: str, *handlers) -> "Router":
        return self.route(path, ["DELETE"], *handlers)

    async def handle(self, ctx: RequestContext, path: str) -> TraversalResult:
        return await traverse(self._entries, ctx, path)


def _strip_prefix(prefix: str, path: str) -> str:
    prefix = normalize_path(prefix)
    if prefix == "/":
        return normalize_path(path)
    return normalize_path(path[len(prefix):])


class RouterDispatchStage(Stage):
    """Delegates to the first router whose prefix matches the request path."""

    role = StageRole.ROUTER_DISPATCH

    def __init__(self, bindings: Sequence[Tuple[str, Router]]):
        self._bindings: Tuple[Tuple[str, Router], ...] = tuple(
            (normalize_path(prefix), router) for prefix, router in bindings
        )

    @property
    def bindings(self) -> Tuple[Tuple[str, Router], ...]:
        return self._bindings

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        for prefix, router in self._bindings:
            if not path_matches_prefix(prefix, ctx.path):
                continue

            ctx.base_path = "" if prefix == "/" else prefix
            logger.debug("Dispatching %s %s to %s", ctx.method, ctx.path, router.name)
            result = await router.handle(ctx, _strip_prefix(prefix, ctx.path))

            if result.outcome is Outcome.COMPLETE:
                nxt.complete(ctx.response)
            elif result.outcome is Outcome.FAIL:
                nxt.fail(result.error)
            else:
                nxt.proceed()
            return

        nxt.proceed()
