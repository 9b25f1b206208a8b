"""
Trailgate — Rate Limiting Stage
================================

What:  Per-client fixed-window request counter for the API surface.
How:   Registered under the API prefix only. Each client identity gets a
       counter and a window start; the window resets purely on elapsed time.
When:  After CORS, so preflights are never counted, and before routing, so
       rejected requests never reach a collaborator.

Algorithm: Fixed Window Counter
    1. Look up the identity's (count, window_start)
    2. If the window has elapsed, start a new one at count 0
    3. Increment, then compare with the limit
    4. count > limit → 429 with Retry-After = seconds until the window resets

Atomicity:
    `MemoryStore.increment` contains no await, so on a single event loop
    no other request can interleave between the read and the write.

Production Upgrade Path:
    MemoryStore is per process. Multiple workers or instances need a shared
    store implementing `RateLimitStore` (e.g. Redis INCR + EXPIRE).
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, NamedTuple, Optional, Protocol

from trailgate.exceptions import RateLimitExceededError
from trailgate.pipeline.context import RequestContext
from trailgate.pipeline.stage import Continuation, Stage

logger = logging.getLogger(__name__)


class Hit(NamedTuple):
    count: int
    reset_at: float   # epoch seconds when the window ends
    reset_in: float   # seconds left in the window


class RateLimitStore(Protocol):
    def increment(self, key: str) -> Hit:
        ...

    def reset(self, key: str) -> None:
        ...


@dataclass
class _Window:
    count: int
    started_at: float


class MemoryStore:
    """In-process window counters keyed by client identity."""

    CLEANUP_EVERY = 1000

    def __init__(self, window: float, clock: Callable[[], float] = time.time):
        self.window = window
        self.clock = clock
        self._windows: Dict[str, _Window] = {}
        self._increments = 0

    def __len__(self) -> int:
        return len(self._windows)

    def increment(self, key: str) -> Hit:
        now = self.clock()
        entry = self._windows.get(key)
        if entry is None or now - entry.started_at >= self.window:
            entry = _Window(count=0, started_at=now)
            self._windows[key] = entry
        entry.count += 1

        self._increments += 1
        if self._increments % self.CLEANUP_EVERY == 0:
            self._cleanup_expired(now)

        reset_at = entry.started_at + self.window
        return Hit(count=entry.count, reset_at=reset_at, reset_in=reset_at - now)

    def reset(self, key: str) -> None:
        self._windows.pop(key, None)

    def _cleanup_expired(self, now: float) -> None:
        """Drop identities whose window has elapsed."""
        expired = [
            key for key, entry in self._windows.items()
            if now - entry.started_at >= self.window
        ]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug("Cleaned up %d expired rate limit windows", len(expired))


def client_identity(ctx: RequestContext, trust_proxy: bool = False) -> str:
    """Peer address, or the first X-Forwarded-For hop behind a trusted proxy."""
    if trust_proxy:
        forwarded = ctx.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return ctx.client_ip


class RateLimitStage(Stage):
    """
    Rejects clients that exceed `max_requests` per `window` seconds.

    Every counted response carries X-RateLimit-Limit, X-RateLimit-Remaining
    and X-RateLimit-Reset.
    """

    def __init__(
        self,
        max_requests: int,
        window: int,
        message: str,
        store: Optional[RateLimitStore] = None,
        trust_proxy: bool = False,
    ):
        self.max_requests = max_requests
        self.window = window
        self.message = message
        self.store = store if store is not None else MemoryStore(window)
        self.trust_proxy = trust_proxy

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        identity = client_identity(ctx, self.trust_proxy)
        hit = self.store.increment(identity)

        ctx.response_headers["X-RateLimit-Limit"] = str(self.max_requests)
        ctx.response_headers["X-RateLimit-Remaining"] = str(max(0, self.max_requests - hit.count))
        ctx.response_headers["X-RateLimit-Reset"] = str(math.ceil(hit.reset_at))

        if hit.count > self.max_requests:
            retry_after = max(1, math.ceil(hit.reset_in))
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds window",
                identity,
                hit.count,
                self.window,
            )
            nxt.fail(RateLimitExceededError(self.message, retry_after=retry_after))
            return

        nxt.proceed()
