"""
Trailgate — Custom Exception Hierarchy
=======================================

What:  Error objects that travel the pipeline's error track.
How:   Stages and collaborators raise (or pass to `nxt.fail`) one of these;
       the error translator is the single place that turns them into a
       response.
Who:   Raised by stages, routers and business collaborators; consumed by
       `trailgate.middleware.terminal.ErrorTranslatorStage`.

Exception Hierarchy:
    AppError (operational, carries status_code)
    ├── BadRequestError          → 400
    ├── UnauthorizedError        → 401
    ├── NotFoundError            → 404
    ├── PayloadTooLargeError     → 413
    └── RateLimitExceededError   → 429
    PipelineFault (non-operational, always 500)
    ├── ContinuationError        → a stage resolved its continuation twice
    └── PipelineStalledError     → a stage returned without resolving it

    CollaboratorFault (raised by business code, translated in production)
    ├── MalformedIdentifierError → 400
    ├── DuplicateKeyError        → 400
    ├── RecordValidationError    → 400
    ├── InvalidTokenError        → 401
    └── ExpiredTokenError        → 401

    PipelineConfigurationError   → raised at startup, never per request

Status class:
    4xx → "fail" (the client can fix it)
    5xx → "error" (our fault)
"""

from typing import Any, Dict, List, Optional


def status_class(status_code: int) -> str:
    """Map an HTTP status code to the response `status` field."""
    return "fail" if 400 <= status_code < 500 else "error"


class AppError(Exception):
    """
    Base class for operational errors.

    Attributes:
        message:      User-facing error description (safe to return)
        status_code:  HTTP status code of the error response
        context:      Additional debug info (logged, returned only in development)
        headers:      Extra response headers (e.g. Retry-After)
    """

    is_operational = True

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        status_code: int = 500,
        context: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.context = context or {}
        self.headers = headers or {}
        super().__init__(self.message)

    @property
    def status(self) -> str:
        return status_class(self.status_code)


class BadRequestError(AppError):
    """Client sent a body or parameter that cannot be processed."""

    def __init__(
        self,
        message: str = "Bad request",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, status_code=400, context=context)


class UnauthorizedError(AppError):
    def __init__(
        self,
        message: str = "You are not logged in! Please log in to get access.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, status_code=401, context=context)


class NotFoundError(AppError):
    """
    Raised when nothing in the pipeline claimed the request.

    The message names the unmatched URL verbatim, query string included.
    """

    def __init__(
        self,
        url: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["url"] = url
        super().__init__(
            message=f"Can't find {url} on this server !",
            status_code=404,
            context=ctx,
        )
        self.url = url


class PayloadTooLargeError(AppError):
    """Raised by the body stages when a request body exceeds its limit."""

    def __init__(
        self,
        limit: int,
        length: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["limit"] = limit
        if length is not None:
            ctx["length"] = length
        super().__init__(
            message="Request entity too large",
            status_code=413,
            context=ctx,
        )
        self.limit = limit
        self.length = length


class RateLimitExceededError(AppError):
    """
    Raised when a client exceeds the request quota of the current window.

    Carries the Retry-After header so the translator can emit it.
    """

    def __init__(
        self,
        message: str,
        retry_after: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(
            message=message,
            status_code=429,
            context=ctx,
            headers={"Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after


# ══════════════════════════════════════════════════════════════════════════
# Non-operational faults
# ══════════════════════════════════════════════════════════════════════════

class PipelineFault(Exception):
    """Programming error inside the pipeline. Never shown to clients in production."""

    is_operational = False
    status_code = 500


class ContinuationError(PipelineFault):
    """A stage tried to resolve its continuation more than once."""


class PipelineStalledError(PipelineFault):
    """A stage returned without completing, proceeding or failing."""

    def __init__(self, stage_name: str):
        self.stage_name = stage_name
        super().__init__(f"Stage '{stage_name}' returned without resolving its continuation")


class PipelineConfigurationError(Exception):
    """The stage list violates an ordering invariant. Raised at build time."""


# ══════════════════════════════════════════════════════════════════════════
# Collaborator faults (translated by the error translator in production)
# ══════════════════════════════════════════════════════════════════════════

class CollaboratorFault(Exception):
    """Base for faults raised by persistence or auth collaborators."""

    is_operational = False
    status_code = 500


class MalformedIdentifierError(CollaboratorFault):
    """A value could not be cast to the identifier type of `field`."""

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value
        super().__init__(f"Cast to identifier failed for value \"{value}\" at path \"{field}\"")


class DuplicateKeyError(CollaboratorFault):
    """A unique constraint rejected `value`."""

    def __init__(self, value: Any, field: Optional[str] = None):
        self.value = value
        self.field = field
        super().__init__(f"Duplicate key error: {field or 'value'} = {value!r}")


class RecordValidationError(CollaboratorFault):
    """Schema-level validation failed with one message per invalid field."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("Validation failed: " + "; ".join(
            f"{field}: {msg}" for field, msg in errors.items()
        ))

    @property
    def messages(self) -> List[str]:
        return list(self.errors.values())


class InvalidTokenError(CollaboratorFault):
    """Credential signature did not verify."""

    def __init__(self, message: str = "invalid signature"):
        super().__init__(message)


class ExpiredTokenError(CollaboratorFault):
    """Credential was valid but has expired."""

    def __init__(self, message: str = "jwt expired"):
        super().__init__(message)
