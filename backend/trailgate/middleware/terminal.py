"""
Trailgate — Terminal Stages
============================

What:  The two stages every pipeline ends with.

    NotFoundStage          → always fails with 404 naming the unmatched URL
    ErrorTranslatorStage   → the only consumer of errors; builds the
                             error response

Error translation:
    Verbose (development):
        {status, error: {...}, message, stack} with the error's own status.
    Restricted (production):
        Collaborator faults are first mapped to operational errors:

            MalformedIdentifierError  → 400 "Invalid {field}: {value}."
            DuplicateKeyError         → 400 "Duplicate field value: ..."
            RecordValidationError     → 400 "Invalid input data. ..."
            pydantic ValidationError  → 400 "Invalid input data. ..."
            InvalidTokenError         → 401 "Invalid token. ..."
            ExpiredTokenError         → 401 "Your token has expired! ..."

        Operational errors → {status, message} with their status.
        Anything else      → 500 {status: "error", message: generic}.
        Internal details are logged server-side, never returned.
"""

import json
import logging
import traceback
from typing import Any, Dict, List

from pydantic import ValidationError as PydanticValidationError
from starlette.responses import JSONResponse, Response

from trailgate.exceptions import (
    AppError,
    BadRequestError,
    DuplicateKeyError,
    ExpiredTokenError,
    InvalidTokenError,
    MalformedIdentifierError,
    NotFoundError,
    RecordValidationError,
    UnauthorizedError,
    status_class,
)
from trailgate.pipeline.context import RequestContext
from trailgate.pipeline.stage import Continuation, ErrorStage, Stage, StageRole

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went very wrong!"


class NotFoundStage(Stage):
    role = StageRole.NOT_FOUND

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        nxt.fail(NotFoundError(ctx.original_url))


def _pydantic_messages(error: PydanticValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages


def translate_fault(error: BaseException) -> BaseException:
    """Map a recognized collaborator fault to an operational error."""
    if isinstance(error, MalformedIdentifierError):
        return BadRequestError(f"Invalid {error.field}: {error.value}.")
    if isinstance(error, DuplicateKeyError):
        return BadRequestError(
            f"Duplicate field value: \"{error.value}\". Please use another value!"
        )
    if isinstance(error, RecordValidationError):
        return BadRequestError(f"Invalid input data. {'. '.join(error.messages)}")
    if isinstance(error, PydanticValidationError):
        return BadRequestError(f"Invalid input data. {'. '.join(_pydantic_messages(error))}")
    if isinstance(error, InvalidTokenError):
        return UnauthorizedError("Invalid token. Please log in again!")
    if isinstance(error, ExpiredTokenError):
        return UnauthorizedError("Your token has expired! Please log in again.")
    return error


def _jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, default=repr))


def _error_detail(error: BaseException) -> Dict[str, Any]:
    if isinstance(error, AppError):
        context = error.context
    elif isinstance(error, PydanticValidationError):
        context = {"errors": error.errors()}
    else:
        context = {
            key: value for key, value in getattr(error, "__dict__", {}).items()
            if not key.startswith("_")
        }
    return {
        "name": type(error).__name__,
        "message": str(error),
        "status_code": getattr(error, "status_code", 500),
        "is_operational": getattr(error, "is_operational", False),
        "context": _jsonable(context),
    }


class ErrorTranslatorStage(ErrorStage):
    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    async def __call__(self, ctx: RequestContext, error: BaseException) -> Response:
        if not getattr(error, "is_operational", False):
            logger.error(
                "[%s] Unexpected error on %s %s: %s",
                ctx.request_id,
                ctx.method,
                ctx.original_url,
                error,
                exc_info=(type(error), error, error.__traceback__),
            )

        if self.verbose:
            return self._verbose_response(error)
        return self._restricted_response(ctx, translate_fault(error))

    def _verbose_response(self, error: BaseException) -> Response:
        status_code = getattr(error, "status_code", 500)
        message = error.message if isinstance(error, AppError) else str(error)
        return JSONResponse(
            status_code=status_code,
            content={
                "status": status_class(status_code),
                "error": _error_detail(error),
                "message": message,
                "stack": "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                ),
            },
            headers=error.headers if isinstance(error, AppError) else None,
        )

    def _restricted_response(self, ctx: RequestContext, error: BaseException) -> Response:
        if isinstance(error, AppError) and error.is_operational:
            if error.status_code >= 500:
                logger.error("[%s] %s | Context: %s", ctx.request_id, error.message, error.context)
            return JSONResponse(
                status_code=error.status_code,
                content={"status": error.status, "message": error.message},
                headers=error.headers,
            )

        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": GENERIC_ERROR_MESSAGE},
        )
