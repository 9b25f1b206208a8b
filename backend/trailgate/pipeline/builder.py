"""
Trailgate — Pipeline Builder
=============================

What:  Assembles the fixed, ordered stage list at process start and checks
       the ordering invariants the stages depend on.
How:   `PipelineBuilder.use(...)` appends registrations; `build()` validates
       and returns an immutable `Pipeline`. The builder refuses further
       registrations once built.

Ordering invariants (violations raise PipelineConfigurationError):
    1. Exactly one error translator, registered last and unscoped.
    2. Exactly one not-found stage, unscoped, directly before it.
    3. Raw-body capture registered before the body limit and the parsers.
    4. Sanitation stages registered after the first body parser.
    5. Router dispatch registered before not-found.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from starlette.responses import Response

from trailgate.exceptions import NotFoundError, PipelineConfigurationError
from trailgate.pipeline.context import RequestContext
from trailgate.pipeline.stage import (
    ErrorStage,
    Outcome,
    Stage,
    StageRegistration,
    StageRole,
    traverse,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pipeline:
    """Immutable, validated stage list plus its error translator."""

    registrations: Tuple[StageRegistration, ...]

    @property
    def error_stage(self) -> ErrorStage:
        return self.registrations[-1].stage

    @property
    def stages(self) -> Tuple[StageRegistration, ...]:
        """Normal-track registrations, in execution order."""
        return self.registrations[:-1]

    async def handle(self, ctx: RequestContext) -> Response:
        result = await traverse(self.stages, ctx, ctx.path)

        if result.outcome is Outcome.COMPLETE:
            response = ctx.response
        elif result.outcome is Outcome.FAIL:
            response = await self.error_stage(ctx, result.error)
        else:
            # Unreachable with a validated stage list: not-found always fails
            response = await self.error_stage(ctx, NotFoundError(ctx.original_url))

        return ctx.finalize(response)


def _role_indexes(registrations: Sequence[StageRegistration], role: StageRole) -> List[int]:
    return [
        i for i, reg in enumerate(registrations)
        if getattr(reg.stage, "role", None) is role
    ]


def validate_order(registrations: Sequence[StageRegistration]) -> None:
    if not registrations:
        raise PipelineConfigurationError("Pipeline has no stages")

    errors = [i for i, reg in enumerate(registrations) if isinstance(reg.stage, ErrorStage)]
    if len(errors) != 1:
        raise PipelineConfigurationError(
            f"Pipeline needs exactly one error translator, found {len(errors)}"
        )
    if errors[0] != len(registrations) - 1:
        raise PipelineConfigurationError("Error translator must be the last registered stage")
    if registrations[-1].path is not None or registrations[-1].methods is not None:
        raise PipelineConfigurationError("Error translator must not be scoped to a path or method")

    for reg in registrations[:-1]:
        if not isinstance(reg.stage, Stage):
            raise PipelineConfigurationError(f"Not a pipeline stage: {reg.stage!r}")

    not_found = _role_indexes(registrations, StageRole.NOT_FOUND)
    if len(not_found) != 1:
        raise PipelineConfigurationError(
            f"Pipeline needs exactly one not-found stage, found {len(not_found)}"
        )
    if not_found[0] != len(registrations) - 2:
        raise PipelineConfigurationError(
            "Not-found stage must be registered directly before the error translator"
        )
    not_found_reg = registrations[not_found[0]]
    if not_found_reg.path is not None or not_found_reg.methods is not None:
        raise PipelineConfigurationError("Not-found stage must not be scoped to a path or method")

    parsers = _role_indexes(registrations, StageRole.BODY_PARSER)
    first_parser: Optional[int] = parsers[0] if parsers else None
    body_readers = sorted(parsers + _role_indexes(registrations, StageRole.BODY_LIMIT))
    first_reader: Optional[int] = body_readers[0] if body_readers else None

    for i in _role_indexes(registrations, StageRole.RAW_BODY):
        if first_reader is not None and i > first_reader:
            raise PipelineConfigurationError(
                f"Raw-body capture '{registrations[i].stage.name}' must be registered "
                f"before the body parsers and the body limit"
            )

    for i in _role_indexes(registrations, StageRole.SANITIZER):
        if first_parser is None or i < first_parser:
            raise PipelineConfigurationError(
                f"Sanitation stage '{registrations[i].stage.name}' must be registered "
                f"after a body parser"
            )

    for i in _role_indexes(registrations, StageRole.ROUTER_DISPATCH):
        if i > not_found[0]:
            raise PipelineConfigurationError("Router dispatch must precede the not-found stage")


def build_pipeline(registrations: Iterable[StageRegistration]) -> Pipeline:
    """Validate a stage list and freeze it into a Pipeline."""
    frozen = tuple(registrations)
    validate_order(frozen)
    logger.debug(
        "Pipeline built: %s",
        " → ".join(reg.stage.name for reg in frozen),
    )
    return Pipeline(registrations=frozen)


class PipelineBuilder:
    """
    Collects stage registrations in execution order.

    Usage:
        builder = PipelineBuilder()
        builder.use(JsonBodyStage(limit=10_240))
        builder.use(RateLimitStage(...), path="/api")
        ...
        pipeline = builder.build()
    """

    def __init__(self) -> None:
        self._registrations: List[StageRegistration] = []
        self._built = False

    def use(
        self,
        stage,
        path: Optional[str] = None,
        methods: Optional[Iterable[str]] = None,
        exact: bool = False,
    ) -> "PipelineBuilder":
        if self._built:
            raise PipelineConfigurationError("Pipeline already built; stages cannot be added")
        self._registrations.append(
            StageRegistration(
                stage=stage,
                path=path,
                methods=frozenset(m.upper() for m in methods) if methods else None,
                exact=exact,
            )
        )
        return self

    def build(self) -> Pipeline:
        if self._built:
            raise PipelineConfigurationError("Pipeline already built")
        pipeline = build_pipeline(self._registrations)
        self._built = True
        return pipeline
