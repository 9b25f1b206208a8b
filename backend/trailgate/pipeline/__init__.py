"""
Trailgate — Pipeline Package
=============================

The composition engine: stage contract, request context, builder,
routers and the ASGI adapter.

    Request → stage₁ → stage₂ → … → router dispatch → not-found
                 │         │              │               │
                 └─────────┴──── fail ────┴───────────────┴──→ error translator
"""

from trailgate.pipeline.builder import Pipeline, PipelineBuilder, build_pipeline
from trailgate.pipeline.context import RequestContext, request_id_var
from trailgate.pipeline.engine import PipelineMiddleware
from trailgate.pipeline.router import Router, RouterDispatchStage
from trailgate.pipeline.stage import (
    Continuation,
    ErrorStage,
    Outcome,
    Stage,
    StageRegistration,
    StageRole,
    as_stage,
    path_matches_prefix,
    traverse,
)

__all__ = [
    "Continuation",
    "ErrorStage",
    "Outcome",
    "Pipeline",
    "PipelineBuilder",
    "PipelineMiddleware",
    "RequestContext",
    "Router",
    "RouterDispatchStage",
    "Stage",
    "StageRegistration",
    "StageRole",
    "as_stage",
    "build_pipeline",
    "path_matches_prefix",
    "request_id_var",
    "traverse",
]
