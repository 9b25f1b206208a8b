"""
Trailgate — Pipeline Builder Tests
===================================

What:  The builder freezes the stage list and refuses lists that break the
       ordering invariants, at build time rather than per request.
"""

import pytest

from trailgate.exceptions import PipelineConfigurationError
from trailgate.main import build_default_pipeline
from trailgate.middleware import (
    BodyLimitStage,
    CorsStage,
    ErrorTranslatorStage,
    JsonBodyStage,
    NotFoundStage,
    RawBodyStage,
    SanitizeStage,
    XssCleanStage,
)
from trailgate.pipeline import (
    Pipeline,
    PipelineBuilder,
    RouterDispatchStage,
    StageRegistration,
    build_pipeline,
)


def minimal_builder() -> PipelineBuilder:
    builder = PipelineBuilder()
    builder.use(JsonBodyStage(limit=10_240))
    builder.use(SanitizeStage())
    builder.use(RouterDispatchStage([]))
    return builder


class TestValidPipelines:
    def test_build_returns_frozen_registrations(self):
        builder = minimal_builder()
        builder.use(NotFoundStage())
        builder.use(ErrorTranslatorStage())
        pipeline = builder.build()

        assert isinstance(pipeline, Pipeline)
        assert isinstance(pipeline.registrations, tuple)
        assert isinstance(pipeline.error_stage, ErrorTranslatorStage)
        assert len(pipeline.stages) == 4

    def test_use_after_build_is_refused(self):
        builder = minimal_builder()
        builder.use(NotFoundStage())
        builder.use(ErrorTranslatorStage())
        builder.build()

        with pytest.raises(PipelineConfigurationError, match="already built"):
            builder.use(CorsStage())

    def test_build_pipeline_accepts_plain_registrations(self):
        pipeline = build_pipeline([
            StageRegistration(NotFoundStage()),
            StageRegistration(ErrorTranslatorStage()),
        ])
        assert len(pipeline.registrations) == 2

    def test_pipeline_is_immutable(self):
        pipeline = build_pipeline([
            StageRegistration(NotFoundStage()),
            StageRegistration(ErrorTranslatorStage()),
        ])
        with pytest.raises(AttributeError):
            pipeline.registrations = ()

    def test_default_pipeline_order(self, make_settings):
        pipeline = build_default_pipeline(make_settings())
        names = [reg.stage.name for reg in pipeline.registrations]
        assert names == [
            "CorsStage",
            "StaticFilesStage",
            "RawBodyStage",
            "WebhookCheckoutStage",
            "BodyLimitStage",
            "JsonBodyStage",
            "UrlencodedBodyStage",
            "CookieParserStage",
            "SanitizeStage",
            "XssCleanStage",
            "ParameterPollutionStage",
            "CompressionStage",
            "SecurityHeadersStage",
            "RateLimitStage",
            "RouterDispatchStage",
            "NotFoundStage",
            "ErrorTranslatorStage",
        ]

    def test_default_pipeline_scopes(self, make_settings):
        pipeline = build_default_pipeline(make_settings())
        by_name = {reg.stage.name: reg for reg in pipeline.registrations}

        raw = by_name["RawBodyStage"]
        assert raw.path == "/webhook-checkout"
        assert raw.exact is True
        assert raw.methods == frozenset({"POST"})
        assert by_name["RateLimitStage"].path == "/api"
        assert by_name["JsonBodyStage"].path is None

    def test_development_adds_request_logging(self, make_settings):
        pipeline = build_default_pipeline(make_settings(app_env="development"))
        names = [reg.stage.name for reg in pipeline.registrations]
        assert "RequestLoggingStage" in names
        assert names.index("RequestLoggingStage") < names.index("RateLimitStage")


class TestInvariantViolations:
    def test_empty_pipeline(self):
        with pytest.raises(PipelineConfigurationError, match="no stages"):
            build_pipeline([])

    def test_missing_error_translator(self):
        builder = minimal_builder()
        builder.use(NotFoundStage())
        with pytest.raises(PipelineConfigurationError, match="exactly one error translator"):
            builder.build()

    def test_two_error_translators(self):
        builder = minimal_builder()
        builder.use(NotFoundStage())
        builder.use(ErrorTranslatorStage())
        builder.use(ErrorTranslatorStage())
        with pytest.raises(PipelineConfigurationError, match="found 2"):
            builder.build()

    def test_error_translator_not_last(self):
        builder = minimal_builder()
        builder.use(ErrorTranslatorStage())
        builder.use(NotFoundStage())
        with pytest.raises(PipelineConfigurationError, match="last registered"):
            builder.build()

    def test_scoped_error_translator(self):
        builder = minimal_builder()
        builder.use(NotFoundStage())
        builder.use(ErrorTranslatorStage(), path="/api")
        with pytest.raises(PipelineConfigurationError, match="must not be scoped"):
            builder.build()

    def test_missing_not_found(self):
        builder = minimal_builder()
        builder.use(ErrorTranslatorStage())
        with pytest.raises(PipelineConfigurationError, match="not-found"):
            builder.build()

    def test_not_found_not_directly_before_translator(self):
        builder = PipelineBuilder()
        builder.use(NotFoundStage())
        builder.use(RouterDispatchStage([]))
        builder.use(ErrorTranslatorStage())
        with pytest.raises(PipelineConfigurationError, match="directly before"):
            builder.build()

    def test_scoped_not_found(self):
        builder = minimal_builder()
        builder.use(NotFoundStage(), path="/api")
        builder.use(ErrorTranslatorStage())
        with pytest.raises(PipelineConfigurationError, match="must not be scoped"):
            builder.build()

    def test_raw_capture_after_body_parser(self):
        builder = PipelineBuilder()
        builder.use(JsonBodyStage(limit=10_240))
        builder.use(RawBodyStage(limit=102_400), path="/webhook-checkout", exact=True)
        builder.use(NotFoundStage())
        builder.use(ErrorTranslatorStage())
        with pytest.raises(PipelineConfigurationError, match="before the body parsers"):
            builder.build()

    def test_raw_capture_after_body_limit(self):
        builder = PipelineBuilder()
        builder.use(BodyLimitStage(limit=10_240))
        builder.use(RawBodyStage(limit=102_400), path="/webhook-checkout", exact=True)
        builder.use(JsonBodyStage(limit=10_240))
        builder.use(NotFoundStage())
        builder.use(ErrorTranslatorStage())
        with pytest.raises(PipelineConfigurationError, match="the body limit"):
            builder.build()

    def test_cors_precedes_body_handling_by_default(self, make_settings):
        names = [reg.stage.name for reg in build_default_pipeline(make_settings()).registrations]
        assert names.index("CorsStage") < names.index("RawBodyStage")
        assert names.index("CorsStage") < names.index("BodyLimitStage")

    def test_sanitizer_before_body_parser(self):
        builder = PipelineBuilder()
        builder.use(XssCleanStage())
        builder.use(JsonBodyStage(limit=10_240))
        builder.use(NotFoundStage())
        builder.use(ErrorTranslatorStage())
        with pytest.raises(PipelineConfigurationError, match="after a body parser"):
            builder.build()

    def test_sanitizer_without_any_parser(self):
        builder = PipelineBuilder()
        builder.use(SanitizeStage())
        builder.use(NotFoundStage())
        builder.use(ErrorTranslatorStage())
        with pytest.raises(PipelineConfigurationError, match="after a body parser"):
            builder.build()

    def test_non_stage_registration(self):
        with pytest.raises(PipelineConfigurationError, match="Not a pipeline stage"):
            build_pipeline([
                StageRegistration(lambda ctx, nxt: None),
                StageRegistration(NotFoundStage()),
                StageRegistration(ErrorTranslatorStage()),
            ])
