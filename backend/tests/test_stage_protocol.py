"""
Trailgate — Stage Protocol Tests
=================================

What:  The continue / complete / fail contract and the two-track traversal.

What we test:
    ✅ complete stops traversal
    ✅ fail and raise both jump straight to the error translator
    ✅ resolving a continuation twice is a fault
    ✅ completing without a Response is a fault
    ✅ returning without resolving is a fault
    ✅ pending response headers reach error responses too
"""

from typing import List

import pytest
from starlette.responses import JSONResponse, PlainTextResponse

from trailgate.exceptions import BadRequestError, ContinuationError
from trailgate.middleware import ErrorTranslatorStage, NotFoundStage
from trailgate.pipeline import (
    Continuation,
    Outcome,
    PipelineBuilder,
    RequestContext,
    as_stage,
)


def recording(log: List[str], name: str, action: str = "proceed", error=None):
    async def stage(ctx: RequestContext, nxt: Continuation) -> None:
        log.append(name)
        if action == "proceed":
            nxt.proceed()
        elif action == "complete":
            nxt.complete(PlainTextResponse(name))
        elif action == "fail":
            nxt.fail(error)
        elif action == "raise":
            raise error
        elif action == "twice":
            nxt.proceed()
            nxt.complete(PlainTextResponse(name))
        elif action == "empty":
            nxt.complete(None)
        # "stall" resolves nothing

    stage.__qualname__ = name
    return as_stage(stage)


def pipeline_of(*stages, verbose: bool = False):
    builder = PipelineBuilder()
    for stage in stages:
        builder.use(stage)
    builder.use(NotFoundStage())
    builder.use(ErrorTranslatorStage(verbose=verbose))
    return builder.build()


class TestContinuation:
    def _ctx(self):
        return object.__new__(RequestContext)

    def test_starts_pending(self):
        nxt = Continuation(self._ctx())
        assert nxt.outcome is Outcome.PENDING
        assert nxt.error is None

    def test_fail_records_error(self):
        nxt = Continuation(self._ctx())
        error = BadRequestError("nope")
        nxt.fail(error)
        assert nxt.outcome is Outcome.FAIL
        assert nxt.error is error

    def test_complete_sets_response_on_context(self):
        ctx = self._ctx()
        nxt = Continuation(ctx)
        response = PlainTextResponse("ok")
        nxt.complete(response)
        assert nxt.outcome is Outcome.COMPLETE
        assert ctx.response is response

    def test_second_resolution_raises(self):
        nxt = Continuation(self._ctx())
        nxt.proceed()
        with pytest.raises(ContinuationError, match="already resolved"):
            nxt.fail(BadRequestError())

    def test_complete_requires_a_response(self):
        ctx = self._ctx()
        nxt = Continuation(ctx)
        with pytest.raises(ContinuationError, match="needs a Response, got NoneType"):
            nxt.complete(None)
        assert nxt.outcome is Outcome.PENDING


class TestTraversal:
    @pytest.mark.asyncio
    async def test_stages_run_in_registration_order(self, make_client):
        log: List[str] = []
        pipeline = pipeline_of(
            recording(log, "first"),
            recording(log, "second"),
            recording(log, "third", action="complete"),
        )
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/anything")

        assert response.status_code == 200
        assert response.text == "third"
        assert log == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_complete_halts_traversal(self, make_client):
        log: List[str] = []
        pipeline = pipeline_of(
            recording(log, "first", action="complete"),
            recording(log, "second"),
        )
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/")

        assert response.text == "first"
        assert log == ["first"]

    @pytest.mark.asyncio
    async def test_fail_skips_remaining_stages(self, make_client):
        log: List[str] = []
        pipeline = pipeline_of(
            recording(log, "first", action="fail", error=BadRequestError("Bad tour id")),
            recording(log, "second", action="complete"),
        )
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/")

        assert response.status_code == 400
        assert response.json() == {"status": "fail", "message": "Bad tour id"}
        assert log == ["first"]

    @pytest.mark.asyncio
    async def test_raising_is_the_same_as_failing(self, make_client):
        log: List[str] = []
        pipeline = pipeline_of(
            recording(log, "first", action="raise", error=BadRequestError("Raised")),
            recording(log, "second", action="complete"),
        )
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/")

        assert response.status_code == 400
        assert response.json()["message"] == "Raised"
        assert log == ["first"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_hidden_in_production(self, make_client):
        log: List[str] = []
        pipeline = pipeline_of(
            recording(log, "boom", action="raise", error=RuntimeError("db password is hunter2")),
        )
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/")

        assert response.status_code == 500
        assert response.json() == {"status": "error", "message": "Something went very wrong!"}
        assert "hunter2" not in response.text

    @pytest.mark.asyncio
    async def test_double_resolution_is_a_fault(self, make_client):
        log: List[str] = []
        pipeline = pipeline_of(
            recording(log, "greedy", action="twice"),
            recording(log, "after"),
        )
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/")

        assert response.status_code == 500
        assert log == ["greedy"]

    @pytest.mark.asyncio
    async def test_completing_without_response_is_a_fault(self, make_client):
        log: List[str] = []
        pipeline = pipeline_of(
            recording(log, "blank", action="empty"),
            recording(log, "after"),
            verbose=True,
        )
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/")

        assert response.status_code == 500
        assert response.json()["error"]["name"] == "ContinuationError"
        assert log == ["blank"]

    @pytest.mark.asyncio
    async def test_stalled_stage_is_reported_in_development(self, make_client):
        log: List[str] = []
        pipeline = pipeline_of(recording(log, "sleepy", action="stall"), verbose=True)
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/")

        body = response.json()
        assert response.status_code == 500
        assert body["error"]["name"] == "PipelineStalledError"
        assert "sleepy" in body["message"]

    @pytest.mark.asyncio
    async def test_every_stage_proceeding_ends_in_not_found(self, make_client):
        log: List[str] = []
        pipeline = pipeline_of(recording(log, "only"))
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/missing?x=1")

        assert response.status_code == 404
        assert response.json() == {
            "status": "fail",
            "message": "Can't find /missing?x=1 on this server !",
        }

    @pytest.mark.asyncio
    async def test_pending_headers_apply_to_error_responses(self, make_client):
        async def tag(ctx: RequestContext, nxt: Continuation) -> None:
            ctx.response_headers["X-Tagged"] = "yes"
            nxt.proceed()

        pipeline = pipeline_of(as_stage(tag))
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/nowhere")

        assert response.status_code == 404
        assert response.headers["x-tagged"] == "yes"

    @pytest.mark.asyncio
    async def test_response_own_headers_win_over_pending_headers(self, make_client):
        async def tag(ctx: RequestContext, nxt: Continuation) -> None:
            ctx.response_headers["X-Source"] = "pending"
            nxt.proceed()

        async def respond(ctx: RequestContext, nxt: Continuation) -> None:
            nxt.complete(JSONResponse({}, headers={"X-Source": "handler"}))

        pipeline = pipeline_of(as_stage(tag), as_stage(respond))
        async with make_client(pipeline=pipeline) as http:
            response = await http.get("/")

        assert response.headers["x-source"] == "handler"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, make_client):
        pipeline = pipeline_of()
        async with make_client(pipeline=pipeline) as http:
            given = await http.get("/", headers={"X-Request-ID": "abc123"})
            generated = await http.get("/")

        assert given.headers["x-request-id"] == "abc123"
        assert len(generated.headers["x-request-id"]) == 8
