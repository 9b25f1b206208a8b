"""
Trailgate — Test Configuration (conftest.py)
=============================================

What:  Shared pytest fixtures for the test suite.
How:   Apps are built per test from explicit Settings and an echo router,
       and exercised in-process through HTTPX's ASGITransport.

Fixtures:
    make_settings   → factory for Settings with overrides
    echo_router     → Router that reflects what reached the collaborator
    calls           → list the echo router appends every handled request to
    make_client     → async factory: create_app(...) wrapped in an AsyncClient
    client          → production-mode client with the echo router on /api/v1/tours
"""

import os
import tempfile
from contextlib import asynccontextmanager
from typing import Any, Dict, List

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from starlette.responses import JSONResponse

# Environment before any trailgate import
os.environ["APP_ENV"] = "production"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["STATIC_ROOT"] = tempfile.mkdtemp(prefix="trailgate_test_")

from trailgate.config import Settings  # noqa: E402
from trailgate.main import create_app  # noqa: E402
from trailgate.pipeline import Continuation, RequestContext, Router  # noqa: E402


@pytest.fixture
def make_settings(tmp_path):
    def factory(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "app_env": "production",
            "log_level": "WARNING",
            "static_root": str(tmp_path / "public"),
        }
        values.update(overrides)
        return Settings(**values)

    return factory


@pytest.fixture
def calls() -> List[Dict[str, Any]]:
    return []


@pytest.fixture
def echo_router(calls) -> Router:
    """
    Reflects the request as the collaborator sees it.

        GET /            → {"params": {}, "query": ..., "body": ..., ...}
        GET /{id}        → params carry id
    """

    async def echo(ctx: RequestContext, nxt: Continuation) -> None:
        seen = {
            "method": ctx.method,
            "path": ctx.path,
            "base_path": ctx.base_path,
            "params": ctx.params,
            "query": ctx.query,
            "body": ctx.body,
            "cookies": ctx.cookies,
        }
        calls.append(seen)
        nxt.complete(JSONResponse(seen))

    router = Router(name="tours")
    router.all("/", echo)
    router.all("/{id}", echo)
    return router


@pytest.fixture
def make_client(make_settings, echo_router):
    @asynccontextmanager
    async def factory(settings: Settings = None, **app_kwargs: Any):
        app_kwargs.setdefault("bindings", [("/api/v1/tours", echo_router)])
        app = create_app(config=settings or make_settings(), **app_kwargs)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http:
            yield http

    return factory


@pytest_asyncio.fixture
async def client(make_client):
    async with make_client() as http:
        yield http
