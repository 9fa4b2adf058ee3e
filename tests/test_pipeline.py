"""Tests for the request pipeline contract and its assembly."""

from typing import List

import pytest
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from app.middleware import build_pipeline, respond_internal_error
from app.pipeline import Pipeline, PipelineState, RequestContext, Stage, StageResult
from app.services import RateLimitService, StaticFileService


def make_context(path: str = "/things", method: str = "GET") -> RequestContext:
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "headers": [],
        "query_string": b"",
    }
    return RequestContext(request=Request(scope), client_ip="10.0.0.1")


class RecordingStage(Stage):
    def __init__(self, name: str, calls: List[str], respond_with: Response = None):
        self.name = name
        self.calls = calls
        self.respond_with = respond_with

    async def __call__(self, ctx):
        self.calls.append(self.name)
        if self.respond_with is not None:
            return StageResult.respond(self.respond_with)
        return StageResult.proceed()

    def on_response(self, ctx, response):
        self.calls.append(f"{self.name}:after")


class ExplodingStage(Stage):
    name = "exploding"

    async def __call__(self, ctx):
        raise ValueError("database password is hunter2")


class HeaderStage(Stage):
    name = "headers"

    async def __call__(self, ctx):
        ctx.response_headers["X-Test"] = "yes"
        return StageResult.proceed()


@pytest.mark.asyncio
async def test_stages_run_in_declared_order():
    calls: List[str] = []
    pipeline = Pipeline(
        [
            RecordingStage("first", calls),
            RecordingStage("second", calls),
            RecordingStage("last", calls, respond_with=PlainTextResponse("done")),
        ],
        error_responder=respond_internal_error,
    )

    ctx = make_context()
    response = await pipeline.run(ctx)

    assert response.body == b"done"
    assert calls == ["first", "second", "last", "last:after", "second:after", "first:after"]
    assert ctx.terminated_by == "last"
    assert ctx.state == PipelineState.COMPLETED


@pytest.mark.asyncio
async def test_short_circuit_skips_later_stages():
    calls: List[str] = []
    pipeline = Pipeline(
        [
            RecordingStage("gate", calls, respond_with=PlainTextResponse("stop", status_code=429)),
            RecordingStage("never", calls, respond_with=PlainTextResponse("unreachable")),
        ],
        error_responder=respond_internal_error,
    )

    response = await pipeline.run(make_context())

    assert response.status_code == 429
    assert "never" not in calls


@pytest.mark.asyncio
async def test_stage_error_returns_generic_500():
    calls: List[str] = []
    pipeline = Pipeline(
        [
            HeaderStage(),
            RecordingStage("before", calls),
            ExplodingStage(),
            RecordingStage("after", calls, respond_with=PlainTextResponse("unreachable")),
        ],
        error_responder=respond_internal_error,
    )

    ctx = make_context()
    response = await pipeline.run(ctx)

    assert response.status_code == 500
    assert response.body == b'{"error":"Internal Server Error"}'
    assert b"hunter2" not in response.body
    assert response.headers["X-Test"] == "yes"
    assert calls == ["before", "before:after"]
    assert ctx.terminated_by == "error"


class BrokenHookStage(Stage):
    name = "broken_hook"

    async def __call__(self, ctx):
        return StageResult.proceed()

    def on_response(self, ctx, response):
        raise KeyError("cache backend offline")


@pytest.mark.asyncio
async def test_response_hook_error_returns_generic_500():
    pipeline = Pipeline(
        [
            HeaderStage(),
            BrokenHookStage(),
            RecordingStage("end", [], respond_with=PlainTextResponse("done")),
        ],
        error_responder=respond_internal_error,
    )

    ctx = make_context()
    response = await pipeline.run(ctx)

    assert response.status_code == 500
    assert response.body == b'{"error":"Internal Server Error"}'
    assert b"cache backend" not in response.body
    assert response.headers["X-Test"] == "yes"
    assert ctx.terminated_by == "error"
    assert ctx.state == PipelineState.COMPLETED


@pytest.mark.asyncio
async def test_pipeline_without_terminal_response_is_an_error():
    pipeline = Pipeline([RecordingStage("only", [])], error_responder=respond_internal_error)

    response = await pipeline.run(make_context())

    assert response.status_code == 500


def test_stage_result_outcomes():
    assert StageResult.proceed().is_short_circuit is False
    response = PlainTextResponse("x")
    result = StageResult.respond(response)
    assert result.is_short_circuit is True
    assert result.response is response


def test_build_pipeline_order(make_settings, upload_dir):
    pipeline = build_pipeline(
        make_settings(),
        rate_limit_service=RateLimitService(),
        static_file_service=StaticFileService(upload_dir),
        routes=[],
    )

    assert pipeline.names == [
        "security_headers",
        "cors",
        "body_parsing",
        "request_logging",
        "rate_limit",
        "static_files",
        "router",
        "not_found",
    ]


def test_build_pipeline_optional_stages(make_settings, upload_dir):
    pipeline = build_pipeline(
        make_settings(CORS_ENABLED=False, RATE_LIMIT_ENABLED=False),
        rate_limit_service=RateLimitService(),
        static_file_service=StaticFileService(upload_dir),
        routes=[],
    )

    assert pipeline.names == [
        "security_headers",
        "body_parsing",
        "request_logging",
        "static_files",
        "router",
        "not_found",
    ]


def test_app_pipeline_matches_assembly(app):
    assert app.state.pipeline.names[0] == "security_headers"
    assert app.state.pipeline.names[-2:] == ["router", "not_found"]
