"""Pipeline stages and the ASGI middleware that drives them."""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import parse_qsl

import anyio
from fastapi import Request, status
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import FileResponse, Response
from starlette.routing import BaseRoute, Match
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.config import Settings
from app.exceptions import (
    InvalidRequestBody,
    PayloadTooLarge,
    RateLimitExceeded,
    RequestTimeout,
    StaticFileNotFound,
    TraversalRejected,
)
from app.pipeline import Pipeline, RequestContext, Stage, StageResult
from app.services.error_service import ErrorService
from app.services.rate_limit_service import RateLimitService
from app.services.static_file_service import StaticFileService

logger = logging.getLogger(__name__)


class SecurityHeadersStage(Stage):
    """Adds security headers to every response."""

    name = "security_headers"

    SECURITY_HEADERS = {
        "Content-Security-Policy": (
            "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
            "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
            "object-src 'none';script-src 'self';script-src-attr 'none';"
            "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
        ),
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-origin",
        "Origin-Agent-Cluster": "?1",
        "Referrer-Policy": "no-referrer",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "X-Content-Type-Options": "nosniff",
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "X-Frame-Options": "SAMEORIGIN",
        "X-Permitted-Cross-Domain-Policies": "none",
        "X-XSS-Protection": "0",
    }

    async def __call__(self, ctx: RequestContext) -> StageResult:
        ctx.response_headers.update(self.SECURITY_HEADERS)
        return StageResult.proceed()


class CORSStage(Stage):
    """Answers preflight requests and tags cross-origin responses.

    The origin policy itself is Starlette's CORSMiddleware, used here for its
    preflight response and origin checks rather than as a separate ASGI layer.
    """

    name = "cors"

    def __init__(
        self,
        allow_origins: Sequence[str] = ("*",),
        allow_methods: Sequence[str] = ("GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"),
        allow_headers: Sequence[str] = ("*",),
        allow_credentials: bool = False,
    ):
        self.policy = CORSMiddleware(
            app=None,
            allow_origins=allow_origins,
            allow_methods=allow_methods,
            allow_headers=allow_headers,
            allow_credentials=allow_credentials,
        )

    @staticmethod
    def _is_preflight(ctx: RequestContext) -> bool:
        return (
            ctx.method == "OPTIONS"
            and "origin" in ctx.request.headers
            and "access-control-request-method" in ctx.request.headers
        )

    async def __call__(self, ctx: RequestContext) -> StageResult:
        if self._is_preflight(ctx):
            return StageResult.respond(
                self.policy.preflight_response(request_headers=ctx.request.headers)
            )
        return StageResult.proceed()

    def on_response(self, ctx: RequestContext, response: Response) -> None:
        origin = ctx.request.headers.get("origin")
        if origin is None or self._is_preflight(ctx):
            return

        response.headers.update(self.policy.simple_headers)
        has_cookie = "cookie" in ctx.request.headers

        if self.policy.allow_all_origins and has_cookie:
            self.policy.allow_explicit_origin(response.headers, origin)
        elif not self.policy.allow_all_origins and self.policy.is_allowed_origin(origin=origin):
            self.policy.allow_explicit_origin(response.headers, origin)


class BodyParsingStage(Stage):
    """Parses JSON and urlencoded bodies onto the request context."""

    name = "body_parsing"

    FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"

    def __init__(self, max_body_size: int = 102400):
        self.max_body_size = max_body_size

    @staticmethod
    def _media_type(ctx: RequestContext) -> str:
        content_type = ctx.request.headers.get("content-type", "")
        return content_type.split(";", 1)[0].strip().lower()

    @staticmethod
    def _is_json(media_type: str) -> bool:
        return media_type == "application/json" or media_type.endswith("+json")

    async def _read(self, request: Request) -> bytes:
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_body_size:
            raise PayloadTooLarge(context={"content_length": declared})

        body = await request.body()
        if len(body) > self.max_body_size:
            raise PayloadTooLarge(context={"content_length": len(body)})
        return body

    @staticmethod
    def _parse_json(raw: bytes) -> Any:
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidRequestBody(context={"reason": str(e)})

        # Strict mode: only objects and arrays are accepted at the top level
        if not isinstance(parsed, (dict, list)):
            raise InvalidRequestBody(context={"reason": "top-level value is not an object or array"})
        return parsed

    @staticmethod
    def _parse_form(raw: bytes) -> Dict[str, Any]:
        try:
            pairs = parse_qsl(raw.decode("utf-8"), keep_blank_values=True)
        except UnicodeDecodeError as e:
            raise InvalidRequestBody("Invalid form body", context={"reason": str(e)})

        form: Dict[str, Any] = {}
        for key, value in pairs:
            if key not in form:
                form[key] = value
            elif isinstance(form[key], list):
                form[key].append(value)
            else:
                form[key] = [form[key], value]
        return form

    async def __call__(self, ctx: RequestContext) -> StageResult:
        media_type = self._media_type(ctx)
        ctx.body = {}

        if self._is_json(media_type) or media_type == self.FORM_MEDIA_TYPE:
            try:
                raw = await self._read(ctx.request)
                if self._is_json(media_type):
                    ctx.body = self._parse_json(raw)
                else:
                    ctx.body = self._parse_form(raw)
            except (InvalidRequestBody, PayloadTooLarge) as e:
                ErrorService.log_error(
                    e.status_code, e.message, path=ctx.path, client_ip=ctx.client_ip, details=e.context
                )
                return StageResult.respond(ErrorService.from_exception(e))

        ctx.request.state.body = ctx.body
        return StageResult.proceed()


class RequestLoggingStage(Stage):
    """Logs every request that reaches it once its response is known."""

    name = "request_logging"

    async def __call__(self, ctx: RequestContext) -> StageResult:
        logger.debug(
            f"Request started: method={ctx.method} path={ctx.path} client={ctx.client_ip}"
        )
        return StageResult.proceed()

    def on_response(self, ctx: RequestContext, response: Response) -> None:
        logger.info(
            f"Request completed: method={ctx.method} path={ctx.path} "
            f"status={response.status_code} latency={ctx.elapsed_ms:.2f}ms "
            f"client={ctx.client_ip}"
        )


class RateLimitStage(Stage):
    """Per-client fixed-window rate limiting."""

    name = "rate_limit"

    # (method, path) pairs never counted against a client's budget
    EXCLUDED_ROUTES = frozenset({("GET", "/"), ("HEAD", "/")})

    def __init__(self, rate_limit_service: RateLimitService):
        self.rate_limit_service = rate_limit_service

    async def __call__(self, ctx: RequestContext) -> StageResult:
        if (ctx.method, ctx.path) in self.EXCLUDED_ROUTES:
            return StageResult.proceed()

        try:
            decision = await self.rate_limit_service.enforce(ctx.client_ip)
        except RateLimitExceeded as e:
            logger.warning(
                f"Rate limit exceeded: ip={ctx.client_ip} count={e.decision.count} "
                f"limit={e.decision.limit} path={ctx.path}"
            )
            return StageResult.respond(
                ErrorService.from_exception(e, headers=e.decision.headers())
            )

        ctx.response_headers.update(decision.headers())
        return StageResult.proceed()


class StaticFilesStage(Stage):
    """Serves files from the upload directory under its URL prefix."""

    name = "static_files"

    SERVED_METHODS = ("GET", "HEAD")

    def __init__(self, static_file_service: StaticFileService):
        self.static_file_service = static_file_service

    async def __call__(self, ctx: RequestContext) -> StageResult:
        if ctx.method not in self.SERVED_METHODS or not self.static_file_service.matches(ctx.path):
            return StageResult.proceed()

        try:
            file_path = self.static_file_service.resolve(ctx.path)
        except TraversalRejected as e:
            ErrorService.log_error(
                e.status_code, "Upload path escapes root", path=ctx.path, client_ip=ctx.client_ip
            )
            return StageResult.respond(ErrorService.not_found())
        except StaticFileNotFound:
            return StageResult.proceed()

        return StageResult.respond(
            FileResponse(file_path, headers={"Cache-Control": "public, max-age=0"})
        )


class RouterStage(Stage):
    """Dispatches to the application router when a route fully matches."""

    name = "router"
    dispatches = True

    def __init__(self, routes: List[BaseRoute], timeout: Optional[float] = None):
        """Initialize router stage.

        Args:
            routes: Live route list of the application router
            timeout: Seconds a dispatched request may take; None disables it
        """
        self.routes = routes
        self.timeout = timeout

    def _has_match(self, scope: Scope) -> bool:
        for route in self.routes:
            match, _ = route.matches(scope)
            if match == Match.FULL:
                return True
        return False

    async def __call__(self, ctx: RequestContext) -> StageResult:
        if not self._has_match(ctx.request.scope):
            return StageResult.proceed()

        if ctx.forward is None:
            raise RuntimeError("Router stage requires a forward callable")

        response = None
        with anyio.move_on_after(self.timeout):
            response = await ctx.forward()

        if response is None:
            error = RequestTimeout(context={"timeout": self.timeout})
            ErrorService.log_error(
                error.status_code, error.message, path=ctx.path, client_ip=ctx.client_ip,
                details=error.context,
            )
            return StageResult.respond(ErrorService.from_exception(error))

        return StageResult.respond(response)


class NotFoundStage(Stage):
    name = "not_found"

    async def __call__(self, ctx: RequestContext) -> StageResult:
        return StageResult.respond(ErrorService.not_found())


def respond_internal_error(ctx: RequestContext, exc: Exception) -> Response:
    """Terminal error responder: generic 500 without internal details."""
    ErrorService.log_error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        str(exc),
        path=ctx.path,
        client_ip=ctx.client_ip,
        details={"exception": type(exc).__name__},
    )
    return ErrorService.internal_error()


def build_pipeline(
    settings: Settings,
    rate_limit_service: RateLimitService,
    static_file_service: StaticFileService,
    routes: List[BaseRoute],
) -> Pipeline:
    """Assemble the request pipeline in its fixed order."""
    stages: List[Stage] = [SecurityHeadersStage()]

    if settings.CORS_ENABLED:
        stages.append(
            CORSStage(
                allow_origins=settings.CORS_ORIGINS,
                allow_methods=settings.CORS_METHODS,
                allow_headers=settings.CORS_HEADERS,
                allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
            )
        )

    stages.append(BodyParsingStage(max_body_size=settings.MAX_REQUEST_BODY_SIZE))
    stages.append(RequestLoggingStage())

    if settings.RATE_LIMIT_ENABLED:
        stages.append(RateLimitStage(rate_limit_service))

    stages.append(StaticFilesStage(static_file_service))
    stages.append(RouterStage(routes, timeout=settings.REQUEST_TIMEOUT or None))
    stages.append(NotFoundStage())

    return Pipeline(stages, error_responder=respond_internal_error)


class PipelineMiddleware:
    """ASGI middleware that runs every HTTP request through the pipeline.

    The wrapped application is only reached through the router stage; its
    response is buffered so handler errors surface inside the pipeline.
    """

    def __init__(self, app: ASGIApp, pipeline: Pipeline):
        self.app = app
        self.pipeline = pipeline

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        ctx = RequestContext(
            request=request,
            client_ip=request.client.host if request.client else "unknown",
        )
        ctx.forward = lambda: self._forward(request)

        response = await self.pipeline.run(ctx)
        await response(scope, receive, send)

    async def _forward(self, request: Request) -> Response:
        body = await request.body()
        body_sent = False
        start: Optional[Message] = None
        chunks: List[bytes] = []

        async def replay_receive() -> Message:
            nonlocal body_sent
            if body_sent:
                return {"type": "http.disconnect"}
            body_sent = True
            return {"type": "http.request", "body": body, "more_body": False}

        async def capture_send(message: Message):
            nonlocal start
            if message["type"] == "http.response.start":
                start = message
            elif message["type"] == "http.response.body":
                chunks.append(message.get("body", b""))

        await self.app(request.scope, replay_receive, capture_send)

        if start is None:
            raise RuntimeError("No response returned.")

        response = Response(content=b"".join(chunks), status_code=start["status"])
        response.raw_headers = [tuple(header) for header in start.get("headers", [])]
        return response
