"""Ordered request pipeline.

A pipeline is a list of stages run in declared order. Each stage returns a
StageResult that either lets the request continue or ends the pipeline with a
response. Headers recorded on the context and each entered stage's
``on_response`` hook are applied to whichever response ends the pipeline.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    CONTINUE = "continue"
    SHORT_CIRCUIT = "short_circuit"


class PipelineState(str, Enum):
    PENDING = "pending"
    SHORT_CIRCUITED = "short_circuited"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"


@dataclass(frozen=True)
class StageResult:
    """What a stage decided for the current request."""

    outcome: Outcome
    response: Optional[Response] = None

    @classmethod
    def proceed(cls) -> "StageResult":
        return cls(Outcome.CONTINUE)

    @classmethod
    def respond(cls, response: Response) -> "StageResult":
        return cls(Outcome.SHORT_CIRCUIT, response)

    @property
    def is_short_circuit(self) -> bool:
        return self.outcome is Outcome.SHORT_CIRCUIT


@dataclass
class RequestContext:
    """Per-request state shared by all stages.

    ``forward`` hands the request to the application router and returns its
    response; it is supplied by the ASGI middleware driving the pipeline.
    """

    request: Request
    client_ip: str
    forward: Optional[Callable[[], Awaitable[Response]]] = None
    body: Any = None
    response_headers: Dict[str, str] = field(default_factory=dict)
    state: PipelineState = PipelineState.PENDING
    terminated_by: Optional[str] = None
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def path(self) -> str:
        # Decoded path as received, without URL normalisation
        return self.request.scope["path"]

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000


class Stage:
    """Base class for pipeline stages."""

    name: str = "stage"
    # Stages that hand the request to a handler rather than answering themselves
    dispatches: bool = False

    async def __call__(self, ctx: RequestContext) -> StageResult:
        raise NotImplementedError()

    def on_response(self, ctx: RequestContext, response: Response) -> None:
        """Adjust the final response; runs for every stage that was entered."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


ErrorResponder = Callable[[RequestContext, Exception], Response]


class Pipeline:
    """Runs stages in order until one of them produces a response."""

    def __init__(self, stages: Sequence[Stage], error_responder: ErrorResponder):
        """Initialize pipeline.

        Args:
            stages: Stages in execution order; the last one must always respond
            error_responder: Builds the response for an unexpected stage error
        """
        self.stages: List[Stage] = list(stages)
        self.error_responder = error_responder

    @property
    def names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    async def run(self, ctx: RequestContext) -> Response:
        entered: List[Stage] = []
        response: Optional[Response] = None

        try:
            for stage in self.stages:
                entered.append(stage)
                result = await stage(ctx)
                if result.is_short_circuit:
                    response = result.response
                    ctx.terminated_by = stage.name
                    ctx.state = (
                        PipelineState.DISPATCHED
                        if stage.dispatches
                        else PipelineState.SHORT_CIRCUITED
                    )
                    break
            if response is None:
                raise RuntimeError("Pipeline finished without a response")
        except Exception as exc:
            logger.exception(
                f"Unhandled exception in stage {entered[-1].name if entered else '?'}: {exc}"
            )
            response = self.error_responder(ctx, exc)
            ctx.terminated_by = "error"
            ctx.state = PipelineState.SHORT_CIRCUITED

        try:
            self._finish(ctx, entered, response)
        except Exception as exc:
            logger.exception(f"Unhandled exception while finishing response: {exc}")
            response = self.error_responder(ctx, exc)
            ctx.terminated_by = "error"
            for key, value in ctx.response_headers.items():
                response.headers.setdefault(key, value)

        ctx.state = PipelineState.COMPLETED
        return response

    @staticmethod
    def _finish(ctx: RequestContext, entered: List[Stage], response: Response) -> None:
        for key, value in ctx.response_headers.items():
            response.headers.setdefault(key, value)

        for stage in reversed(entered):
            stage.on_response(ctx, response)
