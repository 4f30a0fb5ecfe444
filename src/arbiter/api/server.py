"""
FastAPI server for Arbiter.

Exposes classification, chat in all three modes, blind peer review, and
single-model streaming over HTTP.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Literal, NoReturn

import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from arbiter import __version__
from arbiter.core.chat import ChatService
from arbiter.core.config import get_settings
from arbiter.core.gateway import CompletionGateway, UnknownModelError
from arbiter.core.models import (
    DEFAULT_ROSTER,
    MODEL_REGISTRY,
    Candidate,
    ChatMode,
    ChatResponse,
    Message,
    MessageRole,
    RankingReport,
    RoutingDecision,
    display_name_for,
)
from arbiter.council.ranking import PeerReviewEngine
from arbiter.providers.base import ProviderError
from arbiter.routing.classifier import QueryClassifier
from arbiter.streaming.channel import CompleteEvent, WindTunnel, to_ndjson, to_sse
from arbiter.utils.logging import RequestLogger, setup_logging
from arbiter.utils.metrics import metrics

logger = structlog.get_logger()


@dataclass
class Services:
    """Long-lived objects shared by all requests; read-only at request time."""

    gateway: CompletionGateway
    chat: ChatService
    classifier: QueryClassifier
    peer_review: PeerReviewEngine
    wind_tunnel: WindTunnel

    @classmethod
    def create(cls, gateway: CompletionGateway | None = None) -> "Services":
        gateway = gateway or CompletionGateway()
        classifier = QueryClassifier()
        return cls(
            gateway=gateway,
            chat=ChatService(gateway, classifier=classifier),
            classifier=classifier,
            peer_review=PeerReviewEngine(gateway),
            wind_tunnel=WindTunnel(gateway),
        )


services: Services | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    global services

    setup_logging()
    settings = get_settings()
    logger.info(
        "Starting Arbiter API server",
        configured_backends=settings.providers.configured_backends,
    )
    services = Services.create()

    yield

    logger.info("Shutting down Arbiter API server")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Arbiter API",
        description="Multi-provider LLM fan-out, blind peer review and synthesis",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()


# Request/Response Models

class MessageRequest(BaseModel):
    """A message in a conversation."""
    role: str = Field(..., description="Message role: system, user, or assistant")
    content: str = Field(..., description="Message content")


class ClassifyRequest(BaseModel):
    """Query to classify for auto-routing."""
    query: str = Field(..., min_length=1)


class ChatRequest(BaseModel):
    """One chat turn."""
    messages: list[MessageRequest] = Field(..., min_length=1, description="Conversation messages")
    mode: ChatMode = Field(default=ChatMode.SINGLE, description="single, auto or all")
    model: str | None = Field(default=None, description="Model id for single mode")


class CandidateRequest(BaseModel):
    """An existing answer entering peer review."""
    model_id: str
    content: str


class CompeteRequest(BaseModel):
    """Peer review request."""
    mode: Literal["single", "all"] = "single"
    messages: list[MessageRequest] | None = Field(
        default=None, description="Conversation up to the question (single mode)"
    )
    original_model: str | None = Field(
        default=None, description="Model that gave the original answer (single mode)"
    )
    question: str | None = Field(default=None, description="Question text (all mode)")
    responses: list[CandidateRequest] | None = Field(
        default=None, description="Complete set of existing answers (all mode)"
    )


class WindTunnelRequest(BaseModel):
    """Single-model run."""
    model_id: str
    prompt: str = Field(..., min_length=1)
    format: Literal["sse", "ndjson"] = "sse"


class ModelInfo(BaseModel):
    """Model information."""
    id: str
    display_name: str
    adapter: str
    native_name: str
    input_cost_per_million: float
    output_cost_per_million: float
    on_roster: bool


class WindTunnelResult(CompleteEvent):
    """Non-streaming wind tunnel result."""
    model_id: str


# Dependencies

def get_services() -> Services:
    """Get the shared services."""
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


def to_messages(items: list[MessageRequest]) -> list[Message]:
    try:
        return [Message(role=MessageRole(m.role), content=m.content) for m in items]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _raise_http(e: Exception, operation: str, **context: Any) -> NoReturn:
    """Map core exceptions onto HTTP errors."""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, UnknownModelError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ProviderError):
        logger.warning(f"{operation} failed", error=str(e), error_kind=e.kind, **context)
        raise HTTPException(status_code=502, detail=e.user_message)
    if isinstance(e, ValueError):
        raise HTTPException(status_code=400, detail=str(e))
    logger.exception(f"{operation} failed", **context)
    raise HTTPException(status_code=500, detail=str(e))


# Endpoints

@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    configured = get_settings().providers.configured_backends
    return {
        "status": "healthy" if configured else "degraded",
        "version": __version__,
        "configured_backends": configured,
    }


@app.get("/models", response_model=list[ModelInfo])
async def list_models() -> list[ModelInfo]:
    """List dispatchable models."""
    roster_ids = {b.id for b in DEFAULT_ROSTER}
    return [
        ModelInfo(
            id=model_id,
            display_name=spec.display_name,
            adapter=spec.adapter_kind.value,
            native_name=spec.native_name,
            input_cost_per_million=spec.input_cost_per_million,
            output_cost_per_million=spec.output_cost_per_million,
            on_roster=model_id in roster_ids,
        )
        for model_id, spec in MODEL_REGISTRY.items()
    ]


@app.get("/metrics")
async def get_metrics() -> dict[str, Any]:
    """Dispatch metrics summary."""
    return metrics.get_summary()


@app.get("/metrics/recent")
async def get_recent_metrics(limit: int = 100) -> list[dict[str, Any]]:
    """Most recent dispatch records."""
    return metrics.get_recent(limit)


@app.post("/v1/classify", response_model=RoutingDecision)
async def classify_query(
    request: ClassifyRequest,
    svc: Services = Depends(get_services),
) -> RoutingDecision:
    """Show where auto mode would send a query."""
    return svc.classifier.classify(request.query)


@app.post("/v1/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    svc: Services = Depends(get_services),
) -> ChatResponse:
    """Run one chat turn in single, auto or all-models mode."""
    messages = to_messages(request.messages)
    try:
        with RequestLogger(logger, "chat", mode=request.mode.value, model=request.model):
            return await svc.chat.chat(request.mode, messages, model_id=request.model)
    except Exception as e:
        _raise_http(e, "Chat", mode=request.mode.value, model=request.model)


@app.post("/v1/compete", response_model=RankingReport)
async def compete(
    request: CompeteRequest,
    svc: Services = Depends(get_services),
) -> RankingReport:
    """Blind peer review of one original answer or a complete answer set."""
    try:
        if request.mode == "single":
            if not request.messages or not request.original_model:
                raise ValueError("Single mode requires messages and original_model")
            with RequestLogger(logger, "peer review", mode="single", original=request.original_model):
                return await svc.peer_review.compete_single(
                    to_messages(request.messages),
                    request.original_model,
                )

        if not request.question or not request.responses:
            raise ValueError("All mode requires question and responses")
        candidates = [
            Candidate(
                model_id=r.model_id,
                model_name=display_name_for(r.model_id),
                content=r.content,
            )
            for r in request.responses
        ]
        with RequestLogger(logger, "peer review", mode="all", candidates=len(candidates)):
            return await svc.peer_review.compete_all(request.question, candidates)
    except Exception as e:
        _raise_http(e, "Compete", mode=request.mode)


@app.post("/v1/wind-tunnel/stream")
async def wind_tunnel_stream(
    request: WindTunnelRequest,
    svc: Services = Depends(get_services),
):
    """Stream one model's answer as token events and a terminal event."""
    try:
        svc.gateway.resolve(request.model_id)
    except UnknownModelError as e:
        raise HTTPException(status_code=404, detail=str(e))

    events = svc.wind_tunnel.stream(request.model_id, [Message.user(request.prompt)])

    if request.format == "ndjson":
        async def generate_ndjson():
            async for event in events:
                yield to_ndjson(event)

        return StreamingResponse(generate_ndjson(), media_type="application/x-ndjson")

    async def generate():
        async for event in events:
            yield to_sse(event)

    return EventSourceResponse(generate())


@app.post("/v1/wind-tunnel/run", response_model=WindTunnelResult)
async def wind_tunnel_run(
    request: WindTunnelRequest,
    svc: Services = Depends(get_services),
) -> WindTunnelResult:
    """Run one model to completion without streaming."""
    try:
        with RequestLogger(logger, "wind tunnel", model=request.model_id):
            event = await svc.wind_tunnel.run(request.model_id, [Message.user(request.prompt)])
    except Exception as e:
        _raise_http(e, "Wind tunnel run", model=request.model_id)
    return WindTunnelResult(model_id=request.model_id, **event.model_dump(exclude={"type"}))


def run_server(
    host: str = "0.0.0.0",
    port: int = 8000,
    reload: bool = False,
) -> None:
    """Run the API server."""
    import uvicorn
    uvicorn.run(
        "arbiter.api.server:app",
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    settings = get_settings()
    run_server(settings.server.host, settings.server.port, settings.server.reload)
