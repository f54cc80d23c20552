"""FastAPI server exposing the delegation engine over HTTP."""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import click
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dispatch import __version__
from dispatch.config import EngineSettings
from dispatch.delegation.models import AgentRequest, Decision, Priority, TaskStatus
from dispatch.engine.orchestrator import DelegationEngine
from dispatch.errors import (
    CapacityExceeded,
    DispatchError,
    InvalidTransition,
    NoEligibleWorker,
    TaskNotFound,
    UnknownWorker,
    UpstreamError,
)
from dispatch.logging import configure_logging


class ClassifyBody(BaseModel):
    message: str
    attachment_types: list[str] = Field(default_factory=list)


class RouteBody(BaseModel):
    required_capabilities: list[str] = Field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    exclude: list[str] = Field(default_factory=list)


class SubmitBody(BaseModel):
    source_worker_id: str
    required_capabilities: list[str]
    description: str
    priority: Priority = Priority.MEDIUM
    payload: Any = None
    task_type: str | None = None


class RespondBody(BaseModel):
    decision: Decision
    feedback: str | None = None


class CompleteBody(BaseModel):
    result: Any = None


class FailBody(BaseModel):
    error: str


class DetectBody(BaseModel):
    text: str
    context: dict[str, Any] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)


class FallbackBody(BaseModel):
    primary: str
    fallbacks: list[str] = Field(default_factory=list)
    message: str
    context: dict[str, Any] = Field(default_factory=dict)


class RequestBody(BaseModel):
    message: str
    attachment_types: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    priority: Priority = Priority.MEDIUM


_ERROR_STATUS: list[tuple[type[DispatchError], int, str]] = [
    (NoEligibleWorker, status.HTTP_404_NOT_FOUND, "no_eligible_worker"),
    (TaskNotFound, status.HTTP_404_NOT_FOUND, "task_not_found"),
    (UnknownWorker, status.HTTP_404_NOT_FOUND, "unknown_worker"),
    (CapacityExceeded, status.HTTP_409_CONFLICT, "capacity_exceeded"),
    (InvalidTransition, status.HTTP_409_CONFLICT, "invalid_transition"),
    (UpstreamError, status.HTTP_502_BAD_GATEWAY, "upstream_error"),
]


def create_app(engine: DelegationEngine | None = None) -> FastAPI:
    """Build the API around an engine. The lifespan initializes and shuts it down."""
    engine = engine if engine is not None else DelegationEngine()
    started = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await engine.initialize()
        yield
        await engine.shutdown()

    app = FastAPI(
        title="Crew Dispatch API",
        version=__version__,
        description="Capability-based task routing and delegation between workers",
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.exception_handler(DispatchError)
    async def dispatch_error(request: Request, exc: DispatchError) -> JSONResponse:
        for error_type, code, label in _ERROR_STATUS:
            if isinstance(exc, error_type):
                return JSONResponse(status_code=code, content={"error": label, "detail": str(exc)})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "dispatch_error", "detail": str(exc)},
        )

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Health check."""
        uptime = time.monotonic() - started
        return {
            "status": "ok",
            "version": __version__,
            "uptime_seconds": round(uptime, 1),
            "workers": len(engine.registry),
        }

    @app.get("/api/agents")
    async def agents() -> dict[str, Any]:
        """Registered workers with their current load and availability."""
        profiles = [p.to_dict() for p in engine.registry.all()]
        return {"agents": profiles, "count": len(profiles)}

    @app.post("/api/classify")
    async def classify(body: ClassifyBody) -> dict[str, Any]:
        result = engine.classify_request(body.message, body.attachment_types)
        return {
            "type": result.type,
            "required_capabilities": result.required_capabilities,
            "confidence": round(result.confidence, 3),
            "suggested_actions": result.suggested_actions,
        }

    @app.post("/api/route")
    async def route(body: RouteBody) -> dict[str, Any]:
        decision = engine.route(body.required_capabilities, body.priority, body.exclude)
        return {
            "worker_id": decision.worker_id,
            "confidence": round(decision.confidence, 3),
            "reasoning": decision.reasoning,
            "fallback_chain": decision.fallback_chain,
            "candidates": [
                {"worker_id": c.worker_id, "score": round(c.total, 2)} for c in decision.candidates
            ],
        }

    @app.post("/api/tasks", status_code=status.HTTP_201_CREATED)
    async def submit_task(body: SubmitBody) -> dict[str, Any]:
        task = await engine.submit_task(
            body.source_worker_id,
            body.required_capabilities,
            body.description,
            priority=body.priority,
            payload=body.payload,
            task_type=body.task_type,
        )
        return task.to_dict()

    @app.get("/api/tasks")
    async def list_tasks(
        status: TaskStatus | None = None, worker_id: str | None = None, limit: int = 50
    ) -> dict[str, Any]:
        tasks = engine.history(worker_id, limit=limit)
        if status is not None:
            tasks = [t for t in tasks if t.status is status]
        return {"tasks": [t.to_dict() for t in tasks], "count": len(tasks)}

    @app.get("/api/tasks/{task_id}")
    async def get_task(task_id: str) -> dict[str, Any]:
        return engine.get_task(task_id).to_dict()

    @app.post("/api/tasks/{task_id}/respond")
    async def respond(task_id: str, body: RespondBody) -> dict[str, Any]:
        return (await engine.respond(task_id, body.decision, body.feedback)).to_dict()

    @app.post("/api/tasks/{task_id}/start")
    async def start(task_id: str) -> dict[str, Any]:
        return (await engine.start(task_id)).to_dict()

    @app.post("/api/tasks/{task_id}/complete")
    async def complete(task_id: str, body: CompleteBody) -> dict[str, Any]:
        return (await engine.complete(task_id, body.result)).to_dict()

    @app.post("/api/tasks/{task_id}/fail")
    async def fail(task_id: str, body: FailBody) -> dict[str, Any]:
        return (await engine.fail(task_id, body.error)).to_dict()

    @app.post("/api/tasks/{task_id}/cancel")
    async def cancel(task_id: str) -> dict[str, Any]:
        return (await engine.cancel(task_id)).to_dict()

    @app.post("/api/actions/detect")
    async def detect_actions(body: DetectBody) -> dict[str, Any]:
        gated = await engine.detect_and_gate_actions(body.text, body.context, body.payload)
        return gated.to_dict()

    @app.post("/api/fallback")
    async def fallback(body: FallbackBody) -> dict[str, Any]:
        response = await engine.route_with_fallback(
            body.primary, body.fallbacks, AgentRequest(message=body.message, context=body.context)
        )
        return {
            "success": response.success,
            "text": response.text,
            "worker_id": response.worker_id,
            "fallback_used": response.fallback_used,
            "attempts": response.attempts,
        }

    @app.post("/api/requests")
    async def handle_request(body: RequestBody) -> dict[str, Any]:
        outcome = await engine.handle_request(
            body.message, body.attachment_types, body.context, body.priority
        )
        return outcome.to_dict()

    @app.get("/api/stats")
    async def stats(worker_id: str | None = None) -> dict[str, Any]:
        return engine.stats(worker_id)

    return app


def build_engine(settings: EngineSettings) -> DelegationEngine:
    """Engine wired to the on-disk task store and, if configured, the completion service."""
    from dispatch.services.completion import HTTPCompletionClient
    from dispatch.storage.database import SQLiteTaskStore

    completion = None
    if settings.completion_url:
        completion = HTTPCompletionClient(
            settings.completion_url, timeout=settings.upstream_timeout_seconds
        )
    return DelegationEngine(
        settings,
        store=SQLiteTaskStore(str(settings.db_path)),
        completion=completion,
    )


@click.command()
@click.option("--port", default=3848, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
def main(port: int, host: str) -> None:
    """Start the Dispatch API server."""
    import uvicorn

    settings = EngineSettings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(build_engine(settings)), host=host, port=port)
