"""FastAPI app factory.

Endpoints are intentionally thin wrappers over `WorkflowEngine`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from job_workflow import __version__
from job_workflow.config import WorkflowSettings
from job_workflow.workflow.dispatch import HttpTaskDispatcher, TaskDispatcher
from job_workflow.workflow.engine import ExecutionAlreadyExists, ExecutionNotFound, WorkflowEngine
from job_workflow.workflow.job_completion import build_job_completion_workflow
from job_workflow.workflow.state_machine import ExecutionSnapshot
from job_workflow.workflow.store import ExecutionStore
from job_workflow.workflow.timers import Clock

from .models import (
    SignalAccepted,
    StartExecutionRequest,
    StopExecutionRequest,
    TaskFailureRequest,
    TaskHeartbeatRequest,
    TaskSuccessRequest,
)

logger = logging.getLogger(__name__)


def _engine(request: Request) -> WorkflowEngine:
    engine = getattr(request.app.state, "engine", None)
    if not isinstance(engine, WorkflowEngine):
        # This should never happen for the real app, but keeps the API fail-fast.
        raise HTTPException(status_code=500, detail="Workflow engine not configured")
    return engine


def create_app(
    settings: WorkflowSettings | None = None,
    *,
    dispatcher: TaskDispatcher | None = None,
    clock: Clock | None = None,
    run_background: bool = True,
) -> FastAPI:
    settings = settings or WorkflowSettings()
    definition = build_job_completion_workflow(settings.to_job_config())
    engine = WorkflowEngine(
        definition=definition,
        dispatcher=dispatcher
        or HttpTaskDispatcher(
            endpoints=settings.dispatch_endpoints(),
            timeout_seconds=settings.dispatch_timeout_seconds,
        ),
        store=ExecutionStore(settings.executions_state_file),
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if run_background:
            engine.start_background()
        try:
            yield
        finally:
            engine.shutdown()

    app = FastAPI(
        title="Job Completion Workflow",
        version=__version__,
        description="REST API over the job-completion workflow engine.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.get("/api/v1/definition")
    def get_definition(request: Request) -> dict[str, Any]:
        return _engine(request).definition.to_states_language()

    @app.post("/api/v1/executions", response_model=ExecutionSnapshot, status_code=201)
    def start_execution(req: StartExecutionRequest, request: Request) -> ExecutionSnapshot:
        try:
            return _engine(request).start_execution(req.input, execution_id=req.execution_id)
        except ExecutionAlreadyExists as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

    @app.get("/api/v1/executions", response_model=list[ExecutionSnapshot])
    def list_executions(request: Request) -> list[ExecutionSnapshot]:
        engine = _engine(request)
        engine.fire_timers()
        return engine.list_executions()

    @app.get("/api/v1/executions/{execution_id}", response_model=ExecutionSnapshot)
    def describe_execution(execution_id: str, request: Request) -> ExecutionSnapshot:
        engine = _engine(request)
        engine.fire_timers()
        try:
            return engine.describe_execution(execution_id)
        except ExecutionNotFound as e:
            raise HTTPException(status_code=404, detail="Execution not found") from e

    @app.post("/api/v1/executions/{execution_id}/stop", response_model=ExecutionSnapshot)
    def stop_execution(
        execution_id: str, req: StopExecutionRequest, request: Request
    ) -> ExecutionSnapshot:
        try:
            return _engine(request).stop_execution(execution_id, cause=req.cause)
        except ExecutionNotFound as e:
            raise HTTPException(status_code=404, detail="Execution not found") from e

    @app.post("/api/v1/tasks/success", response_model=SignalAccepted, status_code=202)
    def task_success(req: TaskSuccessRequest, request: Request) -> SignalAccepted:
        engine = _engine(request)
        engine.send_task_success(req.token, req.output)
        return SignalAccepted(applied=engine.process_pending())

    @app.post("/api/v1/tasks/failure", response_model=SignalAccepted, status_code=202)
    def task_failure(req: TaskFailureRequest, request: Request) -> SignalAccepted:
        engine = _engine(request)
        engine.send_task_failure(req.token, error=req.error, cause=req.cause)
        return SignalAccepted(applied=engine.process_pending())

    @app.post("/api/v1/tasks/heartbeat", response_model=SignalAccepted, status_code=202)
    def task_heartbeat(req: TaskHeartbeatRequest, request: Request) -> SignalAccepted:
        engine = _engine(request)
        engine.send_task_heartbeat(req.token)
        return SignalAccepted(applied=engine.process_pending())

    return app
