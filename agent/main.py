"""
Repository Automation Agent - FastAPI Application

HTTP surface over the task store:
- POST /create-repository: queue a repository creation task
- GET /task/{task_id}: full task record
- GET /tasks: task list with optional status filter
- GET /status: per-status counts and single-flight state
- GET /health, GET /: liveness (no API key required)

There is no module-level app; serve through the CLI or
`uvicorn agent.main:create_app --factory`.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Set

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from . import __version__, SERVICE_NAME
from .config import AgentConfig, load_config
from .credentials import CredentialResolver
from .dependencies import DependencyChecker
from .post_processing import PostProcessor
from .process_runner import ProcessRunner
from .processor import TaskProcessor
from .queue_client import ExternalQueueAdapter
from .scheduler import AgentScheduler
from .task_store import (
    DEFAULT_LIST_LIMIT,
    PostProcessing,
    TaskPayload,
    TaskStatus,
    TaskStore,
)

logger = logging.getLogger("agent_api")


# -----------------------------------------------------------------------------
# Request/Response Models
# -----------------------------------------------------------------------------
class PostProcessingRequest(BaseModel):
    """Optional post-processing directives."""
    startServer: bool = False
    customCommands: List[str] = Field(default_factory=list)


class CreateRepositoryRequest(BaseModel):
    """
    Request model for repository creation.

    template and name are checked in the handler so that a missing field
    yields a 400 with the agent's own message.
    """
    template: Optional[str] = None
    name: Optional[str] = None
    visibility: Optional[str] = None
    noVSCode: Optional[bool] = None
    postCommands: Optional[str] = None
    postProcessing: Optional[PostProcessingRequest] = None

    def to_payload(self) -> TaskPayload:
        post_processing = None
        if self.postProcessing is not None:
            post_processing = PostProcessing(
                start_server=self.postProcessing.startServer,
                custom_commands=list(self.postProcessing.customCommands),
            )
        return TaskPayload(
            template=self.template,
            name=self.name,
            visibility=self.visibility or "public",
            no_vscode=bool(self.noVSCode),
            post_commands=self.postCommands or None,
            post_processing=post_processing,
        )


class CreateRepositoryResponse(BaseModel):
    """Response model for repository creation."""
    taskId: str
    status: str
    message: str


# -----------------------------------------------------------------------------
# Runtime wiring
# -----------------------------------------------------------------------------
@dataclass
class AgentRuntime:
    """Owned instances shared by the HTTP handlers and the scheduler."""
    config: AgentConfig
    store: TaskStore
    credentials: CredentialResolver
    runner: ProcessRunner
    processor: TaskProcessor
    queue: ExternalQueueAdapter
    scheduler: AgentScheduler
    started_at: float = field(default_factory=time.monotonic)
    background: Set[asyncio.Task] = field(default_factory=set)


def build_runtime(config: AgentConfig, store: Optional[TaskStore] = None) -> AgentRuntime:
    store = store or TaskStore()
    credentials = CredentialResolver(config)
    runner = ProcessRunner(config, credentials)
    processor = TaskProcessor(
        config=config,
        store=store,
        runner=runner,
        post_processor=PostProcessor(config, runner),
        dependencies=DependencyChecker(config),
    )
    queue = ExternalQueueAdapter(config, store)
    scheduler = AgentScheduler(config, store, processor, queue)
    return AgentRuntime(
        config=config,
        store=store,
        credentials=credentials,
        runner=runner,
        processor=processor,
        queue=queue,
        scheduler=scheduler,
    )


def get_runtime(request: Request) -> AgentRuntime:
    return request.app.state.runtime


def require_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(None),
    apiKey: Optional[str] = Query(None),
) -> None:
    """Reject requests without the configured API key (skipped in dev mode)."""
    config = get_runtime(request).config
    if config.auth_disabled:
        return
    if (x_api_key or apiKey) != config.api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


# -----------------------------------------------------------------------------
# FastAPI Application
# -----------------------------------------------------------------------------
def create_app(
    config: Optional[AgentConfig] = None,
    runtime: Optional[AgentRuntime] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Create the agent application around a config or a prepared runtime."""
    if runtime is None:
        runtime = build_runtime(config or load_config())

    app = FastAPI(
        title="Repository Automation Agent",
        description="Template-based repository creation daemon",
        version=__version__,
    )
    app.state.runtime = runtime

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------
    @app.get("/")
    async def root():
        return {
            "service": SERVICE_NAME,
            "status": "running",
            "version": __version__,
        }

    @app.get("/health")
    async def health_check(rt: AgentRuntime = Depends(get_runtime)):
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - rt.started_at, 3),
            "version": __version__,
        }

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------
    @app.get("/status", dependencies=[Depends(require_api_key)])
    async def agent_status(rt: AgentRuntime = Depends(get_runtime)):
        return {
            "tasks": rt.store.counts(),
            "agent": {
                "processing": rt.processor.processing,
                "workDir": str(rt.config.work_dir),
                "scheduler_running": rt.scheduler.running,
                "queue_polling": rt.queue.enabled,
            },
        }

    @app.post(
        "/create-repository",
        response_model=CreateRepositoryResponse,
        dependencies=[Depends(require_api_key)],
    )
    async def create_repository(
        request: CreateRepositoryRequest,
        rt: AgentRuntime = Depends(get_runtime),
    ):
        if not request.template or not request.name:
            raise HTTPException(
                status_code=400,
                detail="Missing required fields: template and name",
            )

        task_id = rt.store.add(request.to_payload())
        return CreateRepositoryResponse(
            taskId=task_id,
            status="queued",
            message="Repository creation task queued successfully",
        )

    @app.get("/task/{task_id}", dependencies=[Depends(require_api_key)])
    async def get_task(task_id: str, rt: AgentRuntime = Depends(get_runtime)):
        task = rt.store.get(task_id)
        if not task:
            raise HTTPException(status_code=404, detail="Task not found")
        return task.to_dict()

    @app.get("/tasks", dependencies=[Depends(require_api_key)])
    async def list_tasks(
        status: Optional[str] = None,
        limit: int = Query(DEFAULT_LIST_LIMIT, ge=0),
        rt: AgentRuntime = Depends(get_runtime),
    ):
        status_filter = None
        if status:
            try:
                status_filter = TaskStatus(status)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

        tasks = rt.store.list(status=status_filter, limit=limit)
        return {
            "tasks": [t.to_dict() for t in tasks],
            "total": rt.store.count(),
        }

    # -------------------------------------------------------------------------
    # Startup/Shutdown Events
    # -------------------------------------------------------------------------
    @app.on_event("startup")
    async def startup_event():
        cfg = runtime.config
        Path(cfg.work_dir).mkdir(parents=True, exist_ok=True)
        logger.info(f"Agent started on http://{cfg.host}:{cfg.port}")
        logger.info(f"Work directory: {cfg.work_dir}")
        logger.info(f"Script path: {cfg.script_path}")
        logger.info(f"Drain interval: {cfg.drain_interval}s")

        # Advisory only; the server starts whatever the outcome
        check = asyncio.create_task(runtime.credentials.check_startup_auth())
        runtime.background.add(check)
        check.add_done_callback(runtime.background.discard)

        if start_scheduler:
            await runtime.scheduler.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Agent shutting down...")
        for task in list(runtime.background):
            task.cancel()
        await runtime.scheduler.stop()
        await runtime.runner.close()

    return app
