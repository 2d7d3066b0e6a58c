"""
FastAPI REST API server for the orchestration core.

Usage:
    # Run standalone
    python -m tierflow.api.server

    # Or via factory
    from tierflow.api import create_app
    app = create_app()
    uvicorn.run(app, port=5010)

API Structure:
    /api/tasks/           - Task intake and control (from routes/tasks.py)
    /api/tiers            - Workflow tier catalog (from routes/tiers.py)
    /api/lock             - Resource lock status (from routes/lock.py)
    /api/health           - Health check
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from tierflow import __version__
from tierflow.config.runtime_config import get_executor_mode, get_state_dir
from tierflow.runtime.scheduler import PhaseScheduler

from .routes import lock_router, tasks_router, tiers_router
from .routes.tasks import get_scheduler, set_scheduler

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    executor_mode: str
    state_dir: str
    active_tasks: int
    lock_holder: Optional[str] = None


def create_app(
    scheduler: Optional[PhaseScheduler] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        scheduler: Scheduler to serve (process-wide default if None).
        enable_cors: Whether to enable CORS middleware.

    Returns:
        Configured FastAPI application.
    """
    if scheduler is not None:
        set_scheduler(scheduler)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Report resumable tasks on startup; stop the role pool on shutdown."""
        logger.info("tierflow API server starting (state dir: %s)", get_state_dir())
        active = get_scheduler().list_active()
        if active:
            logger.info("%d active task(s) can be resumed: %s", len(active), [e.task_id for e in active])
        yield
        logger.info("tierflow API server shutting down")
        get_scheduler().shutdown()

    app = FastAPI(
        title="tierflow API",
        description="Complexity-tiered task orchestration: classify, select a workflow tier, and drive its phases.",
        version=__version__,
        lifespan=lifespan,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(tasks_router, prefix="/api")
    app.include_router(tiers_router, prefix="/api")
    app.include_router(lock_router, prefix="/api")

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        current = get_scheduler()
        holder = current.resource_lock.holder()
        return HealthResponse(
            status="ok",
            version=__version__,
            executor_mode=get_executor_mode(),
            state_dir=str(current.store.state_dir),
            active_tasks=len(current.list_active()),
            lock_holder=holder.holder_id if holder is not None else None,
        )

    return app


def main():
    """Run the API server."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="tierflow API Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=5010, help="Port to bind to")
    parser.add_argument("--no-cors", action="store_true", help="Disable CORS")
    args = parser.parse_args()

    app = create_app(enable_cors=not args.no_cors)

    print(f"Starting tierflow API server at http://{args.host}:{args.port}")
    print("  POST   /api/tasks/classify          - Classify a signal (no side effects)")
    print("  POST   /api/tasks                   - Start a task")
    print("  GET    /api/tasks                   - List active tasks")
    print("  GET    /api/tasks/{id}              - Get task state and history")
    print("  POST   /api/tasks/{id}/advance      - Advance a task")
    print("  POST   /api/tasks/{id}/abort        - Abort a task")
    print("  GET    /api/tiers                   - List workflow tiers")
    print("  GET    /api/lock                    - Resource lock status")
    print("  GET    /api/health                  - Health check")

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
