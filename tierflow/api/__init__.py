"""
tierflow API - FastAPI REST surface over the phase scheduler.

Endpoints:
    POST   /api/tasks/classify          - Classify a signal (no side effects)
    POST   /api/tasks                   - Start a task
    GET    /api/tasks                   - List active tasks
    GET    /api/tasks/{id}              - Get task state and history
    POST   /api/tasks/{id}/advance      - Advance a task
    POST   /api/tasks/{id}/abort        - Abort a task
    GET    /api/tiers                   - List workflow tiers
    GET    /api/lock                    - Resource lock status
    GET    /api/health                  - Health check

Usage:
    from tierflow.api import create_app
    app = create_app()
"""

from .server import create_app

__all__ = ["create_app"]
