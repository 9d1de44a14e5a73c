"""API routes for Project Pulse."""

from fastapi import APIRouter

from .actions import router as actions_router
from .integration_jobs import router as integration_jobs_router
from .projects import router as projects_router
from .prompt_runs import router as prompt_runs_router
from .webhooks import router as webhooks_router

# Main API router
api_router = APIRouter()

# Inbound CRM events
api_router.include_router(webhooks_router)

# Operator endpoints
api_router.include_router(actions_router)
api_router.include_router(prompt_runs_router)
api_router.include_router(integration_jobs_router)
api_router.include_router(projects_router)

__all__ = ["api_router"]
