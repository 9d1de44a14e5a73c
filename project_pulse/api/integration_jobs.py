"""API routes for the integration job queue (read-only)."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from ..core.dependencies import JobQueueDep
from ..models import JobStatus
from ..schemas import IntegrationJobResponse, PaginatedResponse
from ..services import IntegrationJobNotFoundError

router = APIRouter(prefix="/integration-jobs", tags=["integration-jobs"])


@router.get("", response_model=PaginatedResponse)
async def list_integration_jobs(
    queue: JobQueueDep,
    job_status: JobStatus | None = Query(default=None, alias="status"),
    company_id: UUID | None = None,
    action_record_id: UUID | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
):
    """List jobs; filter on ``status=failed`` to find jobs needing attention."""
    items, total = await queue.list_jobs(
        status=job_status,
        company_id=company_id,
        action_record_id=action_record_id,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return PaginatedResponse.create(
        items=[IntegrationJobResponse.model_validate(j) for j in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{job_id}", response_model=IntegrationJobResponse)
async def get_integration_job(job_id: UUID, queue: JobQueueDep):
    try:
        job = await queue.get(job_id)
    except IntegrationJobNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Integration job not found",
        )
    return IntegrationJobResponse.model_validate(job)
