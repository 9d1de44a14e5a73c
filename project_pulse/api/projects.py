"""API routes for project reminders."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from ..core.dependencies import RemindersDep
from ..schemas import NextCheckDateRequest, ProjectResponse
from ..services import ProjectNotFoundError

router = APIRouter(prefix="/projects", tags=["projects"])


@router.put("/{project_id}/next-check-date", response_model=ProjectResponse)
async def set_next_check_date(
    project_id: UUID,
    data: NextCheckDateRequest,
    reminders: RemindersDep,
):
    """Set or clear (``null``) when the project is next checked for actions."""
    try:
        project = await reminders.set_next_check_date(project_id, data.next_check_date)
    except ProjectNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Project not found",
        )
    return ProjectResponse.model_validate(project)
