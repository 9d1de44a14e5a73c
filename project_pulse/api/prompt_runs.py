"""API routes for inspecting and re-running prompt runs."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from ..core.dependencies import PromptEngineDep, SessionDep
from ..models import PromptRunStatus
from ..schemas import PaginatedResponse, PromptRunResponse, RerunRequest
from ..services import AIProviderError, PromptRunNotFoundError

router = APIRouter(prefix="/prompt-runs", tags=["prompt-runs"])


@router.get("", response_model=PaginatedResponse)
async def list_prompt_runs(
    engine: PromptEngineDep,
    project_id: UUID | None = None,
    run_status: PromptRunStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
):
    items, total = await engine.list_runs(
        project_id=project_id,
        status=run_status,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return PaginatedResponse.create(
        items=[PromptRunResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{prompt_run_id}", response_model=PromptRunResponse)
async def get_prompt_run(prompt_run_id: UUID, engine: PromptEngineDep):
    try:
        run = await engine.get(prompt_run_id)
    except PromptRunNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Prompt run not found",
        )
    return PromptRunResponse.model_validate(run)


@router.post(
    "/{prompt_run_id}/rerun",
    response_model=PromptRunResponse,
    status_code=status.HTTP_201_CREATED,
)
async def rerun_prompt_run(
    prompt_run_id: UUID,
    engine: PromptEngineDep,
    session: SessionDep,
    data: RerunRequest | None = None,
):
    """
    Execute a previous run's input again.

    The original run is left untouched; the response is the new run.
    """
    try:
        execution = await engine.rerun(
            prompt_run_id,
            initiated_by=data.initiated_by if data else None,
        )
    except PromptRunNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Prompt run not found",
        )
    except AIProviderError as e:
        # The failed attempt is still a recorded run
        await session.commit()
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"AI provider error: {e}",
        )

    if execution.prompt_run_id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Re-run completed but could not be recorded",
        )
    return PromptRunResponse.model_validate(await engine.get(execution.prompt_run_id))
