"""API routes for reviewing and executing action records."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from ..core.dependencies import ActionRecordsDep, ExecutorDep
from ..models import ActionStatus, ActionType
from ..schemas import (
    ActionRecordResponse,
    ApproveResponse,
    ExecutionResponse,
    PaginatedResponse,
    PendingCountResponse,
)
from ..services import (
    ActionRecordNotFoundError,
    ExecutionResult,
    InvalidTransitionError,
)

router = APIRouter(prefix="/actions", tags=["actions"])


def execution_to_response(result: ExecutionResult) -> ExecutionResponse:
    return ExecutionResponse(
        action_record_id=result.action_record_id,
        executed=result.executed,
        skipped=result.skipped,
        status=result.status,
        message=result.message,
        execution_result=result.execution_result,
    )


# =============================================================================
# QUERIES
# =============================================================================


@router.get("", response_model=PaginatedResponse)
async def list_actions(
    records: ActionRecordsDep,
    project_id: UUID | None = None,
    action_status: ActionStatus | None = Query(default=None, alias="status"),
    action_type: ActionType | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
):
    """List action records, newest first."""
    items, total = await records.list_records(
        project_id=project_id,
        status=action_status,
        action_type=action_type,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return PaginatedResponse.create(
        items=[ActionRecordResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/pending/count", response_model=PendingCountResponse)
async def count_pending_actions(
    records: ActionRecordsDep,
    company_id: UUID | None = None,
):
    """Number of actions waiting for a human decision."""
    return PendingCountResponse(pending=await records.count_pending(company_id))


@router.get("/{action_id}", response_model=ActionRecordResponse)
async def get_action(action_id: UUID, records: ActionRecordsDep):
    try:
        record = await records.get(action_id)
    except ActionRecordNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Action not found",
        )
    return ActionRecordResponse.model_validate(record)


# =============================================================================
# TRANSITIONS
# =============================================================================


@router.post("/{action_id}/approve", response_model=ApproveResponse)
async def approve_action(
    action_id: UUID,
    records: ActionRecordsDep,
    executor: ExecutorDep,
):
    """Approve a pending action and execute it."""
    try:
        record = await records.approve(action_id)
    except ActionRecordNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Action not found",
        )
    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )

    result = await executor.execute_action(record.id)
    return ApproveResponse(
        action=ActionRecordResponse.model_validate(record),
        execution=execution_to_response(result),
    )


@router.post("/{action_id}/reject", response_model=ActionRecordResponse)
async def reject_action(action_id: UUID, records: ActionRecordsDep):
    try:
        record = await records.reject(action_id)
    except ActionRecordNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Action not found",
        )
    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )
    return ActionRecordResponse.model_validate(record)


@router.post("/{action_id}/execute", response_model=ExecutionResponse)
async def execute_action(action_id: UUID, executor: ExecutorDep):
    """Execute an approved (or approval-free) action. Other states are a no-op."""
    try:
        result = await executor.execute_action(action_id)
    except ActionRecordNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Action not found",
        )
    return execution_to_response(result)
