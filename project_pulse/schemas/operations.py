"""Response and request schemas for the operator API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from ..models import (
    ActionStatus,
    ActionType,
    JobStatus,
    OperationType,
    PromptRunStatus,
    ResourceType,
)
from .base import PulseBaseModel


# =============================================================================
# ACTION RECORDS
# =============================================================================


class ActionRecordResponse(PulseBaseModel):
    id: UUID
    project_id: UUID
    prompt_run_id: UUID | None = None
    action_type: ActionType
    action_payload: dict[str, Any]
    status: ActionStatus
    requires_approval: bool
    executed_at: datetime | None = None
    execution_result: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime | None = None


class ExecutionResponse(PulseBaseModel):
    action_record_id: UUID
    executed: bool
    skipped: bool = False
    status: ActionStatus
    message: str | None = None
    execution_result: dict[str, Any] | None = None


class ApproveResponse(PulseBaseModel):
    action: ActionRecordResponse
    execution: ExecutionResponse | None = None


class PendingCountResponse(PulseBaseModel):
    pending: int


# =============================================================================
# PROMPT RUNS
# =============================================================================


class PromptRunResponse(PulseBaseModel):
    id: UUID
    project_id: UUID | None = None
    workflow_prompt_id: UUID | None = None
    prompt_input: str
    prompt_output: str | None = None
    error_message: str | None = None
    status: PromptRunStatus
    ai_provider: str | None = None
    ai_model: str | None = None
    initiated_by: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class RerunRequest(BaseModel):
    initiated_by: str | None = Field(default=None, max_length=255)


# =============================================================================
# INTEGRATION JOBS
# =============================================================================


class IntegrationJobResponse(PulseBaseModel):
    id: UUID
    company_id: UUID
    project_id: UUID | None = None
    action_record_id: UUID | None = None
    operation_type: OperationType
    resource_type: ResourceType
    payload: dict[str, Any]
    status: JobStatus
    retry_count: int
    next_retry_at: datetime | None = None
    claimed_at: datetime | None = None
    processed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None
    created_at: datetime


# =============================================================================
# PROJECTS
# =============================================================================


class NextCheckDateRequest(BaseModel):
    """Set or clear (``null``) a project's reminder."""

    next_check_date: datetime | None = None


class ProjectResponse(PulseBaseModel):
    id: UUID
    company_id: UUID
    crm_id: str
    project_name: str | None = None
    summary: str | None = None
    next_step: str | None = None
    project_track_id: UUID | None = None
    next_check_date: datetime | None = None
    last_action_check: datetime | None = None
