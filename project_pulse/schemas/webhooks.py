"""Inbound CRM webhook schemas.

CRM-specific field mapping happens upstream; by the time an event reaches
this service it has been normalized into ``CrmWebhookEvent``.
"""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from .base import PulseBaseModel


class CrmWebhookEvent(BaseModel):
    """A normalized project change event from the CRM."""

    company_id: UUID
    crm_id: str = Field(..., min_length=1, max_length=255)
    project_name: str | None = Field(default=None, max_length=500)
    project_address: str | None = None
    next_step: str | None = Field(default=None, max_length=255)
    project_track_id: UUID | None = None
    timeline: dict[str, str] = Field(
        default_factory=dict,
        description="Milestone name -> date string for milestones that changed",
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Remaining CRM fields, passed to the summary prompt as new_data",
    )

    @field_validator("crm_id")
    @classmethod
    def _strip_crm_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("crm_id must not be blank")
        return value


class DetectionSummary(PulseBaseModel):
    decision: str | None = None
    prompt_run_id: UUID | None = None
    action_record_id: UUID | None = None
    next_check_date: str | None = None
    error: str | None = None


class WebhookResponse(PulseBaseModel):
    """Processing summary returned to the CRM."""

    success: bool = True
    project_id: UUID
    is_new_project: bool
    summary: str | None = None
    summary_prompt_run_id: UUID | None = None
    timeline_action_ids: list[UUID] = []
    detection: DetectionSummary | None = None
