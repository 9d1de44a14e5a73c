"""SQLAlchemy ORM Models for Project Pulse.

The schema is fixed and declared here; migrations are applied externally.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, utcnow


# =============================================================================
# ENUMS
# =============================================================================


class WorkflowPromptType(str, PyEnum):
    SUMMARY_GENERATION = "summary_generation"
    SUMMARY_UPDATE = "summary_update"
    ACTION_DETECTION = "action_detection"
    ACTION_EXECUTION = "action_execution"
    ACTION_DETECTION_EXECUTION = "action_detection_execution"


class PromptRunStatus(str, PyEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class ActionType(str, PyEnum):
    """Kinds of work an ActionRecord can describe."""
    MESSAGE = "message"
    DATA_UPDATE = "data_update"
    SET_FUTURE_REMINDER = "set_future_reminder"
    HUMAN_IN_LOOP = "human_in_loop"
    KNOWLEDGE_QUERY = "knowledge_query"
    TIMELINE_UPDATE = "timeline_update"


class ActionStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"


class OperationType(str, PyEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


class ResourceType(str, PyEnum):
    PROJECT = "project"
    TASK = "task"
    NOTE = "note"
    CONTACT = "contact"
    COMMUNICATION = "communication"


class JobStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"  # Claimed by a worker
    RETRY = "retry"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# COMPANIES & TRACKS
# =============================================================================


class Company(Base, UUIDMixin, TimestampMixin):
    """A customer account whose CRM feeds the pipeline."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    projects: Mapped[list["Project"]] = relationship(back_populates="company")


class ProjectTrack(Base, UUIDMixin, TimestampMixin):
    """Classification of a project that selects context-specific prompt text."""

    __tablename__ = "project_tracks"

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    roles: Mapped[str | None] = mapped_column(
        Text, comment="Who does what on this kind of project"
    )
    base_prompt: Mapped[str | None] = mapped_column(Text)
    is_default: Mapped[bool] = mapped_column(
        Boolean, default=False,
        comment="Used for projects of this company without an explicit track"
    )

    milestones: Mapped[list["TrackMilestone"]] = relationship(
        back_populates="track",
        order_by="TrackMilestone.step_order",
    )

    __table_args__ = (
        Index("idx_project_tracks_company", "company_id"),
    )


class TrackMilestone(Base, UUIDMixin):
    """A named step of a track with instructions for the AI at that step."""

    __tablename__ = "project_track_milestones"

    track_id: Mapped[UUID] = mapped_column(
        ForeignKey("project_tracks.id"), nullable=False
    )
    step_title: Mapped[str] = mapped_column(String(255), nullable=False)
    prompt_instructions: Mapped[str | None] = mapped_column(Text)
    step_order: Mapped[int] = mapped_column(Integer, default=0)

    track: Mapped["ProjectTrack"] = relationship(back_populates="milestones")

    __table_args__ = (
        UniqueConstraint("track_id", "step_title", name="uq_track_milestone_title"),
    )


# =============================================================================
# PROJECTS
# =============================================================================


class Project(Base, UUIDMixin, TimestampMixin):
    """A tracked construction/renovation project mirrored from the CRM."""

    __tablename__ = "projects"

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id"), nullable=False
    )
    crm_id: Mapped[str] = mapped_column(String(255), nullable=False)
    project_name: Mapped[str | None] = mapped_column(String(500))
    project_address: Mapped[str | None] = mapped_column(Text)
    summary: Mapped[str | None] = mapped_column(Text)
    next_step: Mapped[str | None] = mapped_column(
        String(255), comment="Milestone name"
    )
    project_track_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("project_tracks.id"), nullable=True
    )
    next_check_date: Mapped[datetime | None] = mapped_column()
    last_action_check: Mapped[datetime | None] = mapped_column()

    company: Mapped["Company"] = relationship(back_populates="projects")
    track: Mapped["ProjectTrack | None"] = relationship()

    __table_args__ = (
        UniqueConstraint("company_id", "crm_id", name="uq_projects_company_crm_id"),
        Index("idx_projects_next_check_date", "next_check_date"),
    )


# =============================================================================
# PROMPTS
# =============================================================================


class WorkflowPrompt(Base, UUIDMixin, TimestampMixin):
    """A prompt template with {{variable}} placeholders."""

    __tablename__ = "workflow_prompts"

    type: Mapped[WorkflowPromptType] = mapped_column(
        Enum(WorkflowPromptType, name="workflow_prompt_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    prompt_text: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("idx_workflow_prompts_type", "type", "created_at"),
    )


class PromptRun(Base, UUIDMixin):
    """One logged AI invocation."""

    __tablename__ = "prompt_runs"

    project_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("projects.id"), nullable=True
    )
    workflow_prompt_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("workflow_prompts.id"), nullable=True
    )
    prompt_input: Mapped[str] = mapped_column(Text, nullable=False)
    prompt_output: Mapped[str | None] = mapped_column(Text)
    error_message: Mapped[str | None] = mapped_column(Text)
    status: Mapped[PromptRunStatus] = mapped_column(
        Enum(PromptRunStatus, name="prompt_run_status", values_callable=lambda x: [e.value for e in x]),
        default=PromptRunStatus.PENDING,
        nullable=False,
    )
    ai_provider: Mapped[str | None] = mapped_column(String(50))
    ai_model: Mapped[str | None] = mapped_column(String(100))
    initiated_by: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column()

    project: Mapped["Project | None"] = relationship()
    workflow_prompt: Mapped["WorkflowPrompt | None"] = relationship()

    __table_args__ = (
        Index("idx_prompt_runs_project", "project_id", "created_at"),
        Index("idx_prompt_runs_status", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != PromptRunStatus.PENDING


# =============================================================================
# ACTIONS
# =============================================================================


class ActionRecord(Base, UUIDMixin, TimestampMixin):
    """A proposed or executed unit of work derived from a decision."""

    __tablename__ = "action_records"

    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("projects.id"), nullable=False
    )
    prompt_run_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("prompt_runs.id"), nullable=True
    )
    action_type: Mapped[ActionType] = mapped_column(
        Enum(ActionType, name="action_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    action_payload: Mapped[dict] = mapped_column(default=dict)
    status: Mapped[ActionStatus] = mapped_column(
        Enum(ActionStatus, name="action_status", values_callable=lambda x: [e.value for e in x]),
        default=ActionStatus.PENDING,
        nullable=False,
    )
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=True)
    executed_at: Mapped[datetime | None] = mapped_column()
    execution_result: Mapped[dict | None] = mapped_column()

    project: Mapped["Project"] = relationship()
    prompt_run: Mapped["PromptRun | None"] = relationship()

    __table_args__ = (
        Index("idx_action_records_project", "project_id", "created_at"),
        Index("idx_action_records_status", "status"),
    )


# =============================================================================
# INTEGRATION QUEUE
# =============================================================================


class IntegrationJob(Base, UUIDMixin, TimestampMixin):
    """A durable, retryable unit of work against an external system."""

    __tablename__ = "integration_job_queue"

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id"), nullable=False
    )
    project_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("projects.id"), nullable=True
    )
    action_record_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("action_records.id"), nullable=True
    )
    operation_type: Mapped[OperationType] = mapped_column(
        Enum(OperationType, name="integration_operation_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    resource_type: Mapped[ResourceType] = mapped_column(
        Enum(ResourceType, name="integration_resource_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    payload: Mapped[dict] = mapped_column(default=dict)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="integration_job_status", values_callable=lambda x: [e.value for e in x]),
        default=JobStatus.PENDING,
        nullable=False,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_retry_at: Mapped[datetime | None] = mapped_column()
    claimed_at: Mapped[datetime | None] = mapped_column()  # Start of the current worker lease
    processed_at: Mapped[datetime | None] = mapped_column()
    result: Mapped[dict | None] = mapped_column()
    error_message: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("idx_integration_jobs_eligible", "status", "next_retry_at", "created_at"),
        Index("idx_integration_jobs_action", "action_record_id"),
    )
