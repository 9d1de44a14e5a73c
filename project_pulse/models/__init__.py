"""SQLAlchemy ORM Models for Project Pulse."""

from .base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow
from .models import (
    # Enums
    ActionStatus,
    ActionType,
    JobStatus,
    OperationType,
    PromptRunStatus,
    ResourceType,
    WorkflowPromptType,
    # Companies & tracks
    Company,
    ProjectTrack,
    TrackMilestone,
    # Projects
    Project,
    # Prompts
    PromptRun,
    WorkflowPrompt,
    # Actions
    ActionRecord,
    # Integration queue
    IntegrationJob,
)

__all__ = [
    # Base
    "Base",
    "JSONType",
    "UUIDMixin",
    "TimestampMixin",
    "utcnow",
    # Enums
    "WorkflowPromptType",
    "PromptRunStatus",
    "ActionType",
    "ActionStatus",
    "OperationType",
    "ResourceType",
    "JobStatus",
    # Companies & tracks
    "Company",
    "ProjectTrack",
    "TrackMilestone",
    # Projects
    "Project",
    # Prompts
    "WorkflowPrompt",
    "PromptRun",
    # Actions
    "ActionRecord",
    # Integration queue
    "IntegrationJob",
]
