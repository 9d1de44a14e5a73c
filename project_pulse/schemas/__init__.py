"""Pydantic schemas for request/response validation."""

from .base import (
    ErrorResponse,
    PaginatedResponse,
    PulseBaseModel,
)
from .decisions import (
    ActionNeededDecision,
    AIDecision,
    DataUpdatePayload,
    Decision,
    MessagePayload,
    NoActionDecision,
    QueryKnowledgeBaseDecision,
    RequestHumanReviewDecision,
    SetFutureReminderDecision,
    extract_json_object,
    parse_ai_decision,
)
from .operations import (
    ActionRecordResponse,
    ApproveResponse,
    ExecutionResponse,
    IntegrationJobResponse,
    NextCheckDateRequest,
    PendingCountResponse,
    ProjectResponse,
    PromptRunResponse,
    RerunRequest,
)
from .webhooks import CrmWebhookEvent, DetectionSummary, WebhookResponse

__all__ = [
    # Base
    "PulseBaseModel",
    "PaginatedResponse",
    "ErrorResponse",
    # Decisions
    "Decision",
    "AIDecision",
    "NoActionDecision",
    "ActionNeededDecision",
    "SetFutureReminderDecision",
    "RequestHumanReviewDecision",
    "QueryKnowledgeBaseDecision",
    "MessagePayload",
    "DataUpdatePayload",
    "extract_json_object",
    "parse_ai_decision",
    # Webhooks
    "CrmWebhookEvent",
    "DetectionSummary",
    "WebhookResponse",
    # Operator API
    "ActionRecordResponse",
    "ExecutionResponse",
    "ApproveResponse",
    "PendingCountResponse",
    "PromptRunResponse",
    "RerunRequest",
    "IntegrationJobResponse",
    "NextCheckDateRequest",
    "ProjectResponse",
]
