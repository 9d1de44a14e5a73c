"""Business logic services for Project Pulse."""

from .action_detection import ActionDetectionService, DetectionResult
from .action_executor import ActionExecutor, ExecutionResult
from .action_records import ActionRecordStore
from .ai_client import AIClient
from .exceptions import (
    ActionRecordNotFoundError,
    AIProviderError,
    IntegrationError,
    IntegrationJobNotFoundError,
    InvalidTransitionError,
    KnowledgeBaseError,
    PermanentIntegrationError,
    ProjectNotFoundError,
    PromptNotConfiguredError,
    PromptRunNotFoundError,
    PulseError,
    TransientIntegrationError,
)
from .factory import (
    ExternalClients,
    build_detection,
    build_executor,
    build_job_processor,
    build_pipeline,
)
from .integration_queue import IntegrationJobQueue, compute_backoff
from .integrations import CommunicationClient, CommunicationResult, CrmClient, Recipient
from .job_processor import IntegrationDispatcher, JobOutcome, JobProcessor
from .knowledge_base import KnowledgeBaseClient, KnowledgeResult
from .projects import ProjectStore, TrackContext
from .prompt_runs import PromptExecution, PromptRunEngine
from .reminders import ReminderScheduler
from .webhook_pipeline import ProjectPipeline, WebhookOutcome
from .workflow_prompts import WorkflowPromptStore, render_prompt

__all__ = [
    # Prompt runs
    "PromptRunEngine",
    "PromptExecution",
    "WorkflowPromptStore",
    "render_prompt",
    "AIClient",
    # Detection and actions
    "ActionDetectionService",
    "DetectionResult",
    "ActionRecordStore",
    "ActionExecutor",
    "ExecutionResult",
    # Integration queue
    "IntegrationJobQueue",
    "compute_backoff",
    "IntegrationDispatcher",
    "JobProcessor",
    "JobOutcome",
    "CommunicationClient",
    "CommunicationResult",
    "CrmClient",
    "Recipient",
    "KnowledgeBaseClient",
    "KnowledgeResult",
    # Projects and reminders
    "ProjectStore",
    "TrackContext",
    "ReminderScheduler",
    "ProjectPipeline",
    "WebhookOutcome",
    # Wiring
    "ExternalClients",
    "build_detection",
    "build_executor",
    "build_job_processor",
    "build_pipeline",
    # Errors
    "PulseError",
    "ProjectNotFoundError",
    "PromptRunNotFoundError",
    "ActionRecordNotFoundError",
    "IntegrationJobNotFoundError",
    "InvalidTransitionError",
    "PromptNotConfiguredError",
    "AIProviderError",
    "KnowledgeBaseError",
    "IntegrationError",
    "TransientIntegrationError",
    "PermanentIntegrationError",
]
