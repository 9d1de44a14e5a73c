"""Service wiring shared by the API, the reminder cron and the worker."""

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings
from .action_detection import ActionDetectionService
from .action_executor import ActionExecutor
from .action_records import ActionRecordStore
from .ai_client import AIClient
from .integration_queue import IntegrationJobQueue
from .integrations import CommunicationClient, CrmClient
from .job_processor import IntegrationDispatcher, JobProcessor
from .knowledge_base import KnowledgeBaseClient
from .prompt_runs import PromptRunEngine
from .webhook_pipeline import ProjectPipeline


@dataclass
class ExternalClients:
    """Outbound clients; one set per process, shared across sessions."""
    ai: AIClient
    communications: CommunicationClient
    crm: CrmClient
    knowledge_base: KnowledgeBaseClient | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> "ExternalClients":
        return cls(
            ai=AIClient(settings, http_client),
            communications=CommunicationClient(settings, http_client),
            crm=CrmClient(settings, http_client),
            knowledge_base=(
                KnowledgeBaseClient(settings, http_client)
                if settings.knowledge_base_enabled
                else None
            ),
        )


def build_job_processor(
    session: AsyncSession,
    settings: Settings,
    clients: ExternalClients,
) -> JobProcessor:
    return JobProcessor(
        IntegrationJobQueue(session),
        IntegrationDispatcher(clients.communications, clients.crm),
        timeout_seconds=settings.integration_timeout_seconds,
        records=ActionRecordStore(session),
    )


def build_executor(
    session: AsyncSession,
    settings: Settings,
    clients: ExternalClients,
) -> ActionExecutor:
    return ActionExecutor(
        ActionRecordStore(session),
        IntegrationJobQueue(session),
        build_job_processor(session, settings, clients),
    )


def build_detection(
    session: AsyncSession,
    settings: Settings,
    clients: ExternalClients,
) -> ActionDetectionService:
    return ActionDetectionService(
        session,
        PromptRunEngine(session, clients.ai),
        settings,
        knowledge_base=clients.knowledge_base,
    )


def build_pipeline(
    session: AsyncSession,
    settings: Settings,
    clients: ExternalClients,
) -> ProjectPipeline:
    return ProjectPipeline(
        session,
        PromptRunEngine(session, clients.ai),
        build_detection(session, settings, clients),
        build_executor(session, settings, clients),
    )
