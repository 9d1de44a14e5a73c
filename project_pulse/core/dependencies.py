"""FastAPI dependencies for sessions, settings and services."""

import logging
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..services import (
    ActionExecutor,
    ActionRecordStore,
    ExternalClients,
    IntegrationJobQueue,
    ProjectPipeline,
    PromptRunEngine,
    ReminderScheduler,
    build_executor,
    build_pipeline,
)
from .config import Settings
from .database import get_session

logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_clients(request: Request) -> ExternalClients:
    return request.app.state.clients


SessionDep = Annotated[AsyncSession, Depends(get_session)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
ClientsDep = Annotated[ExternalClients, Depends(get_clients)]


def get_prompt_engine(session: SessionDep, clients: ClientsDep) -> PromptRunEngine:
    return PromptRunEngine(session, clients.ai)


def get_action_records(session: SessionDep) -> ActionRecordStore:
    return ActionRecordStore(session)


def get_job_queue(session: SessionDep) -> IntegrationJobQueue:
    return IntegrationJobQueue(session)


def get_reminders(session: SessionDep) -> ReminderScheduler:
    return ReminderScheduler(session)


def get_executor(
    session: SessionDep,
    settings: SettingsDep,
    clients: ClientsDep,
) -> ActionExecutor:
    return build_executor(session, settings, clients)


def get_pipeline(
    session: SessionDep,
    settings: SettingsDep,
    clients: ClientsDep,
) -> ProjectPipeline:
    return build_pipeline(session, settings, clients)


# Type aliases for cleaner dependency injection
PromptEngineDep = Annotated[PromptRunEngine, Depends(get_prompt_engine)]
ActionRecordsDep = Annotated[ActionRecordStore, Depends(get_action_records)]
JobQueueDep = Annotated[IntegrationJobQueue, Depends(get_job_queue)]
RemindersDep = Annotated[ReminderScheduler, Depends(get_reminders)]
ExecutorDep = Annotated[ActionExecutor, Depends(get_executor)]
PipelineDep = Annotated[ProjectPipeline, Depends(get_pipeline)]
