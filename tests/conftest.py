"""Shared fixtures: an in-memory SQLite database and fake outbound clients."""

from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from project_pulse.core import Settings, build_engine, build_session_factory, close_db, init_db
from project_pulse.models import (
    Company,
    Project,
    ProjectTrack,
    TrackMilestone,
    WorkflowPrompt,
    WorkflowPromptType,
)
from project_pulse.services import ExternalClients

from tests.fakes import (
    FakeAIClient,
    FakeCommunicationClient,
    FakeCrmClient,
    FakeKnowledgeBase,
)

DETECTION_TEMPLATE = (
    "Summary: {{summary}}\n"
    "Next step: {{next_step}}\n"
    "Track: {{track_name}}\n"
    "Milestone: {{milestone_instructions}}\n"
    "Date: {{current_date}}\n"
    "Reminder check: {{is_reminder_check}}\n"
    "Knowledge: {{knowledge_results}}"
)
SUMMARY_GENERATION_TEMPLATE = "Write a summary for {{track_name}} project. Data: {{new_data}}"
SUMMARY_UPDATE_TEMPLATE = "Current summary: {{summary}}\nNew data: {{new_data}}"


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        environment="development",
        auto_approve_action_types=[],
    )


@pytest.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# FAKE CLIENTS
# =============================================================================


@pytest.fixture
def fake_ai() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def fake_comms() -> FakeCommunicationClient:
    return FakeCommunicationClient()


@pytest.fixture
def fake_crm() -> FakeCrmClient:
    return FakeCrmClient()


@pytest.fixture
def fake_kb() -> FakeKnowledgeBase:
    return FakeKnowledgeBase()


@pytest.fixture
def clients(
    fake_ai: FakeAIClient,
    fake_comms: FakeCommunicationClient,
    fake_crm: FakeCrmClient,
    fake_kb: FakeKnowledgeBase,
) -> ExternalClients:
    return ExternalClients(
        ai=fake_ai,
        communications=fake_comms,
        crm=fake_crm,
        knowledge_base=fake_kb,
    )


# =============================================================================
# DOMAIN DATA
# =============================================================================


@pytest.fixture
async def company(session: AsyncSession) -> Company:
    company = Company(name="Sunrise Solar")
    session.add(company)
    await session.flush()
    return company


@pytest.fixture
async def track(session: AsyncSession, company: Company) -> ProjectTrack:
    track = ProjectTrack(
        company_id=company.id,
        name="Residential Install",
        roles="Project manager, installer",
        base_prompt="Keep the homeowner informed.",
        is_default=True,
    )
    session.add(track)
    await session.flush()
    session.add(
        TrackMilestone(
            track_id=track.id,
            step_title="Permit Submission",
            prompt_instructions="Confirm the permit was filed with the city.",
            step_order=1,
        )
    )
    await session.flush()
    return track


@pytest.fixture
async def prompts(session: AsyncSession) -> dict[WorkflowPromptType, WorkflowPrompt]:
    templates = {
        WorkflowPromptType.SUMMARY_GENERATION: SUMMARY_GENERATION_TEMPLATE,
        WorkflowPromptType.SUMMARY_UPDATE: SUMMARY_UPDATE_TEMPLATE,
        WorkflowPromptType.ACTION_DETECTION_EXECUTION: DETECTION_TEMPLATE,
    }
    created = {}
    for prompt_type, text in templates.items():
        prompt = WorkflowPrompt(type=prompt_type, prompt_text=text)
        session.add(prompt)
        created[prompt_type] = prompt
    await session.flush()
    return created


@pytest.fixture
def make_project(session: AsyncSession, company: Company) -> Callable[..., Any]:
    async def _make(crm_id: str = "CRM-1", **fields: Any) -> Project:
        fields.setdefault("project_name", "Smith Residence")
        fields.setdefault("summary", "Panels delivered, waiting on permit.")
        fields.setdefault("next_step", "Permit Submission")
        project = Project(company_id=company.id, crm_id=crm_id, **fields)
        session.add(project)
        await session.flush()
        return project

    return _make
