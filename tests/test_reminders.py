"""
Tests for the Reminder Scheduler and the reminder cron job.

A reminder is a project's next_check_date; the cron consumes it, re-runs
detection as a reminder check and executes approval-free results.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from project_pulse.core import Settings, session_scope
from project_pulse.jobs import run_reminder_job
from project_pulse.jobs.reminder_cron import REMINDER_INITIATOR
from project_pulse.models import (
    ActionRecord,
    Company,
    Project,
    PromptRun,
    WorkflowPrompt,
    WorkflowPromptType,
)
from project_pulse.services import ExternalClients, ReminderScheduler
from project_pulse.services.reminders import start_of_next_day

from tests.conftest import DETECTION_TEMPLATE
from tests.fakes import FakeAIClient, FakeCommunicationClient

DAY_D = datetime(2026, 5, 4, 15, 30, tzinfo=timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands datetimes back without tzinfo
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# =============================================================================
# TEST: SCHEDULER
# =============================================================================


class TestReminderScheduler:
    def test_start_of_next_day(self):
        assert start_of_next_day(DAY_D) == datetime(2026, 5, 5, tzinfo=timezone.utc)

    async def test_set_and_clear(self, session: AsyncSession, make_project):
        project = await make_project()
        scheduler = ReminderScheduler(session)

        await scheduler.set_next_check_date(project.id, DAY_D)
        assert project.next_check_date == DAY_D

        await scheduler.set_next_check_date(project.id, None)
        assert project.next_check_date is None

    async def test_schedule_in_days_overwrites(self, session: AsyncSession, make_project):
        project = await make_project(next_check_date=DAY_D + timedelta(days=30))
        scheduler = ReminderScheduler(session)

        scheduled = await scheduler.schedule_in_days(project.id, 2, now=DAY_D)

        assert scheduled == DAY_D + timedelta(days=2)
        assert project.next_check_date == scheduled

    async def test_due_projects_uses_day_granularity(self, session: AsyncSession, make_project):
        overdue = await make_project("CRM-1", next_check_date=DAY_D - timedelta(days=2))
        later_today = await make_project("CRM-2", next_check_date=DAY_D + timedelta(hours=5))
        await make_project("CRM-3", next_check_date=DAY_D + timedelta(days=1))
        await make_project("CRM-4")

        due = await ReminderScheduler(session).due_projects(now=DAY_D)

        assert [p.id for p in due] == [overdue.id, later_today.id]

    async def test_due_projects_limit(self, session: AsyncSession, make_project):
        for i in range(3):
            await make_project(f"CRM-{i}", next_check_date=DAY_D - timedelta(days=i))

        assert len(await ReminderScheduler(session).due_projects(now=DAY_D, limit=2)) == 2

    async def test_mark_checked_consumes_reminder(self, session: AsyncSession, make_project):
        project = await make_project(next_check_date=DAY_D)

        await ReminderScheduler(session).mark_checked(project, now=DAY_D)

        assert project.next_check_date is None
        assert project.last_action_check == DAY_D


# =============================================================================
# TEST: REMINDER CRON
# =============================================================================


async def _seed(
    session_factory: async_sessionmaker[AsyncSession],
    *check_dates: datetime | None,
    with_prompt: bool = True,
) -> list:
    """Commit a company, the detection prompt and one project per check date."""
    async with session_scope(session_factory) as session:
        company = Company(name="Sunrise Solar")
        session.add(company)
        await session.flush()
        if with_prompt:
            session.add(
                WorkflowPrompt(
                    type=WorkflowPromptType.ACTION_DETECTION_EXECUTION,
                    prompt_text=DETECTION_TEMPLATE,
                )
            )
        projects = [
            Project(
                company_id=company.id,
                crm_id=f"CRM-{i}",
                summary="Waiting on inspection.",
                next_check_date=check_date,
            )
            for i, check_date in enumerate(check_dates)
        ]
        session.add_all(projects)
        await session.flush()
        return [p.id for p in projects]


async def _load(session_factory, model, *criteria):
    async with session_factory() as session:
        result = await session.execute(select(model).where(*criteria))
        return list(result.scalars().all())


class TestReminderCron:
    async def test_due_project_is_checked_and_cleared(
        self, session_factory, settings: Settings, clients: ExternalClients, fake_ai: FakeAIClient
    ):
        due_id, future_id = await _seed(session_factory, DAY_D - timedelta(days=1), DAY_D + timedelta(days=3))
        fake_ai.queue('{"decision": "NO_ACTION"}')

        results = await run_reminder_job(settings, clients=clients, session_factory=session_factory, now=DAY_D)

        assert results["due_count"] == 1
        assert results["checked_count"] == 1
        assert results["failed_count"] == 0
        assert results["projects"][0]["project_id"] == str(due_id)
        assert results["projects"][0]["decision"] == "NO_ACTION"
        assert "Reminder check: true" in fake_ai.prompts[0]

        due, = await _load(session_factory, Project, Project.id == due_id)
        assert due.next_check_date is None
        assert _as_utc(due.last_action_check) == DAY_D

        future, = await _load(session_factory, Project, Project.id == future_id)
        assert _as_utc(future.next_check_date) == DAY_D + timedelta(days=3)

        runs = await _load(session_factory, PromptRun)
        assert [run.initiated_by for run in runs] == [REMINDER_INITIATOR]

    async def test_new_reminder_from_detection_survives(
        self, session_factory, settings: Settings, clients: ExternalClients, fake_ai: FakeAIClient
    ):
        project_id, = await _seed(session_factory, DAY_D)
        fake_ai.queue('{"decision": "SET_FUTURE_REMINDER", "days_until_check": 5}')

        await run_reminder_job(settings, clients=clients, session_factory=session_factory, now=DAY_D)

        project, = await _load(session_factory, Project, Project.id == project_id)
        assert _as_utc(project.next_check_date) == DAY_D + timedelta(days=5)

    async def test_approval_free_action_is_executed(
        self, session_factory, clients: ExternalClients,
        fake_ai: FakeAIClient, fake_comms: FakeCommunicationClient,
    ):
        settings = Settings(
            _env_file=None,
            database_url="sqlite+aiosqlite:///:memory:",
            auto_approve_action_types=["message"],
        )
        await _seed(session_factory, DAY_D)
        fake_ai.queue(
            '{"decision": "ACTION_NEEDED", "action_type": "message", '
            '"action_payload": {"message": "Inspection is tomorrow", "phone": "+15555550100"}}'
        )

        results = await run_reminder_job(settings, clients=clients, session_factory=session_factory, now=DAY_D)

        assert results["actions_created"] == 1
        assert results["actions_executed"] == 1
        assert fake_comms.sent[0]["message_content"] == "Inspection is tomorrow"

    async def test_gated_action_waits_for_approval(
        self, session_factory, settings: Settings, clients: ExternalClients,
        fake_ai: FakeAIClient, fake_comms: FakeCommunicationClient,
    ):
        await _seed(session_factory, DAY_D)
        fake_ai.queue(
            '{"decision": "ACTION_NEEDED", "action_type": "message", '
            '"action_payload": {"message": "Inspection is tomorrow"}}'
        )

        results = await run_reminder_job(settings, clients=clients, session_factory=session_factory, now=DAY_D)

        assert results["actions_created"] == 1
        assert results["actions_executed"] == 0
        assert fake_comms.sent == []
        records = await _load(session_factory, ActionRecord)
        assert records[0].status.value == "pending"

    async def test_failed_project_is_rolled_back_and_counted(
        self, session_factory, settings: Settings, clients: ExternalClients
    ):
        project_id, = await _seed(session_factory, DAY_D, with_prompt=False)

        results = await run_reminder_job(settings, clients=clients, session_factory=session_factory, now=DAY_D)

        assert results["failed_count"] == 1
        assert results["checked_count"] == 0
        assert "No workflow prompt of type action_detection_execution" in results["errors"][0]

        project, = await _load(session_factory, Project, Project.id == project_id)
        assert _as_utc(project.next_check_date) == DAY_D

    async def test_nothing_due(self, session_factory, settings: Settings, clients: ExternalClients):
        await _seed(session_factory, None)

        results = await run_reminder_job(settings, clients=clients, session_factory=session_factory, now=DAY_D)

        assert results["due_count"] == 0
        assert results["projects"] == []
        assert results["completed_at"] is not None
