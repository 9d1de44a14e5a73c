"""
Tests for the Action Detection Service.

Each decision the AI can return has exactly one effect:
- NO_ACTION: nothing
- ACTION_NEEDED: a pending ActionRecord, gated unless auto-approved
- SET_FUTURE_REMINDER: next_check_date moved, executed audit record
- REQUEST_HUMAN_REVIEW: pending human_in_loop record
- QUERY_KNOWLEDGE_BASE: one lookup, one more round
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from project_pulse.core import Settings
from project_pulse.models import (
    ActionRecord,
    ActionStatus,
    ActionType,
    PromptRun,
    PromptRunStatus,
)
from project_pulse.schemas import Decision
from project_pulse.services import (
    ActionDetectionService,
    AIProviderError,
    KnowledgeResult,
    PromptNotConfiguredError,
    PromptRunEngine,
)

from tests.fakes import FakeAIClient, FakeKnowledgeBase

DAY_D = datetime(2026, 5, 4, 15, 30, tzinfo=timezone.utc)


def _detector(session, settings, ai, knowledge_base=None) -> ActionDetectionService:
    return ActionDetectionService(
        session,
        PromptRunEngine(session, ai),
        settings,
        knowledge_base=knowledge_base,
    )


async def _records(session: AsyncSession) -> list[ActionRecord]:
    result = await session.execute(select(ActionRecord).order_by(ActionRecord.created_at))
    return list(result.scalars().all())


# =============================================================================
# TEST: CONTEXT
# =============================================================================


class TestDetectionContext:
    async def test_prompt_includes_project_and_track_context(
        self, session: AsyncSession, settings: Settings, track, prompts, make_project
    ):
        project = await make_project()
        ai = FakeAIClient('{"decision": "NO_ACTION"}')

        await _detector(session, settings, ai).detect(project, is_reminder_check=True, now=DAY_D)

        prompt = ai.prompts[0]
        assert "Summary: Panels delivered, waiting on permit." in prompt
        assert "Next step: Permit Submission" in prompt
        assert "Track: Residential Install" in prompt
        assert "Milestone: Confirm the permit was filed with the city." in prompt
        assert "Date: 2026-05-04" in prompt
        assert "Reminder check: true" in prompt

    async def test_missing_prompt_raises(self, session: AsyncSession, settings: Settings, make_project):
        project = await make_project()

        with pytest.raises(PromptNotConfiguredError):
            await _detector(session, settings, FakeAIClient()).detect(project)


# =============================================================================
# TEST: DECISIONS
# =============================================================================


class TestDecisions:
    async def test_no_action_creates_nothing(
        self, session: AsyncSession, settings: Settings, prompts, make_project
    ):
        project = await make_project()
        ai = FakeAIClient('{"decision": "NO_ACTION", "reason": "On track"}')

        result = await _detector(session, settings, ai).detect(project)

        assert result.decision == Decision.NO_ACTION
        assert result.action_record is None
        assert result.prompt_run_id is not None
        assert await _records(session) == []

    async def test_action_needed_requires_approval_by_default(
        self, session: AsyncSession, settings: Settings, prompts, make_project
    ):
        project = await make_project()
        ai = FakeAIClient(
            '{"decision": "ACTION_NEEDED", "action_type": "message", "reason": "Permit overdue", '
            '"action_payload": {"message_text": "Any news on the permit?", "recipient": "Jane", '
            '"phone": "+15555550100"}}'
        )

        result = await _detector(session, settings, ai).detect(project)

        record = result.action_record
        assert result.decision == Decision.ACTION_NEEDED
        assert record.action_type == ActionType.MESSAGE
        assert record.status == ActionStatus.PENDING
        assert record.requires_approval is True
        assert record.prompt_run_id == result.prompt_run_id
        assert record.action_payload["message_content"] == "Any news on the permit?"
        assert record.action_payload["reason"] == "Permit overdue"
        assert result.requires_execution is False

    async def test_auto_approved_action_type(
        self, session: AsyncSession, prompts, make_project
    ):
        settings = Settings(
            _env_file=None,
            database_url="sqlite+aiosqlite:///:memory:",
            auto_approve_action_types=["data_update"],
        )
        project = await make_project()
        ai = FakeAIClient(
            '{"decision": "ACTION_NEEDED", "action_type": "data_update", '
            '"action_payload": {"field": "stage", "value": "Permitting"}}'
        )

        result = await _detector(session, settings, ai).detect(project)

        assert result.action_record.requires_approval is False
        assert result.requires_execution is True

    async def test_set_future_reminder(
        self, session: AsyncSession, settings: Settings, prompts, make_project
    ):
        project = await make_project()
        ai = FakeAIClient(
            '{"decision": "SET_FUTURE_REMINDER", "days_until_check": 3, '
            '"check_reason": "Inspection scheduled"}'
        )

        result = await _detector(session, settings, ai).detect(project, now=DAY_D)

        assert result.decision == Decision.SET_FUTURE_REMINDER
        assert result.next_check_date == DAY_D + timedelta(days=3)
        assert project.next_check_date == DAY_D + timedelta(days=3)

        record = result.action_record
        assert record.action_type == ActionType.SET_FUTURE_REMINDER
        assert record.status == ActionStatus.EXECUTED
        assert record.requires_approval is False
        assert record.executed_at is not None
        assert record.action_payload["days_until_check"] == 3
        assert record.action_payload["check_reason"] == "Inspection scheduled"
        assert record.action_payload["scheduled_date"] == (DAY_D + timedelta(days=3)).isoformat()

    async def test_request_human_review(
        self, session: AsyncSession, settings: Settings, prompts, make_project
    ):
        project = await make_project()
        ai = FakeAIClient(
            '{"decision": "REQUEST_HUMAN_REVIEW", "review_reason": "Customer threatened to cancel", '
            '"priority": "high"}'
        )

        result = await _detector(session, settings, ai).detect(project)

        record = result.action_record
        assert record.action_type == ActionType.HUMAN_IN_LOOP
        assert record.status == ActionStatus.PENDING
        assert record.requires_approval is True
        assert record.action_payload["human_review"] is True
        assert record.action_payload["reason"] == "Customer threatened to cancel"
        assert record.action_payload["priority"] == "high"


# =============================================================================
# TEST: UNUSABLE OUTPUT
# =============================================================================


class TestUnusableOutput:
    async def test_unparseable_output_is_no_action(
        self, session: AsyncSession, settings: Settings, prompts, make_project
    ):
        project = await make_project()
        ai = FakeAIClient("I'm not sure what to do here.")

        result = await _detector(session, settings, ai).detect(project)

        assert result.decision == Decision.NO_ACTION
        assert result.parse_failed is True
        assert await _records(session) == []

        run = await session.get(PromptRun, result.prompt_run_id)
        assert run.status == PromptRunStatus.COMPLETED
        assert run.prompt_output == "I'm not sure what to do here."

    async def test_invalid_decision_is_no_action(
        self, session: AsyncSession, settings: Settings, prompts, make_project
    ):
        project = await make_project()
        ai = FakeAIClient('{"decision": "SET_FUTURE_REMINDER", "days_until_check": 0}')

        result = await _detector(session, settings, ai).detect(project)

        assert result.decision == Decision.NO_ACTION
        assert result.parse_failed is True
        assert project.next_check_date is None

    async def test_provider_failure_is_reported_not_raised(
        self, session: AsyncSession, settings: Settings, prompts, make_project
    ):
        project = await make_project()
        ai = FakeAIClient(AIProviderError("OpenAI API error: 429"))

        result = await _detector(session, settings, ai).detect(project)

        assert result.decision == Decision.NO_ACTION
        assert result.error == "OpenAI API error: 429"
        assert await _records(session) == []

        runs = (await session.execute(select(PromptRun))).scalars().all()
        assert [run.status for run in runs] == [PromptRunStatus.ERROR]


# =============================================================================
# TEST: KNOWLEDGE BASE
# =============================================================================


class TestKnowledgeBaseQuery:
    async def test_query_then_decide(
        self, session: AsyncSession, settings: Settings, prompts, make_project
    ):
        project = await make_project()
        kb = FakeKnowledgeBase([KnowledgeResult(content="Permits take 10 days", title="Permits")])
        ai = FakeAIClient(
            '{"decision": "QUERY_KNOWLEDGE_BASE", "query": "permit turnaround"}',
            '{"decision": "SET_FUTURE_REMINDER", "days_until_check": 10}',
        )

        result = await _detector(session, settings, ai, kb).detect(project, now=DAY_D)

        assert kb.queries == [(project.company_id, "permit turnaround")]
        assert "Permits take 10 days" in ai.prompts[1]
        assert result.decision == Decision.SET_FUTURE_REMINDER
        assert len(result.prompt_run_ids) == 2
        assert result.knowledge_results[0].title == "Permits"

        types = [record.action_type for record in await _records(session)]
        assert sorted(t.value for t in types) == ["knowledge_query", "set_future_reminder"]

    async def test_second_query_is_no_action(
        self, session: AsyncSession, settings: Settings, prompts, make_project
    ):
        project = await make_project()
        kb = FakeKnowledgeBase()
        ai = FakeAIClient(
            '{"decision": "QUERY_KNOWLEDGE_BASE", "query": "first"}',
            '{"decision": "QUERY_KNOWLEDGE_BASE", "query": "second"}',
            '{"decision": "NO_ACTION"}',
        )

        result = await _detector(session, settings, ai, kb).detect(project)

        assert result.decision == Decision.NO_ACTION
        assert len(kb.queries) == 1
        assert len(ai.prompts) == 2

    async def test_lookup_failure_continues_without_results(
        self, session: AsyncSession, settings: Settings, prompts, make_project
    ):
        project = await make_project()
        kb = FakeKnowledgeBase(fail=True)
        ai = FakeAIClient(
            '{"decision": "QUERY_KNOWLEDGE_BASE", "query": "warranty"}',
            '{"decision": "NO_ACTION"}',
        )

        result = await _detector(session, settings, ai, kb).detect(project)

        assert result.decision == Decision.NO_ACTION
        records = await _records(session)
        assert len(records) == 1
        assert records[0].action_type == ActionType.KNOWLEDGE_QUERY
        assert "error" in records[0].execution_result
