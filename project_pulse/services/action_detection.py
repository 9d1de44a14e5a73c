"""
Action Detection Service: from project context to a gated unit of work.

The ``action_detection_execution`` prompt is rendered with the project's
summary, next step and track context, run through the Prompt Run Engine,
and its JSON answer is parsed into one of five decisions:

    NO_ACTION             nothing happens
    ACTION_NEEDED         pending ActionRecord (approval unless auto-approved)
    SET_FUTURE_REMINDER   next_check_date moved + executed audit record
    REQUEST_HUMAN_REVIEW  pending human_in_loop record, never auto-executed
    QUERY_KNOWLEDGE_BASE  lookup, then one more detection round

Output that does not parse as a decision is treated as NO_ACTION; the raw
text stays on the PromptRun.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings
from ..models import (
    ActionRecord,
    ActionStatus,
    ActionType,
    Project,
    WorkflowPromptType,
    utcnow,
)
from ..schemas.decisions import (
    ActionNeededDecision,
    AIDecision,
    Decision,
    NoActionDecision,
    QueryKnowledgeBaseDecision,
    RequestHumanReviewDecision,
    SetFutureReminderDecision,
    parse_ai_decision,
)
from .action_records import ActionRecordStore
from .exceptions import AIProviderError, KnowledgeBaseError
from .knowledge_base import KnowledgeBaseClient, KnowledgeResult
from .projects import ProjectStore
from .prompt_runs import PromptExecution, PromptRunEngine
from .reminders import ReminderScheduler
from .workflow_prompts import WorkflowPromptStore

logger = logging.getLogger(__name__)

# A detection call may consult the knowledge base at most this many times
MAX_KNOWLEDGE_REQUERIES = 1


@dataclass
class DetectionResult:
    """Outcome of one detect() call."""
    decision: Decision
    prompt_run_id: UUID | None = None
    raw_output: str | None = None
    action_record: ActionRecord | None = None
    next_check_date: datetime | None = None
    prompt_run_ids: list[UUID] = field(default_factory=list)
    knowledge_results: list[KnowledgeResult] = field(default_factory=list)
    parse_failed: bool = False
    error: str | None = None

    @property
    def requires_execution(self) -> bool:
        """True when the created record can be executed without a human."""
        record = self.action_record
        return (
            record is not None
            and record.status == ActionStatus.PENDING
            and not record.requires_approval
        )


class ActionDetectionService:
    def __init__(
        self,
        session: AsyncSession,
        prompt_runs: PromptRunEngine,
        settings: Settings,
        knowledge_base: KnowledgeBaseClient | None = None,
    ):
        self._prompt_runs = prompt_runs
        self._settings = settings
        self._knowledge_base = knowledge_base
        self._prompts = WorkflowPromptStore(session)
        self._projects = ProjectStore(session)
        self._records = ActionRecordStore(session)
        self._reminders = ReminderScheduler(session)

    async def build_context(
        self,
        project: Project,
        is_reminder_check: bool = False,
        new_data: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Variables available to the detection prompt."""
        now = now or utcnow()
        track = await self._projects.get_track_context(project)

        days_since_last_check = None
        if project.last_action_check:
            last = project.last_action_check
            if last.tzinfo is None:
                last = last.replace(tzinfo=now.tzinfo)
            days_since_last_check = (now - last).days

        return {
            "summary": project.summary or "",
            "next_step": project.next_step or "",
            "track_name": track.track_name or "Default",
            "track_roles": track.roles or "",
            "track_base_prompt": track.base_prompt or "",
            "milestone_instructions": track.milestone_instructions or "",
            "current_date": now.date().isoformat(),
            "is_reminder_check": is_reminder_check,
            "next_check_date": project.next_check_date.isoformat() if project.next_check_date else "",
            "days_since_last_check": days_since_last_check if days_since_last_check is not None else "",
            "new_data": new_data or {},
            "knowledge_results": [],
        }

    async def detect(
        self,
        project: Project,
        is_reminder_check: bool = False,
        initiated_by: str | None = None,
        new_data: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> DetectionResult:
        """
        Run detection for a project and apply the decision.

        Raises:
            PromptNotConfiguredError: no detection prompt exists.
        """
        now = now or utcnow()
        prompt = await self._prompts.get_latest(WorkflowPromptType.ACTION_DETECTION_EXECUTION)
        context = await self.build_context(project, is_reminder_check, new_data, now)

        run_ids: list[UUID] = []
        knowledge: list[KnowledgeResult] = []
        requeries = 0

        while True:
            try:
                execution = await self._prompt_runs.run_prompt(
                    prompt, context, project_id=project.id, initiated_by=initiated_by
                )
            except AIProviderError as e:
                logger.error(f"Action detection AI call failed for project {project.id}: {e}")
                return DetectionResult(
                    decision=Decision.NO_ACTION,
                    prompt_run_ids=run_ids,
                    knowledge_results=knowledge,
                    error=str(e),
                )

            if execution.prompt_run_id:
                run_ids.append(execution.prompt_run_id)

            decision = parse_ai_decision(execution.output)
            if decision is None:
                logger.warning(
                    f"Unparseable detection output for project {project.id} "
                    f"(prompt run {execution.prompt_run_id}), treating as NO_ACTION"
                )
                return DetectionResult(
                    decision=Decision.NO_ACTION,
                    prompt_run_id=execution.prompt_run_id,
                    raw_output=execution.output,
                    prompt_run_ids=run_ids,
                    knowledge_results=knowledge,
                    parse_failed=True,
                )

            if not isinstance(decision, QueryKnowledgeBaseDecision):
                result = await self._apply(project, decision, execution, now)
                result.prompt_run_ids = run_ids
                result.knowledge_results = knowledge
                return result

            if requeries >= MAX_KNOWLEDGE_REQUERIES:
                logger.warning(
                    f"Knowledge base re-query limit reached for project {project.id}, "
                    f"treating as NO_ACTION"
                )
                return DetectionResult(
                    decision=Decision.NO_ACTION,
                    prompt_run_id=execution.prompt_run_id,
                    raw_output=execution.output,
                    prompt_run_ids=run_ids,
                    knowledge_results=knowledge,
                )

            requeries += 1
            knowledge = await self._query_knowledge_base(project, decision, execution)
            context = {
                **context,
                "knowledge_query": decision.search_text,
                "knowledge_results": [r.to_dict() for r in knowledge],
            }

    # -------------------------------------------------------------------------
    # Decision handlers
    # -------------------------------------------------------------------------

    async def _apply(
        self,
        project: Project,
        decision: AIDecision,
        execution: PromptExecution,
        now: datetime,
    ) -> DetectionResult:
        if isinstance(decision, NoActionDecision):
            logger.info(f"No action needed for project {project.id}")
            return DetectionResult(
                decision=Decision.NO_ACTION,
                prompt_run_id=execution.prompt_run_id,
                raw_output=execution.output,
            )

        if isinstance(decision, ActionNeededDecision):
            record = await self._create_action(project, decision, execution.prompt_run_id)
            return DetectionResult(
                decision=Decision.ACTION_NEEDED,
                prompt_run_id=execution.prompt_run_id,
                raw_output=execution.output,
                action_record=record,
            )

        if isinstance(decision, SetFutureReminderDecision):
            next_check, record = await self._set_reminder(project, decision, execution.prompt_run_id, now)
            return DetectionResult(
                decision=Decision.SET_FUTURE_REMINDER,
                prompt_run_id=execution.prompt_run_id,
                raw_output=execution.output,
                action_record=record,
                next_check_date=next_check,
            )

        if isinstance(decision, RequestHumanReviewDecision):
            record = await self._records.create(
                project_id=project.id,
                prompt_run_id=execution.prompt_run_id,
                action_type=ActionType.HUMAN_IN_LOOP,
                action_payload={
                    "human_review": True,
                    "reason": decision.review_reason or decision.reason,
                    "description": decision.reason or "Human review requested",
                    "priority": decision.priority or "medium",
                },
                requires_approval=True,
            )
            return DetectionResult(
                decision=Decision.REQUEST_HUMAN_REVIEW,
                prompt_run_id=execution.prompt_run_id,
                raw_output=execution.output,
                action_record=record,
            )

        raise TypeError(f"Unhandled decision type: {type(decision).__name__}")

    async def _create_action(
        self,
        project: Project,
        decision: ActionNeededDecision,
        prompt_run_id: UUID | None,
    ) -> ActionRecord:
        payload = dict(decision.action_payload)
        if decision.reason:
            payload.setdefault("reason", decision.reason)
        if decision.priority:
            payload.setdefault("priority", decision.priority)

        auto_approved = decision.action_type.value in self._settings.auto_approve_action_types
        return await self._records.create(
            project_id=project.id,
            prompt_run_id=prompt_run_id,
            action_type=decision.action_type,
            action_payload=payload,
            requires_approval=not auto_approved,
        )

    async def _set_reminder(
        self,
        project: Project,
        decision: SetFutureReminderDecision,
        prompt_run_id: UUID | None,
        now: datetime,
    ) -> tuple[datetime, ActionRecord]:
        next_check = await self._reminders.schedule_in_days(
            project.id, decision.days_until_check, now=now
        )
        scheduled = next_check.isoformat()
        record = await self._records.create(
            project_id=project.id,
            prompt_run_id=prompt_run_id,
            action_type=ActionType.SET_FUTURE_REMINDER,
            action_payload={
                "days_until_check": decision.days_until_check,
                "check_reason": decision.check_reason,
                "scheduled_date": scheduled,
                "description": f"Reminder set for {scheduled}: {decision.check_reason}",
            },
            requires_approval=False,
            status=ActionStatus.EXECUTED,
            execution_result={"status": "reminder_set", "next_check_date": scheduled},
        )
        return next_check, record

    async def _query_knowledge_base(
        self,
        project: Project,
        decision: QueryKnowledgeBaseDecision,
        execution: PromptExecution,
    ) -> list[KnowledgeResult]:
        query = decision.search_text
        results: list[KnowledgeResult] = []
        error = None

        if self._knowledge_base is None:
            error = "Knowledge base not configured"
            logger.warning(f"{error}, continuing detection without results")
        else:
            try:
                results = await self._knowledge_base.lookup(project.company_id, query)
            except KnowledgeBaseError as e:
                error = str(e)
                logger.error(f"Knowledge base lookup failed for project {project.id}: {e}")

        execution_result: dict[str, Any] = {"results": [r.to_dict() for r in results]}
        if error:
            execution_result["error"] = error

        await self._records.create(
            project_id=project.id,
            prompt_run_id=execution.prompt_run_id,
            action_type=ActionType.KNOWLEDGE_QUERY,
            action_payload={"query": query, "reason": decision.reason, "result_count": len(results)},
            requires_approval=False,
            status=ActionStatus.EXECUTED,
            execution_result=execution_result,
        )
        return results
