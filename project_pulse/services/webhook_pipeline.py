"""
Webhook pipeline: one CRM change event in, project state and proposals out.

    upsert project -> timeline audit records -> summary prompt
        -> action detection -> execute auto-approved action

Summary generation is required: if the AI call fails the webhook fails,
though the caller keeps the upserted project and the ERROR prompt run.
Detection is not; its failures are logged and reported in the outcome.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ActionStatus, ActionType, Project, WorkflowPromptType, utcnow
from ..schemas.webhooks import CrmWebhookEvent
from .action_detection import ActionDetectionService, DetectionResult
from .action_executor import ActionExecutor, ExecutionResult
from .action_records import ActionRecordStore
from .exceptions import PulseError
from .projects import ProjectStore
from .prompt_runs import PromptRunEngine
from .workflow_prompts import WorkflowPromptStore

logger = logging.getLogger(__name__)

WEBHOOK_INITIATOR = "crm_webhook"


@dataclass
class WebhookOutcome:
    project: Project
    is_new_project: bool
    summary: str | None = None
    summary_prompt_run_id: UUID | None = None
    timeline_action_ids: list[UUID] = field(default_factory=list)
    detection: DetectionResult | None = None
    detection_error: str | None = None
    execution: ExecutionResult | None = None


class ProjectPipeline:
    def __init__(
        self,
        session: AsyncSession,
        prompt_runs: PromptRunEngine,
        detection: ActionDetectionService,
        executor: ActionExecutor,
    ):
        self._prompt_runs = prompt_runs
        self._detection = detection
        self._executor = executor
        self._projects = ProjectStore(session)
        self._records = ActionRecordStore(session)
        self._prompts = WorkflowPromptStore(session)

    async def process_webhook(self, event: CrmWebhookEvent, now: datetime | None = None) -> WebhookOutcome:
        now = now or utcnow()
        project, created = await self._projects.upsert_from_webhook(
            event.company_id,
            event.crm_id,
            {
                "project_name": event.project_name,
                "project_address": event.project_address,
                "next_step": event.next_step,
                "project_track_id": event.project_track_id,
            },
        )
        logger.info(
            f"Processing webhook for CRM id {event.crm_id} "
            f"({'new' if created else 'existing'} project {project.id})"
        )

        outcome = WebhookOutcome(project=project, is_new_project=created)
        outcome.timeline_action_ids = await self._record_timeline(project, event.timeline)

        summary, run_id = await self._generate_summary(project, created, event, now)
        outcome.summary = summary
        outcome.summary_prompt_run_id = run_id

        try:
            outcome.detection = await self._detection.detect(
                project,
                initiated_by=WEBHOOK_INITIATOR,
                new_data=event.data,
                now=now,
            )
        except PulseError as e:
            logger.error(f"Action detection failed for project {project.id}: {e}")
            outcome.detection_error = str(e)
            return outcome

        if outcome.detection.requires_execution:
            outcome.execution = await self._executor.execute_action(outcome.detection.action_record.id)

        return outcome

    async def _record_timeline(self, project: Project, timeline: dict[str, str]) -> list[UUID]:
        ids = []
        for milestone, date in timeline.items():
            record = await self._records.create(
                project_id=project.id,
                action_type=ActionType.TIMELINE_UPDATE,
                action_payload={
                    "milestone": milestone,
                    "date": date,
                    "description": f"{milestone} set to {date}",
                },
                requires_approval=False,
                status=ActionStatus.EXECUTED,
            )
            ids.append(record.id)
        return ids

    async def _generate_summary(
        self,
        project: Project,
        created: bool,
        event: CrmWebhookEvent,
        now: datetime,
    ) -> tuple[str, UUID | None]:
        # A project whose first summary failed is generated again, not updated
        prompt_type = (
            WorkflowPromptType.SUMMARY_GENERATION
            if created or not project.summary
            else WorkflowPromptType.SUMMARY_UPDATE
        )
        prompt = await self._prompts.get_latest(prompt_type)
        track = await self._projects.get_track_context(project)

        variables: dict[str, Any] = {
            "summary": project.summary or "",
            "new_data": {**event.data, "timeline": event.timeline} if event.timeline else event.data,
            "current_date": now.date().isoformat(),
            "next_step_instructions": track.milestone_instructions or "",
            "track_name": track.track_name or "",
            "track_roles": track.roles or "",
            "track_base_prompt": track.base_prompt or "",
        }
        execution = await self._prompt_runs.run_prompt(
            prompt, variables, project_id=project.id, initiated_by=WEBHOOK_INITIATOR
        )

        summary = execution.output.strip()
        project.summary = summary
        await self._projects.update_summary(project.id, summary)
        return summary, execution.prompt_run_id
