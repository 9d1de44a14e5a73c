"""
Prompt Run Engine: logging and finalizing AI invocations.

Every AI call is bracketed by a PromptRun record:
1. log_prompt_run() inserts the run as PENDING before the call
2. update_prompt_run_with_result() moves it to COMPLETED or ERROR once

Tracking is best-effort: if the PENDING insert fails, the AI call still
happens and the caller simply has no run id. Terminal runs are never
touched again; a re-run creates a new record.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import PromptRun, PromptRunStatus, WorkflowPrompt, utcnow
from .ai_client import AIClient
from .exceptions import AIProviderError, PromptRunNotFoundError
from .workflow_prompts import render_prompt

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class PromptExecution:
    """Outcome of one successful prompt round-trip."""
    prompt_run_id: UUID | None
    prompt_input: str
    output: str
    ai_provider: str
    ai_model: str


# =============================================================================
# ENGINE
# =============================================================================


class PromptRunEngine:
    """Logs, executes and finalizes AI prompt runs."""

    def __init__(self, session: AsyncSession, ai_client: AIClient):
        self._session = session
        self._ai = ai_client

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def log_prompt_run(
        self,
        prompt_input: str,
        ai_provider: str,
        ai_model: str,
        project_id: UUID | None = None,
        workflow_prompt_id: UUID | None = None,
        initiated_by: str | None = None,
    ) -> UUID | None:
        """
        Create a PENDING prompt run and return its id.

        Returns None if the insert fails. The failure is confined to a
        savepoint so the surrounding transaction stays usable.
        """
        run = PromptRun(
            project_id=project_id,
            workflow_prompt_id=workflow_prompt_id,
            prompt_input=prompt_input,
            status=PromptRunStatus.PENDING,
            ai_provider=ai_provider,
            ai_model=ai_model,
            initiated_by=initiated_by,
            created_at=utcnow(),
        )
        try:
            async with self._session.begin_nested():
                self._session.add(run)
                await self._session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to log prompt run (continuing untracked): {e}")
            return None

        logger.debug(f"Logged prompt run {run.id} for project {project_id}")
        return run.id

    async def update_prompt_run_with_result(
        self,
        prompt_run_id: UUID,
        result: str,
        is_error: bool = False,
    ) -> bool:
        """
        Move a PENDING run to COMPLETED (output) or ERROR (error message).

        Returns False, and logs, if the run is missing or already terminal.
        """
        values: dict[str, Any] = {"completed_at": utcnow()}
        if is_error:
            values.update(status=PromptRunStatus.ERROR, error_message=result, prompt_output=None)
        else:
            values.update(status=PromptRunStatus.COMPLETED, prompt_output=result, error_message=None)

        outcome = await self._session.execute(
            update(PromptRun)
            .where(
                PromptRun.id == prompt_run_id,
                PromptRun.status == PromptRunStatus.PENDING,
            )
            .values(**values)
        )

        if outcome.rowcount == 1:
            return True

        existing = await self._session.get(PromptRun, prompt_run_id)
        if existing is None:
            logger.warning(f"Cannot finalize prompt run {prompt_run_id}: not found")
        else:
            logger.warning(
                f"Ignoring update to prompt run {prompt_run_id}: "
                f"already {existing.status.value}"
            )
        return False

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute(
        self,
        prompt_input: str,
        project_id: UUID | None = None,
        workflow_prompt_id: UUID | None = None,
        initiated_by: str | None = None,
    ) -> PromptExecution:
        """
        Log, call the AI provider and record the result.

        Raises:
            AIProviderError: after recording the run as ERROR. Any other
                exception from the client is wrapped in one.
        """
        provider, model = self._ai.provider, self._ai.model
        prompt_run_id = await self.log_prompt_run(
            prompt_input=prompt_input,
            ai_provider=provider,
            ai_model=model,
            project_id=project_id,
            workflow_prompt_id=workflow_prompt_id,
            initiated_by=initiated_by,
        )

        try:
            output = await self._ai.complete(prompt_input, provider=provider, model=model)
        except AIProviderError as e:
            if prompt_run_id:
                await self.update_prompt_run_with_result(prompt_run_id, str(e), is_error=True)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error from AI provider {provider}")
            error = f"Unexpected AI provider error: {e}"
            if prompt_run_id:
                await self.update_prompt_run_with_result(prompt_run_id, error, is_error=True)
            raise AIProviderError(error) from e

        if prompt_run_id:
            await self.update_prompt_run_with_result(prompt_run_id, output)

        return PromptExecution(
            prompt_run_id=prompt_run_id,
            prompt_input=prompt_input,
            output=output,
            ai_provider=provider,
            ai_model=model,
        )

    async def run_prompt(
        self,
        workflow_prompt: WorkflowPrompt,
        variables: Mapping[str, Any],
        project_id: UUID | None = None,
        initiated_by: str | None = None,
    ) -> PromptExecution:
        """Render a workflow prompt and execute it."""
        prompt_input = render_prompt(workflow_prompt.prompt_text, variables)
        return await self.execute(
            prompt_input,
            project_id=project_id,
            workflow_prompt_id=workflow_prompt.id,
            initiated_by=initiated_by,
        )

    async def rerun(self, prompt_run_id: UUID, initiated_by: str | None = None) -> PromptExecution:
        """Execute a previous run's input again as a brand new run."""
        original = await self.get(prompt_run_id)
        logger.info(f"Re-running prompt run {prompt_run_id}")
        return await self.execute(
            original.prompt_input,
            project_id=original.project_id,
            workflow_prompt_id=original.workflow_prompt_id,
            initiated_by=initiated_by or f"rerun:{prompt_run_id}",
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get(self, prompt_run_id: UUID) -> PromptRun:
        run = await self._session.get(PromptRun, prompt_run_id)
        if run is None:
            raise PromptRunNotFoundError(f"Prompt run {prompt_run_id} not found")
        return run

    async def list_runs(
        self,
        project_id: UUID | None = None,
        status: PromptRunStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[PromptRun], int]:
        """List runs newest first, with the unpaginated total."""
        query = select(PromptRun)
        count_query = select(func.count()).select_from(PromptRun)
        if project_id:
            query = query.where(PromptRun.project_id == project_id)
            count_query = count_query.where(PromptRun.project_id == project_id)
        if status:
            query = query.where(PromptRun.status == status)
            count_query = count_query.where(PromptRun.status == status)

        total = (await self._session.execute(count_query)).scalar_one()
        result = await self._session.execute(
            query.order_by(PromptRun.created_at.desc()).limit(limit).offset(offset)
        )
        return result.scalars().all(), total
