"""
Action Record Store: proposed and executed units of work.

State machine:
    pending -> approved -> executed
    pending -> rejected
    pending -> executed            (requires_approval = false)
    any     -> failed              (execution error)

Records are never deleted; they are the audit trail of what the pipeline
proposed and did.
"""

import logging
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ActionRecord, ActionStatus, ActionType, Project, utcnow
from .exceptions import (
    ActionRecordNotFoundError,
    InvalidTransitionError,
    ProjectNotFoundError,
)

logger = logging.getLogger(__name__)


class ActionRecordStore:
    """Persistence and approval transitions for action records."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self,
        project_id: UUID,
        action_type: ActionType,
        action_payload: dict[str, Any],
        prompt_run_id: UUID | None = None,
        requires_approval: bool = True,
        status: ActionStatus = ActionStatus.PENDING,
        execution_result: dict[str, Any] | None = None,
    ) -> ActionRecord:
        record = ActionRecord(
            project_id=project_id,
            prompt_run_id=prompt_run_id,
            action_type=action_type,
            action_payload=action_payload,
            requires_approval=requires_approval,
            status=status,
            execution_result=execution_result,
            executed_at=utcnow() if status == ActionStatus.EXECUTED else None,
        )
        self._session.add(record)
        await self._session.flush()

        logger.info(
            f"Created {action_type.value} action {record.id} for project {project_id} "
            f"(status={status.value}, requires_approval={requires_approval})"
        )
        return record

    async def get(self, action_record_id: UUID, for_update: bool = False) -> ActionRecord:
        query = select(ActionRecord).where(ActionRecord.id == action_record_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(query)
        record = result.scalar_one_or_none()
        if record is None:
            raise ActionRecordNotFoundError(f"Action record {action_record_id} not found")
        return record

    async def get_project(self, record: ActionRecord) -> Project:
        project = await self._session.get(Project, record.project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {record.project_id} not found")
        return project

    async def list_records(
        self,
        project_id: UUID | None = None,
        status: ActionStatus | None = None,
        action_type: ActionType | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[ActionRecord], int]:
        filters = []
        if project_id:
            filters.append(ActionRecord.project_id == project_id)
        if status:
            filters.append(ActionRecord.status == status)
        if action_type:
            filters.append(ActionRecord.action_type == action_type)

        total = (
            await self._session.execute(
                select(func.count()).select_from(ActionRecord).where(*filters)
            )
        ).scalar_one()
        result = await self._session.execute(
            select(ActionRecord)
            .where(*filters)
            .order_by(ActionRecord.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total

    async def count_pending(self, company_id: UUID | None = None) -> int:
        """Pending records awaiting a human decision."""
        query = (
            select(func.count())
            .select_from(ActionRecord)
            .where(
                ActionRecord.status == ActionStatus.PENDING,
                ActionRecord.requires_approval.is_(True),
            )
        )
        if company_id:
            query = query.join(Project, Project.id == ActionRecord.project_id).where(
                Project.company_id == company_id
            )
        return (await self._session.execute(query)).scalar_one()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def approve(self, action_record_id: UUID) -> ActionRecord:
        return await self._transition_from_pending(action_record_id, ActionStatus.APPROVED)

    async def reject(self, action_record_id: UUID) -> ActionRecord:
        return await self._transition_from_pending(action_record_id, ActionStatus.REJECTED)

    async def mark_executed(
        self,
        record: ActionRecord,
        execution_result: dict[str, Any],
        executed_at: datetime | None = None,
    ) -> ActionRecord:
        record.status = ActionStatus.EXECUTED
        record.executed_at = executed_at or utcnow()
        record.execution_result = execution_result
        await self._session.flush()
        return record

    async def mark_failed(
        self,
        record: ActionRecord,
        execution_result: dict[str, Any],
    ) -> ActionRecord:
        record.status = ActionStatus.FAILED
        record.execution_result = execution_result
        await self._session.flush()
        logger.warning(f"Action {record.id} failed: {execution_result.get('error')}")
        return record

    async def record_late_delivery(
        self,
        action_record_id: UUID,
        job_id: UUID,
        job_result: dict[str, Any] | None,
        delivered_at: datetime | None = None,
    ) -> ActionRecord | None:
        """
        Note on a failed record that its queued job later succeeded.

        The status stays ``failed``; the delivery is added to
        ``execution_result`` under ``late_delivery``. Records in any other
        state are left alone and None is returned.
        """
        record = await self.get(action_record_id, for_update=True)
        if record.status != ActionStatus.FAILED:
            return None

        record.execution_result = {
            **(record.execution_result or {}),
            "late_delivery": {
                "job_id": str(job_id),
                "delivered_at": (delivered_at or utcnow()).isoformat(),
                "details": (job_result or {}).get("details", job_result),
            },
        }
        await self._session.flush()
        logger.info(f"Action {action_record_id} was delivered by retry job {job_id}")
        return record

    async def _transition_from_pending(
        self,
        action_record_id: UUID,
        target: ActionStatus,
    ) -> ActionRecord:
        record = await self.get(action_record_id, for_update=True)
        if record.status != ActionStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot move action {action_record_id} from {record.status.value} to {target.value}"
            )
        record.status = target
        await self._session.flush()
        logger.info(f"Action {action_record_id} {target.value}")
        return record
