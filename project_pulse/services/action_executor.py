"""
Action Executor: turns an executable ActionRecord into an external effect.

Executable means ``approved``, or ``pending`` when the record does not
require approval. Anything else is a no-op, which makes repeated calls on an
executed record safe. The record row is locked while executing so two
concurrent calls cannot both deliver.

Delivery goes through the integration job queue: the executor enqueues a
job, claims it and runs one attempt inline. If that attempt fails the record
is marked failed; the job itself keeps retrying on the queue's schedule, and
a later successful attempt is recorded under ``late_delivery``.
"""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from ..models import (
    ActionRecord,
    ActionStatus,
    ActionType,
    OperationType,
    Project,
    ResourceType,
    utcnow,
)
from .action_records import ActionRecordStore
from .integration_queue import IntegrationJobQueue
from .integrations import Recipient
from .job_processor import JobProcessor

logger = logging.getLogger(__name__)

CONTENT_KEYS = ("message_content", "message_text", "message", "content")
VALID_CHANNELS = ("sms", "email", "call")


@dataclass
class ExecutionResult:
    action_record_id: UUID
    executed: bool
    status: ActionStatus
    skipped: bool = False
    message: str | None = None
    execution_result: dict[str, Any] | None = None


# =============================================================================
# PAYLOAD HELPERS
# =============================================================================


def resolve_recipient(payload: dict[str, Any]) -> Recipient:
    recipient = payload.get("recipient")
    nested = recipient if isinstance(recipient, dict) else {}
    return Recipient(
        id=payload.get("recipient_id") or nested.get("id"),
        name=payload.get("recipient_name")
        or (recipient if isinstance(recipient, str) else None)
        or nested.get("name"),
        phone=payload.get("recipient_phone") or payload.get("phone") or nested.get("phone"),
        email=payload.get("recipient_email") or payload.get("email") or nested.get("email"),
    )


def resolve_channel(payload: dict[str, Any], recipient: Recipient) -> str:
    """Explicit channel wins; otherwise email if only an email is known, else sms."""
    channel = payload.get("channel")
    if isinstance(channel, str) and channel.lower() in VALID_CHANNELS:
        return channel.lower()
    if recipient.email and not recipient.phone:
        return "email"
    return "sms"


def resolve_message_content(payload: dict[str, Any]) -> str | None:
    for key in CONTENT_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


# =============================================================================
# EXECUTOR
# =============================================================================


class ActionExecutor:
    def __init__(
        self,
        records: ActionRecordStore,
        queue: IntegrationJobQueue,
        processor: JobProcessor,
    ):
        self._records = records
        self._queue = queue
        self._processor = processor

    async def execute_action(self, action_record_id: UUID) -> ExecutionResult:
        record = await self._records.get(action_record_id, for_update=True)

        if not self._is_executable(record):
            logger.info(
                f"Action {record.id} not executable (status={record.status.value}, "
                f"requires_approval={record.requires_approval}), skipping"
            )
            return ExecutionResult(
                action_record_id=record.id,
                executed=False,
                skipped=True,
                status=record.status,
                message=f"Action is {record.status.value}",
                execution_result=record.execution_result,
            )

        if record.action_type == ActionType.MESSAGE:
            return await self._execute_message(record)
        if record.action_type == ActionType.DATA_UPDATE:
            return await self._execute_data_update(record)

        return ExecutionResult(
            action_record_id=record.id,
            executed=False,
            skipped=True,
            status=record.status,
            message=f"No automated execution for {record.action_type.value} actions",
        )

    @staticmethod
    def _is_executable(record: ActionRecord) -> bool:
        if record.status == ActionStatus.APPROVED:
            return True
        return record.status == ActionStatus.PENDING and not record.requires_approval

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _execute_message(self, record: ActionRecord) -> ExecutionResult:
        payload = record.action_payload or {}
        content = resolve_message_content(payload)
        if content is None:
            return await self._fail(record, {"error": "No message content found"})

        recipient = resolve_recipient(payload)
        channel = resolve_channel(payload, recipient)
        project = await self._project(record)

        return await self._deliver(
            record,
            resource_type=ResourceType.COMMUNICATION,
            job_payload={
                "message_content": content,
                "recipient": recipient.to_dict(),
                "channel": channel,
            },
            company_id=project.company_id,
            success_result={"status": "message_sent", "channel": channel},
        )

    async def _execute_data_update(self, record: ActionRecord) -> ExecutionResult:
        payload = record.action_payload or {}
        if not payload.get("field"):
            return await self._fail(record, {"error": "No field to update"})

        project = await self._project(record)
        return await self._deliver(
            record,
            resource_type=ResourceType.PROJECT,
            job_payload={
                "crm_id": project.crm_id,
                "field": payload["field"],
                "value": payload.get("value"),
            },
            company_id=project.company_id,
            success_result={"status": "data_updated", "field": payload["field"]},
        )

    async def _deliver(
        self,
        record: ActionRecord,
        resource_type: ResourceType,
        job_payload: dict[str, Any],
        company_id: UUID,
        success_result: dict[str, Any],
    ) -> ExecutionResult:
        job_id = await self._queue.enqueue(
            company_id=company_id,
            operation_type=OperationType.WRITE,
            resource_type=resource_type,
            payload=job_payload,
            project_id=record.project_id,
            action_record_id=record.id,
        )
        job = await self._queue.claim(job_id)
        if job is None:
            # Another worker already picked the job up; it will settle it
            return await self._fail(record, {"error": "Delivery job claimed elsewhere", "job_id": str(job_id)})

        outcome = await self._processor.process(job)
        timestamp = utcnow().isoformat()

        if not outcome.succeeded:
            return await self._fail(
                record,
                {
                    "error": outcome.error,
                    "job_id": str(job_id),
                    "job_status": outcome.status.value,
                    "timestamp": timestamp,
                },
            )

        execution_result = {
            **success_result,
            "job_id": str(job_id),
            "timestamp": timestamp,
            "details": (outcome.result or {}).get("details", outcome.result),
        }
        await self._records.mark_executed(record, execution_result)
        logger.info(f"Executed {record.action_type.value} action {record.id}")
        return ExecutionResult(
            action_record_id=record.id,
            executed=True,
            status=ActionStatus.EXECUTED,
            execution_result=execution_result,
        )

    async def _fail(self, record: ActionRecord, execution_result: dict[str, Any]) -> ExecutionResult:
        await self._records.mark_failed(record, execution_result)
        return ExecutionResult(
            action_record_id=record.id,
            executed=False,
            status=ActionStatus.FAILED,
            message=execution_result.get("error"),
            execution_result=execution_result,
        )

    async def _project(self, record: ActionRecord) -> Project:
        return await self._records.get_project(record)
