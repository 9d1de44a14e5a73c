"""
Integration job dispatch and settlement.

IntegrationDispatcher routes a claimed job to its resource handler;
JobProcessor runs the handler under a timeout and records the outcome on
the queue. A timeout counts as an ordinary failure and is retried with the
queue's backoff. When a job linked to a failed action record completes on a
later attempt, the delivery is noted on the record.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from ..models import IntegrationJob, JobStatus, OperationType, ResourceType
from .action_records import ActionRecordStore
from .exceptions import (
    InvalidTransitionError,
    PermanentIntegrationError,
    TransientIntegrationError,
)
from .integration_queue import IntegrationJobQueue
from .integrations import CommunicationClient, CrmClient, Recipient

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """What happened to one attempt of a job."""
    job_id: UUID
    status: JobStatus
    result: dict[str, Any] | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED


class IntegrationDispatcher:
    """Routes jobs: communications to the messaging service, the rest to the CRM."""

    def __init__(self, communications: CommunicationClient, crm: CrmClient):
        self._communications = communications
        self._crm = crm

    async def dispatch(self, job: IntegrationJob) -> dict[str, Any]:
        if job.resource_type == ResourceType.COMMUNICATION:
            return await self._send_communication(job)
        if job.operation_type == OperationType.READ:
            return await self._crm.fetch(job)
        return await self._crm.push(job)

    async def _send_communication(self, job: IntegrationJob) -> dict[str, Any]:
        if job.operation_type != OperationType.WRITE:
            raise PermanentIntegrationError(
                f"Unsupported communication operation: {job.operation_type.value}"
            )

        payload = job.payload or {}
        content = payload.get("message_content")
        if not content:
            raise PermanentIntegrationError("Communication job has no message content")

        channel = payload.get("channel", "sms")
        result = await self._communications.send(
            action_id=job.action_record_id,
            message_content=content,
            recipient=Recipient.from_dict(payload.get("recipient") or {}),
            channel=channel,
            project_id=job.project_id,
        )
        if not result.success:
            raise TransientIntegrationError(result.error or "Delivery failed")

        return {"channel": channel, "details": result.details}


class JobProcessor:
    """Executes claimed jobs and settles them on the queue."""

    def __init__(
        self,
        queue: IntegrationJobQueue,
        dispatcher: IntegrationDispatcher,
        timeout_seconds: float = 30.0,
        records: ActionRecordStore | None = None,
    ):
        self._queue = queue
        self._dispatcher = dispatcher
        self._timeout = timeout_seconds
        self._records = records

    async def process(self, job: IntegrationJob) -> JobOutcome:
        """Run one attempt of a claimed job and record the result."""
        job_id, action_record_id = job.id, job.action_record_id
        try:
            result = await asyncio.wait_for(self._dispatcher.dispatch(job), timeout=self._timeout)
        except asyncio.TimeoutError:
            return await self._fail(job_id, f"Timed out after {self._timeout}s", retry=True)
        except PermanentIntegrationError as e:
            return await self._fail(job_id, str(e), retry=False)
        except TransientIntegrationError as e:
            return await self._fail(job_id, str(e), retry=True)
        except Exception as e:
            # Unknown handler errors are retried so the job never stays in_progress
            logger.exception(f"Unexpected error processing integration job {job_id}")
            return await self._fail(job_id, f"Unexpected error: {e}", retry=True)

        await self._queue.mark_result(job_id, JobStatus.COMPLETED, result=result)
        if action_record_id and self._records is not None:
            await self._records.record_late_delivery(action_record_id, job_id, result)
        return JobOutcome(job_id=job_id, status=JobStatus.COMPLETED, result=result)

    async def run_once(self, limit: int = 10) -> list[JobOutcome]:
        """Claim a batch and process it in this session."""
        outcomes = []
        for job in await self._queue.claim_ready(limit=limit):
            try:
                outcomes.append(await self.process(job))
            except InvalidTransitionError as e:
                logger.warning(f"Skipping job {job.id}: {e}")
        return outcomes

    async def _fail(self, job_id: UUID, error: str, retry: bool) -> JobOutcome:
        job = await self._queue.mark_result(
            job_id,
            JobStatus.RETRY if retry else JobStatus.FAILED,
            error=error,
            increment_retry=retry,
        )
        return JobOutcome(job_id=job_id, status=job.status, error=error)
