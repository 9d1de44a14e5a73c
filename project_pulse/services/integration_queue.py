"""
Integration Job Queue: durable, retryable delivery to external systems.

The queue only stores and transitions jobs; workers do the work:

    claim_ready()   -> pending/retry jobs whose next_retry_at has passed,
                       oldest first, atomically flipped to in_progress
    mark_result()   -> completed | retry (with backoff) | failed
    requeue_stale() -> in_progress jobs past their lease, settled as a
                       failed attempt

Backoff is a pure function of retry_count (compute_backoff) and is the only
retry schedule in the system.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import IntegrationJob, JobStatus, OperationType, ResourceType, utcnow
from .exceptions import IntegrationJobNotFoundError, InvalidTransitionError

logger = logging.getLogger(__name__)


# =============================================================================
# BACKOFF
# =============================================================================


MAX_BACKOFF_MINUTES = 480  # 8 hours

CLAIMABLE_STATUSES = (JobStatus.PENDING, JobStatus.RETRY)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


def compute_backoff(retry_count: int) -> timedelta:
    """Delay before the next attempt after ``retry_count`` failures."""
    if retry_count < 1:
        raise ValueError("retry_count must be at least 1")
    return timedelta(minutes=min(2 ** (retry_count - 1), MAX_BACKOFF_MINUTES))


# =============================================================================
# QUEUE
# =============================================================================


class IntegrationJobQueue:
    """Enqueue, claim and settle integration jobs."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def enqueue(
        self,
        company_id: UUID,
        operation_type: OperationType,
        resource_type: ResourceType,
        payload: dict[str, Any],
        project_id: UUID | None = None,
        action_record_id: UUID | None = None,
        scheduled_time: datetime | None = None,
    ) -> UUID:
        """Add a pending job; it is eligible at ``scheduled_time`` or immediately."""
        job = IntegrationJob(
            company_id=company_id,
            project_id=project_id,
            action_record_id=action_record_id,
            operation_type=OperationType(operation_type),
            resource_type=ResourceType(resource_type),
            payload=payload,
            status=JobStatus.PENDING,
            retry_count=0,
            next_retry_at=scheduled_time,
            created_at=utcnow(),
        )
        self._session.add(job)
        await self._session.flush()

        logger.info(
            f"Enqueued {job.operation_type.value}/{job.resource_type.value} job {job.id}"
            + (f" scheduled for {scheduled_time.isoformat()}" if scheduled_time else "")
        )
        return job.id

    async def claim_ready(
        self,
        limit: int = 10,
        statuses: Sequence[JobStatus] = CLAIMABLE_STATUSES,
        now: datetime | None = None,
    ) -> list[IntegrationJob]:
        """
        Claim up to ``limit`` eligible jobs for this worker.

        Candidates are row-locked with SKIP LOCKED so concurrent workers see
        disjoint sets, and each claim is a conditional status update, so a
        job is only returned to the worker whose update actually hit.
        """
        now = now or utcnow()
        result = await self._session.execute(
            select(IntegrationJob.id)
            .where(
                IntegrationJob.status.in_(statuses),
                or_(
                    IntegrationJob.next_retry_at.is_(None),
                    IntegrationJob.next_retry_at <= now,
                ),
            )
            .order_by(IntegrationJob.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        candidate_ids = list(result.scalars().all())

        claimed_ids = [
            job_id for job_id in candidate_ids
            if await self._try_claim(job_id, statuses, now)
        ]
        if not claimed_ids:
            return []

        jobs = await self._session.execute(
            select(IntegrationJob)
            .where(IntegrationJob.id.in_(claimed_ids))
            .order_by(IntegrationJob.created_at.asc())
            .execution_options(populate_existing=True)
        )
        claimed = list(jobs.scalars().all())
        logger.info(f"Claimed {len(claimed)} integration job(s)")
        return claimed

    async def claim(
        self,
        job_id: UUID,
        statuses: Sequence[JobStatus] = CLAIMABLE_STATUSES,
    ) -> IntegrationJob | None:
        """Claim one specific job, or return None if someone else holds it."""
        if not await self._try_claim(job_id, statuses):
            return None
        return await self.get(job_id, refresh=True)

    async def requeue_stale(
        self,
        lease: timedelta,
        limit: int = 100,
        now: datetime | None = None,
    ) -> list[UUID]:
        """
        Fail in_progress jobs whose lease has expired back into the retry path.

        A worker that dies between claiming and settling leaves its jobs
        in_progress; once ``lease`` has passed since the claim they are
        settled as an ordinary failed attempt, with the usual backoff.
        """
        now = now or utcnow()
        cutoff = now - lease
        result = await self._session.execute(
            select(IntegrationJob.id)
            .where(
                IntegrationJob.status == JobStatus.IN_PROGRESS,
                or_(
                    IntegrationJob.claimed_at.is_(None),
                    IntegrationJob.claimed_at <= cutoff,
                ),
            )
            .order_by(IntegrationJob.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        stale_ids = list(result.scalars().all())

        for job_id in stale_ids:
            await self.mark_result(
                job_id,
                JobStatus.RETRY,
                error=f"Worker lease expired after {int(lease.total_seconds())}s",
                increment_retry=True,
                now=now,
            )
        if stale_ids:
            logger.warning(f"Requeued {len(stale_ids)} integration job(s) with expired leases")
        return stale_ids

    async def mark_result(
        self,
        job_id: UUID,
        status: JobStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        increment_retry: bool = False,
        now: datetime | None = None,
    ) -> IntegrationJob:
        """
        Settle an attempt.

        - COMPLETED: stamps processed_at and stores the result
        - failure with increment_retry (or status RETRY): retry_count += 1,
          status RETRY, next_retry_at = now + compute_backoff(retry_count)
        - any other failure: FAILED (terminal), stamps processed_at
        """
        job = await self.get(job_id, for_update=True)
        if job.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Integration job {job_id} is already {job.status.value}"
            )

        now = now or utcnow()

        if status == JobStatus.COMPLETED:
            job.status = JobStatus.COMPLETED
            job.processed_at = now
            job.result = result
            job.error_message = None
            logger.info(f"Integration job {job_id} completed")

        elif increment_retry or status == JobStatus.RETRY:
            job.retry_count = job.retry_count + 1
            job.status = JobStatus.RETRY
            job.next_retry_at = now + compute_backoff(job.retry_count)
            job.error_message = error
            job.result = result
            logger.warning(
                f"Integration job {job_id} failed (attempt {job.retry_count}), "
                f"retrying at {job.next_retry_at.isoformat()}: {error}"
            )

        else:
            job.status = JobStatus.FAILED
            job.processed_at = now
            job.error_message = error
            job.result = result
            logger.error(f"Integration job {job_id} failed permanently: {error}")

        await self._session.flush()
        return job

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get(
        self,
        job_id: UUID,
        for_update: bool = False,
        refresh: bool = False,
    ) -> IntegrationJob:
        query = select(IntegrationJob).where(IntegrationJob.id == job_id)
        if for_update:
            query = query.with_for_update()
        if for_update or refresh:
            query = query.execution_options(populate_existing=True)
        job = (await self._session.execute(query)).scalar_one_or_none()
        if job is None:
            raise IntegrationJobNotFoundError(f"Integration job {job_id} not found")
        return job

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        company_id: UUID | None = None,
        action_record_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[IntegrationJob], int]:
        """Jobs newest first; operators use status=failed to find stuck work."""
        filters = []
        if status:
            filters.append(IntegrationJob.status == status)
        if company_id:
            filters.append(IntegrationJob.company_id == company_id)
        if action_record_id:
            filters.append(IntegrationJob.action_record_id == action_record_id)

        total = (
            await self._session.execute(
                select(func.count()).select_from(IntegrationJob).where(*filters)
            )
        ).scalar_one()
        result = await self._session.execute(
            select(IntegrationJob)
            .where(*filters)
            .order_by(IntegrationJob.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total

    async def _try_claim(
        self,
        job_id: UUID,
        statuses: Sequence[JobStatus],
        now: datetime | None = None,
    ) -> bool:
        now = now or utcnow()
        outcome = await self._session.execute(
            update(IntegrationJob)
            .where(
                IntegrationJob.id == job_id,
                IntegrationJob.status.in_(statuses),
            )
            .values(status=JobStatus.IN_PROGRESS, claimed_at=now, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return outcome.rowcount == 1
