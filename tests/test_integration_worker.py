"""Tests for the integration worker pass."""

from datetime import timedelta

from sqlalchemy import select

from project_pulse.core import Settings, session_scope
from project_pulse.jobs import run_worker_pass
from project_pulse.models import Company, IntegrationJob, JobStatus, OperationType, ResourceType, utcnow
from project_pulse.services import ExternalClients, IntegrationJobQueue, TransientIntegrationError

from tests.fakes import FakeCrmClient


async def _seed_jobs(session_factory, count: int) -> list:
    async with session_scope(session_factory) as session:
        company = Company(name="Sunrise Solar")
        session.add(company)
        await session.flush()
        queue = IntegrationJobQueue(session)
        return [
            await queue.enqueue(
                company_id=company.id,
                operation_type=OperationType.WRITE,
                resource_type=ResourceType.NOTE,
                payload={"note": f"Site visit {i}"},
            )
            for i in range(count)
        ]


async def _statuses(session_factory) -> list[JobStatus]:
    async with session_factory() as session:
        result = await session.execute(select(IntegrationJob).order_by(IntegrationJob.created_at))
        return [job.status for job in result.scalars().all()]


class TestWorkerPass:
    async def test_processes_claimed_batch(
        self, session_factory, settings: Settings, clients: ExternalClients, fake_crm: FakeCrmClient
    ):
        await _seed_jobs(session_factory, 3)

        results = await run_worker_pass(settings, clients, session_factory, batch_size=2)

        assert results["claimed"] == 2
        assert results["completed"] == 2
        assert len(fake_crm.pushed) == 2
        assert sorted(s.value for s in await _statuses(session_factory)) == ["completed", "completed", "pending"]

    async def test_failures_are_left_for_retry(
        self, session_factory, settings: Settings, clients: ExternalClients, fake_crm: FakeCrmClient
    ):
        await _seed_jobs(session_factory, 1)
        fake_crm.error = TransientIntegrationError("CRM data-push error: 502")

        results = await run_worker_pass(settings, clients, session_factory)

        assert results["retry"] == 1
        assert await _statuses(session_factory) == [JobStatus.RETRY]

        # Backoff has not elapsed, so the next pass claims nothing
        again = await run_worker_pass(settings, clients, session_factory)
        assert again["claimed"] == 0

    async def test_empty_queue(self, session_factory, settings: Settings, clients: ExternalClients):
        results = await run_worker_pass(settings, clients, session_factory)
        assert results == {"requeued": 0, "claimed": 0, "completed": 0, "retry": 0, "failed": 0, "skipped": 0}

    async def test_abandoned_claim_is_requeued(
        self, session_factory, settings: Settings, clients: ExternalClients, fake_crm: FakeCrmClient
    ):
        await _seed_jobs(session_factory, 1)
        lease = timedelta(seconds=settings.integration_job_lease_seconds)
        async with session_scope(session_factory) as session:
            # A worker that claimed and then died
            await IntegrationJobQueue(session).claim_ready(now=utcnow() - lease - timedelta(minutes=1))

        results = await run_worker_pass(settings, clients, session_factory)

        assert results["requeued"] == 1
        assert results["claimed"] == 0
        assert fake_crm.pushed == []
        assert await _statuses(session_factory) == [JobStatus.RETRY]
        async with session_factory() as session:
            job = (await session.execute(select(IntegrationJob))).scalar_one()
            assert job.retry_count == 1
            assert job.error_message.startswith("Worker lease expired")
