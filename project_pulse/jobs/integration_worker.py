"""
Integration Worker: drains the integration job queue.

Each pass claims a batch of ready jobs (pending, or retry whose backoff has
elapsed) in one short transaction, then processes every job in its own
session so a slow or failing job never holds locks on the rest of the batch.
Jobs left in_progress by a worker that died are requeued once their lease
(INTEGRATION_JOB_LEASE_SECONDS) expires.

Run once from cron, or with ``--loop`` as a long-lived worker.
"""

import asyncio
import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.database import build_engine, build_session_factory, session_scope
from ..models import JobStatus
from ..services import (
    ExternalClients,
    IntegrationJobQueue,
    InvalidTransitionError,
    build_job_processor,
)
from .alerts import send_alert

logger = logging.getLogger(__name__)


async def run_worker_pass(
    settings: Settings,
    clients: ExternalClients,
    session_factory: async_sessionmaker[AsyncSession],
    batch_size: int | None = None,
) -> dict[str, Any]:
    """Requeue expired leases, claim one batch and process it. Returns counts by outcome."""
    limit = batch_size or settings.integration_batch_size
    lease = timedelta(seconds=settings.integration_job_lease_seconds)

    async with session_scope(session_factory) as session:
        queue = IntegrationJobQueue(session)
        requeued = await queue.requeue_stale(lease)
        claimed = await queue.claim_ready(limit=limit)
        job_ids = [job.id for job in claimed]

    results = {
        "requeued": len(requeued),
        "claimed": len(job_ids),
        "completed": 0,
        "retry": 0,
        "failed": 0,
        "skipped": 0,
    }
    if not job_ids:
        return results

    logger.info(f"Claimed {len(job_ids)} integration job(s)")
    for job_id in job_ids:
        async with session_scope(session_factory) as session:
            queue = IntegrationJobQueue(session)
            job = await queue.get(job_id, refresh=True)
            if job.status != JobStatus.IN_PROGRESS:
                logger.warning(f"Job {job_id} is {job.status.value}, no longer ours")
                results["skipped"] += 1
                continue
            try:
                outcome = await build_job_processor(session, settings, clients).process(job)
            except InvalidTransitionError as e:
                logger.warning(f"Skipping job {job_id}: {e}")
                results["skipped"] += 1
                continue

        results[outcome.status.value] = results.get(outcome.status.value, 0) + 1

    logger.info(
        f"Worker pass finished: {results['completed']} completed, "
        f"{results['retry']} to retry, {results['failed']} failed"
    )
    return results


async def run_worker(
    settings: Settings,
    loop: bool = False,
    interval: float | None = None,
    batch_size: int | None = None,
) -> dict[str, Any]:
    """
    Run one pass, or keep polling when ``loop`` is set.

    Returns the totals across all passes.
    """
    interval = interval or settings.worker_poll_interval_seconds
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)

    totals = {
        "passes": 0, "requeued": 0, "claimed": 0,
        "completed": 0, "retry": 0, "failed": 0, "skipped": 0,
    }
    started_at = datetime.now(timezone.utc).isoformat()

    try:
        async with httpx.AsyncClient(timeout=settings.integration_timeout_seconds) as http_client:
            clients = ExternalClients.from_settings(settings, http_client)
            while True:
                results = await run_worker_pass(settings, clients, session_factory, batch_size)
                totals["passes"] += 1
                for key, value in results.items():
                    totals[key] = totals.get(key, 0) + value

                if not loop:
                    break
                # Drain without sleeping while there is a backlog
                if results["claimed"] < (batch_size or settings.integration_batch_size):
                    await asyncio.sleep(interval)

    except Exception as e:
        logger.error(f"Integration worker failed: {e}")
        await send_alert(
            settings,
            title="Integration Worker Failed",
            message="The integration worker crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": started_at,
                "passes_before_crash": totals["passes"],
            },
            source="project-pulse-integration-worker",
        )
        raise

    finally:
        await engine.dispose()

    return totals


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the integration worker."""
    import argparse

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Process the integration job queue")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database connection string (defaults to DATABASE_URL)",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep polling instead of running a single pass",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between polls when looping",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Jobs claimed per pass",
    )

    args = parser.parse_args()

    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        totals = asyncio.run(run_worker(
            settings,
            loop=args.loop,
            interval=args.interval,
            batch_size=args.batch_size,
        ))
        print(f"Worker finished: {totals}")
    except KeyboardInterrupt:
        print("Worker stopped")
    except Exception as e:
        print(f"Worker failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
