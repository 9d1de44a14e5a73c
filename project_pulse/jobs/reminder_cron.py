"""
Reminder Cron Job: re-run action detection for projects whose check is due.

For every project with a next_check_date before tomorrow (UTC):
1. Clear next_check_date and stamp last_action_check
2. Run action detection as a reminder check
3. Execute the resulting action if it needs no approval

The reminder is cleared before detection so that a new reminder set by the
detection itself survives. Each project runs in its own transaction.

Typical cron schedule: 0 * * * * (hourly)
"""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.database import build_engine, build_session_factory, session_scope
from ..services import (
    ExternalClients,
    ProjectStore,
    PulseError,
    ReminderScheduler,
    build_detection,
    build_executor,
)
from .alerts import send_alert

logger = logging.getLogger(__name__)

REMINDER_INITIATOR = "automatic_reminder"


async def check_project(
    session: AsyncSession,
    settings: Settings,
    clients: ExternalClients,
    project_id,
    now: datetime,
) -> dict[str, Any]:
    """Run one reminder check. Returns a per-project result entry."""
    project = await ProjectStore(session).get(project_id)
    await ReminderScheduler(session).mark_checked(project, now=now)

    detection = await build_detection(session, settings, clients).detect(
        project,
        is_reminder_check=True,
        initiated_by=REMINDER_INITIATOR,
        now=now,
    )

    entry: dict[str, Any] = {
        "project_id": str(project_id),
        "decision": detection.decision.value,
        "action_record_id": str(detection.action_record.id) if detection.action_record else None,
        "executed": False,
    }
    if detection.error:
        entry["error"] = detection.error

    if detection.requires_execution:
        execution = await build_executor(session, settings, clients).execute_action(
            detection.action_record.id
        )
        entry["executed"] = execution.executed
        if not execution.executed and execution.message:
            entry["error"] = execution.message
    return entry


async def run_reminder_job(
    settings: Settings,
    clients: ExternalClients | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    now: datetime | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    """
    Main entry point for the reminder cron job.

    Args:
        settings: Application settings
        clients: Outbound clients; built from settings if omitted
        session_factory: Session factory; an engine is built (and disposed) if omitted
        now: Override the current time
        limit: Maximum number of due projects to process

    Returns:
        Job result summary
    """
    start_time = datetime.now(timezone.utc)
    now = now or start_time
    logger.info(f"Starting reminder job at {start_time.isoformat()}")

    engine = None
    if session_factory is None:
        engine = build_engine(settings)
        session_factory = build_session_factory(engine)

    http_client = None
    if clients is None:
        http_client = httpx.AsyncClient(timeout=settings.integration_timeout_seconds)
        clients = ExternalClients.from_settings(settings, http_client)

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "due_count": 0,
        "checked_count": 0,
        "actions_created": 0,
        "actions_executed": 0,
        "failed_count": 0,
        "projects": [],
        "errors": [],
    }

    try:
        async with session_scope(session_factory) as session:
            due = await ReminderScheduler(session).due_projects(now=now, limit=limit)
            project_ids = [p.id for p in due]
        results["due_count"] = len(project_ids)
        logger.info(f"Found {len(project_ids)} project(s) due for a reminder check")

        for project_id in project_ids:
            try:
                async with session_scope(session_factory) as session:
                    entry = await check_project(session, settings, clients, project_id, now)
            except PulseError as e:
                error_msg = f"Reminder check failed for project {project_id}: {e}"
                logger.error(error_msg)
                results["errors"].append(error_msg)
                results["failed_count"] += 1
                continue

            results["checked_count"] += 1
            results["projects"].append(entry)
            if entry["action_record_id"]:
                results["actions_created"] += 1
            if entry["executed"]:
                results["actions_executed"] += 1
            if entry.get("error"):
                results["errors"].append(f"Project {project_id}: {entry['error']}")

    except Exception as e:
        error_msg = f"Reminder job failed: {str(e)}"
        logger.error(error_msg)
        results["errors"].append(error_msg)

        await send_alert(
            settings,
            title="Reminder Cron Job Failed",
            message="The reminder check job crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": results["started_at"],
                "checked_before_crash": results["checked_count"],
            },
            source="project-pulse-reminder-cron",
        )
        raise

    finally:
        if http_client is not None:
            await http_client.aclose()
        if engine is not None:
            await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Reminder job completed in {results['duration_seconds']:.2f}s: "
        f"{results['checked_count']} checked, {results['actions_created']} actions created, "
        f"{results['failed_count']} failed"
    )

    if results["failed_count"] > 0:
        await send_alert(
            settings,
            title="Reminder Job Completed with Warnings",
            message=f"The reminder job completed but {results['failed_count']} project check(s) failed.",
            severity="warning",
            details={
                "checked": results["checked_count"],
                "failed": results["failed_count"],
                "errors": results["errors"][:5],
            },
            source="project-pulse-reminder-cron",
        )

    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the reminder job."""
    import argparse

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the project reminder cron job")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database connection string (defaults to DATABASE_URL)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of due projects to process",
    )

    args = parser.parse_args()

    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        results = asyncio.run(run_reminder_job(settings, limit=args.limit))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
