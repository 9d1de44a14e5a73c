"""
Reminder Scheduler: future re-evaluation of projects.

A reminder is just ``Project.next_check_date``. The periodic trigger
(jobs/reminder_cron.py) picks up projects whose date has come due and runs
action detection again with ``is_reminder_check`` set.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Project, utcnow
from .exceptions import ProjectNotFoundError

logger = logging.getLogger(__name__)


def start_of_next_day(now: datetime) -> datetime:
    """Midnight UTC following ``now``."""
    today = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return today + timedelta(days=1)


class ReminderScheduler:
    """Reads and writes project reminder dates."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def set_next_check_date(
        self,
        project_id: UUID,
        next_check_date: datetime | None,
    ) -> Project:
        """Overwrite the project's next check date; None clears it."""
        project = await self._session.get(Project, project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")

        project.next_check_date = next_check_date
        await self._session.flush()

        if next_check_date is None:
            logger.info(f"Cleared reminder for project {project_id}")
        else:
            logger.info(f"Reminder for project {project_id} set to {next_check_date.isoformat()}")
        return project

    async def schedule_in_days(
        self,
        project_id: UUID,
        days: int,
        now: datetime | None = None,
    ) -> datetime:
        """Set the next check ``days`` days from now and return that date."""
        next_check = (now or utcnow()) + timedelta(days=days)
        await self.set_next_check_date(project_id, next_check)
        return next_check

    async def due_projects(
        self,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> Sequence[Project]:
        """
        Projects whose reminder falls on or before today (UTC).

        Reminders have day granularity: anything scheduled before the start
        of tomorrow is due, earliest first.
        """
        cutoff = start_of_next_day(now or utcnow())
        query = (
            select(Project)
            .where(
                Project.next_check_date.is_not(None),
                Project.next_check_date < cutoff,
            )
            .order_by(Project.next_check_date.asc())
        )
        if limit:
            query = query.limit(limit)

        result = await self._session.execute(query)
        return result.scalars().all()

    async def mark_checked(self, project: Project, now: datetime | None = None) -> None:
        """Consume a due reminder before re-running detection."""
        project.next_check_date = None
        project.last_action_check = now or utcnow()
        await self._session.flush()
