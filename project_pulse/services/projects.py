"""
Project Store: durable project records keyed by (company_id, crm_id).

Projects are created on the first webhook for a CRM id and updated on every
later one. They are never hard-deleted.
"""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Project, ProjectTrack, TrackMilestone
from .exceptions import ProjectNotFoundError

logger = logging.getLogger(__name__)

# Fields a webhook is allowed to overwrite on an existing project
WEBHOOK_FIELDS = ("project_name", "project_address", "next_step", "project_track_id")


@dataclass
class TrackContext:
    """Track-specific prompt context for a project."""
    track_name: str | None = None
    roles: str | None = None
    base_prompt: str | None = None
    milestone_instructions: str | None = None


class ProjectStore:
    """Creates, reads and updates projects."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, project_id: UUID) -> Project:
        project = await self._session.get(Project, project_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        return project

    async def get_by_crm_id(self, company_id: UUID, crm_id: str) -> Project | None:
        result = await self._session.execute(
            select(Project).where(
                Project.company_id == company_id,
                Project.crm_id == crm_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_from_webhook(
        self,
        company_id: UUID,
        crm_id: str,
        fields: dict[str, Any],
    ) -> tuple[Project, bool]:
        """
        Create or update the project for ``(company_id, crm_id)``.

        Returns (project, created). Only keys in WEBHOOK_FIELDS with a
        non-None value are applied. A concurrent insert of the same CRM id
        loses on the unique constraint and falls back to an update.
        """
        updates = {k: v for k, v in fields.items() if k in WEBHOOK_FIELDS and v is not None}

        project = await self.get_by_crm_id(company_id, crm_id)
        if project is not None:
            self._apply(project, updates)
            await self._session.flush()
            return project, False

        project = Project(company_id=company_id, crm_id=crm_id, **updates)
        try:
            async with self._session.begin_nested():
                self._session.add(project)
                await self._session.flush()
        except IntegrityError:
            logger.info(f"Project {crm_id} was created concurrently, updating instead")
            existing = await self.get_by_crm_id(company_id, crm_id)
            if existing is None:
                raise
            self._apply(existing, updates)
            await self._session.flush()
            return existing, False

        logger.info(f"Created project {project.id} for CRM id {crm_id}")
        return project, True

    async def update_summary(self, project_id: UUID, summary: str) -> Project:
        project = await self.get(project_id)
        project.summary = summary
        await self._session.flush()
        return project

    async def get_track_context(self, project: Project) -> TrackContext:
        """Resolve the project's track (or the company default) and milestone instructions."""
        track: ProjectTrack | None = None
        if project.project_track_id:
            track = await self._session.get(ProjectTrack, project.project_track_id)
        if track is None:
            result = await self._session.execute(
                select(ProjectTrack)
                .where(
                    ProjectTrack.company_id == project.company_id,
                    ProjectTrack.is_default.is_(True),
                )
                .limit(1)
            )
            track = result.scalar_one_or_none()

        if track is None:
            return TrackContext()

        instructions = None
        if project.next_step:
            result = await self._session.execute(
                select(TrackMilestone.prompt_instructions).where(
                    TrackMilestone.track_id == track.id,
                    TrackMilestone.step_title == project.next_step,
                )
            )
            instructions = result.scalar_one_or_none()

        return TrackContext(
            track_name=track.name,
            roles=track.roles,
            base_prompt=track.base_prompt,
            milestone_instructions=instructions,
        )

    @staticmethod
    def _apply(project: Project, updates: dict[str, Any]) -> None:
        for key, value in updates.items():
            setattr(project, key, value)
