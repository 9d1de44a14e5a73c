"""Workflow prompt lookup and template rendering."""

import json
import re
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import WorkflowPrompt, WorkflowPromptType
from .exceptions import PromptNotConfiguredError

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2, default=str)
    return str(value)


def render_prompt(template: str, variables: Mapping[str, Any]) -> str:
    """
    Replace ``{{name}}`` placeholders with values from ``variables``.

    Unknown placeholders are left untouched so a missing variable is visible
    in the logged prompt input.
    """
    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return _stringify(variables[name])

    return _PLACEHOLDER.sub(_replace, template)


class WorkflowPromptStore:
    """Read access to prompt templates; the newest prompt of a type wins."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_latest(self, prompt_type: WorkflowPromptType) -> WorkflowPrompt | None:
        result = await self._session.execute(
            select(WorkflowPrompt)
            .where(WorkflowPrompt.type == prompt_type)
            .order_by(WorkflowPrompt.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_latest(self, prompt_type: WorkflowPromptType) -> WorkflowPrompt:
        prompt = await self.find_latest(prompt_type)
        if prompt is None:
            raise PromptNotConfiguredError(f"No workflow prompt of type {prompt_type.value}")
        return prompt
