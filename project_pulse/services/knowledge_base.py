"""Knowledge base lookup used by action detection.

Embedding generation and vector search live in a separate service; this
client only sends a query and returns the matching snippets.
"""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import httpx

from ..core.config import Settings
from .exceptions import KnowledgeBaseError

logger = logging.getLogger(__name__)


@dataclass
class KnowledgeResult:
    content: str
    title: str | None = None
    similarity: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "content": self.content, "similarity": self.similarity}


class KnowledgeBaseClient:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self._settings = settings
        self._http_client = http_client

    async def lookup(self, company_id: UUID, query: str) -> list[KnowledgeResult]:
        """
        Search the company's knowledge base.

        Raises:
            KnowledgeBaseError: if the service is not configured or fails.
        """
        url = self._settings.knowledge_base_url
        if not url:
            raise KnowledgeBaseError("Knowledge base URL not configured")

        body = {
            "company_id": str(company_id),
            "query": query,
            "limit": self._settings.knowledge_base_max_results,
        }
        headers = {"Content-Type": "application/json"}
        if self._settings.integration_service_key:
            headers["Authorization"] = f"Bearer {self._settings.integration_service_key}"

        timeout = self._settings.integration_timeout_seconds
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=body, headers=headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise KnowledgeBaseError(f"Knowledge base request failed: {e}") from e

        if response.status_code != 200:
            raise KnowledgeBaseError(f"Knowledge base error: {response.status_code}")

        results = response.json().get("results", [])
        logger.info(f"Knowledge base returned {len(results)} result(s) for company {company_id}")
        return [
            KnowledgeResult(
                content=item.get("content", ""),
                title=item.get("title"),
                similarity=item.get("similarity"),
            )
            for item in results
            if isinstance(item, dict)
        ]
