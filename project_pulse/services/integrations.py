"""
Outbound integration clients.

These are the resource handlers behind the integration job queue:
- CommunicationClient delivers messages (sms, email, call)
- CrmClient reads from and writes to the CRM through the data-fetch and
  data-push services

HTTP failures are classified for the queue: network errors, timeouts and
5xx responses are transient (retried with backoff); 4xx responses and
missing configuration are permanent.
"""

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import httpx

from ..core.config import Settings
from ..models import IntegrationJob, OperationType
from .exceptions import PermanentIntegrationError, TransientIntegrationError

logger = logging.getLogger(__name__)


# =============================================================================
# SHARED HTTP
# =============================================================================


class _ServiceClient:
    """Base for JSON-over-HTTP integration services."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self._settings = settings
        self._http_client = http_client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.integration_service_key:
            headers["Authorization"] = f"Bearer {self._settings.integration_service_key}"
        return headers

    async def _post_json(self, url: str | None, body: dict[str, Any], label: str) -> dict[str, Any]:
        if not url:
            raise PermanentIntegrationError(f"{label} URL not configured")

        timeout = self._settings.integration_timeout_seconds
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=body, headers=self._headers(), timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransientIntegrationError(f"{label} request failed: {e}") from e

        if response.status_code >= 500:
            raise TransientIntegrationError(f"{label} error: {response.status_code}")
        if response.status_code >= 400:
            raise PermanentIntegrationError(
                f"{label} rejected request: {response.status_code} - {response.text[:200]}"
            )

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text}
        return data if isinstance(data, dict) else {"data": data}


# =============================================================================
# COMMUNICATIONS
# =============================================================================


@dataclass
class Recipient:
    """Who a message goes to."""
    id: str | None = None
    name: str | None = None
    phone: str | None = None
    email: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "phone": self.phone, "email": self.email}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recipient":
        return cls(
            id=data.get("id"),
            name=data.get("name"),
            phone=data.get("phone"),
            email=data.get("email"),
        )


@dataclass
class CommunicationResult:
    success: bool
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class CommunicationClient(_ServiceClient):
    """Sends a message through the communication service."""

    async def send(
        self,
        action_id: UUID | None,
        message_content: str,
        recipient: Recipient,
        channel: str,
        project_id: UUID | None,
    ) -> CommunicationResult:
        body = {
            "actionId": str(action_id) if action_id else None,
            "messageContent": message_content,
            "recipient": recipient.to_dict(),
            "channel": channel,
            "projectId": str(project_id) if project_id else None,
        }
        data = await self._post_json(
            self._settings.communication_service_url, body, "Communication service"
        )

        if data.get("success") is False:
            return CommunicationResult(success=False, details=data, error=data.get("error") or "Delivery failed")

        logger.info(f"Sent {channel} message for action {action_id}")
        return CommunicationResult(success=True, details=data)


# =============================================================================
# CRM
# =============================================================================


class CrmClient(_ServiceClient):
    """Talks to the CRM through the data-fetch / data-push services."""

    def _body(self, job: IntegrationJob) -> dict[str, Any]:
        return {
            "company_id": str(job.company_id),
            "project_id": str(job.project_id) if job.project_id else None,
            "operation": job.operation_type.value,
            "resource_type": job.resource_type.value,
            "data": job.payload,
        }

    async def fetch(self, job: IntegrationJob) -> dict[str, Any]:
        return await self._post_json(self._settings.crm_fetch_url, self._body(job), "CRM data-fetch")

    async def push(self, job: IntegrationJob) -> dict[str, Any]:
        if job.operation_type == OperationType.READ:
            raise PermanentIntegrationError("Read jobs must go through fetch")
        return await self._post_json(self._settings.crm_push_url, self._body(job), "CRM data-push")
