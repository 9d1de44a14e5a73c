"""
API tests: the FastAPI app over an in-memory database with fake clients.
"""

import json
import time
from collections.abc import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from project_pulse.core import Settings, close_db, init_db, session_scope, sign_webhook_body
from project_pulse.main import create_app
from project_pulse.models import (
    ActionRecord,
    ActionStatus,
    ActionType,
    Company,
    Project,
    PromptRun,
    PromptRunStatus,
    WorkflowPrompt,
    WorkflowPromptType,
)
from project_pulse.services import AIProviderError, ExternalClients

from tests.conftest import (
    DETECTION_TEMPLATE,
    SUMMARY_GENERATION_TEMPLATE,
    SUMMARY_UPDATE_TEMPLATE,
)
from tests.fakes import FakeAIClient, FakeCommunicationClient

API = "/api/v1"
SECRET = "whsec_test"


async def _make_app(settings: Settings, clients: ExternalClients) -> FastAPI:
    app = create_app(settings)
    app.state.clients = clients
    await init_db(app.state.engine)
    return app


async def _seed(app: FastAPI) -> dict:
    """Commit a company, all prompts, one project and one pending message."""
    async with session_scope(app.state.session_factory) as session:
        company = Company(name="Sunrise Solar")
        session.add(company)
        await session.flush()
        for prompt_type, text in (
            (WorkflowPromptType.SUMMARY_GENERATION, SUMMARY_GENERATION_TEMPLATE),
            (WorkflowPromptType.SUMMARY_UPDATE, SUMMARY_UPDATE_TEMPLATE),
            (WorkflowPromptType.ACTION_DETECTION_EXECUTION, DETECTION_TEMPLATE),
        ):
            session.add(WorkflowPrompt(type=prompt_type, prompt_text=text))
        project = Project(company_id=company.id, crm_id="CRM-1", summary="Waiting on permit.")
        session.add(project)
        await session.flush()
        action = ActionRecord(
            project_id=project.id,
            action_type=ActionType.MESSAGE,
            action_payload={"message_content": "Permit approved!", "recipient_phone": "+15555550100"},
            status=ActionStatus.PENDING,
            requires_approval=True,
        )
        session.add(action)
        await session.flush()
        return {"company_id": str(company.id), "project_id": str(project.id), "action_id": str(action.id)}


@pytest.fixture
async def app(settings: Settings, clients: ExternalClients) -> AsyncGenerator[FastAPI, None]:
    app = await _make_app(settings, clients)
    yield app
    await app.state.http_client.aclose()
    await close_db(app.state.engine)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
async def seeded(app: FastAPI) -> dict:
    return await _seed(app)


# =============================================================================
# TEST: HEALTH
# =============================================================================


class TestHealth:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": "1.0.0"}


# =============================================================================
# TEST: WEBHOOK
# =============================================================================


class TestWebhook:
    async def test_new_project_is_created(self, client: AsyncClient, seeded: dict, fake_ai: FakeAIClient):
        fake_ai.queue("New install for the Lees.", '{"decision": "NO_ACTION"}')

        response = await client.post(
            f"{API}/webhooks/crm",
            json={"company_id": seeded["company_id"], "crm_id": "X123", "project_name": "Lee Residence"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["is_new_project"] is True
        assert body["summary"] == "New install for the Lees."
        assert body["detection"]["decision"] == "NO_ACTION"
        assert body["detection"]["action_record_id"] is None

        runs = (await client.get(f"{API}/prompt-runs")).json()
        assert runs["total"] == 2

    async def test_invalid_json_is_400(self, client: AsyncClient, seeded: dict):
        response = await client.post(
            f"{API}/webhooks/crm",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON in request body"}

    async def test_missing_fields_are_422(self, client: AsyncClient, seeded: dict):
        response = await client.post(f"{API}/webhooks/crm", json={"crm_id": "X123"})

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "Validation failed"
        assert any(d["field"] == "company_id" for d in body["details"])

    async def test_summary_failure_is_502_and_keeps_error_run(
        self, client: AsyncClient, seeded: dict, fake_ai: FakeAIClient, app: FastAPI
    ):
        fake_ai.queue(AIProviderError("OpenAI API error: 500"))

        response = await client.post(
            f"{API}/webhooks/crm",
            json={"company_id": seeded["company_id"], "crm_id": "X999"},
        )

        assert response.status_code == 502
        assert response.json() == {"error": "AI provider error: OpenAI API error: 500"}

        async with session_scope(app.state.session_factory) as session:
            project = (
                await session.execute(select(Project).where(Project.crm_id == "X999"))
            ).scalar_one()
            assert project.summary is None
            runs = (
                await session.execute(select(PromptRun).where(PromptRun.project_id == project.id))
            ).scalars().all()
            assert [run.status for run in runs] == [PromptRunStatus.ERROR]
            assert runs[0].error_message == "OpenAI API error: 500"
            assert runs[0].prompt_output is None

    async def test_redelivery_after_summary_failure_generates_summary(
        self, client: AsyncClient, seeded: dict, fake_ai: FakeAIClient
    ):
        event = {"company_id": seeded["company_id"], "crm_id": "X999"}
        fake_ai.queue(AIProviderError("OpenAI API error: 500"))
        assert (await client.post(f"{API}/webhooks/crm", json=event)).status_code == 502

        fake_ai.queue("Fresh summary.", '{"decision": "NO_ACTION"}')
        response = await client.post(f"{API}/webhooks/crm", json=event)

        assert response.status_code == 200
        assert response.json()["is_new_project"] is False
        assert response.json()["summary"] == "Fresh summary."
        assert fake_ai.prompts[1].startswith("Write a summary for")


class TestSignedWebhook:
    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(
            _env_file=None,
            database_url="sqlite+aiosqlite:///:memory:",
            webhook_secret=SECRET,
        )

    async def test_unsigned_request_is_401(self, client: AsyncClient, seeded: dict):
        response = await client.post(
            f"{API}/webhooks/crm",
            json={"company_id": seeded["company_id"], "crm_id": "X123"},
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid webhook signature"}

    async def test_signed_request_is_processed(self, client: AsyncClient, seeded: dict, fake_ai: FakeAIClient):
        fake_ai.queue("Summary.", '{"decision": "NO_ACTION"}')
        body = json.dumps({"company_id": seeded["company_id"], "crm_id": "X123"}).encode()
        timestamp = str(int(time.time()))

        response = await client.post(
            f"{API}/webhooks/crm",
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Webhook-Timestamp": timestamp,
                "X-Webhook-Signature": sign_webhook_body(SECRET, body, timestamp),
            },
        )

        assert response.status_code == 200
        assert response.json()["is_new_project"] is True


# =============================================================================
# TEST: ACTIONS
# =============================================================================


class TestActions:
    async def test_list_pending(self, client: AsyncClient, seeded: dict):
        response = await client.get(f"{API}/actions", params={"status": "pending"})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["id"] == seeded["action_id"]

        count = await client.get(f"{API}/actions/pending/count")
        assert count.json() == {"pending": 1}

    async def test_approve_executes(
        self, client: AsyncClient, seeded: dict, fake_comms: FakeCommunicationClient
    ):
        response = await client.post(f"{API}/actions/{seeded['action_id']}/approve")

        assert response.status_code == 200
        body = response.json()
        assert body["execution"]["executed"] is True
        assert body["action"]["status"] == "executed"
        assert fake_comms.sent[0]["message_content"] == "Permit approved!"

        jobs = (await client.get(f"{API}/integration-jobs", params={"action_record_id": seeded["action_id"]})).json()
        assert jobs["total"] == 1
        assert jobs["items"][0]["status"] == "completed"

    async def test_reject_then_approve_is_409(self, client: AsyncClient, seeded: dict):
        rejected = await client.post(f"{API}/actions/{seeded['action_id']}/reject")
        assert rejected.status_code == 200
        assert rejected.json()["status"] == "rejected"

        response = await client.post(f"{API}/actions/{seeded['action_id']}/approve")
        assert response.status_code == 409

    async def test_execute_pending_gated_action_is_noop(
        self, client: AsyncClient, seeded: dict, fake_comms: FakeCommunicationClient
    ):
        response = await client.post(f"{API}/actions/{seeded['action_id']}/execute")

        assert response.status_code == 200
        assert response.json()["executed"] is False
        assert response.json()["skipped"] is True
        assert fake_comms.sent == []

    async def test_unknown_action_is_404(self, client: AsyncClient, seeded: dict):
        response = await client.get(f"{API}/actions/00000000-0000-0000-0000-000000000000")
        assert response.status_code == 404
        assert response.json() == {"error": "Action not found"}


# =============================================================================
# TEST: PROJECTS AND PROMPT RUNS
# =============================================================================


class TestProjectsAndRuns:
    async def test_set_and_clear_next_check_date(self, client: AsyncClient, seeded: dict):
        url = f"{API}/projects/{seeded['project_id']}/next-check-date"

        response = await client.put(url, json={"next_check_date": "2026-05-10T09:00:00Z"})
        assert response.status_code == 200
        assert response.json()["next_check_date"].startswith("2026-05-10T09:00:00")

        cleared = await client.put(url, json={"next_check_date": None})
        assert cleared.json()["next_check_date"] is None

    async def test_rerun_prompt(self, client: AsyncClient, seeded: dict, fake_ai: FakeAIClient):
        fake_ai.queue("Summary.", '{"decision": "NO_ACTION"}', "Summary again.")
        await client.post(
            f"{API}/webhooks/crm",
            json={"company_id": seeded["company_id"], "crm_id": "CRM-1"},
        )
        runs = (await client.get(f"{API}/prompt-runs")).json()["items"]
        summary_run = next(r for r in runs if r["prompt_output"] == "Summary.")

        response = await client.post(f"{API}/prompt-runs/{summary_run['id']}/rerun")

        assert response.status_code == 201
        body = response.json()
        assert body["id"] != summary_run["id"]
        assert body["prompt_output"] == "Summary again."
        assert body["prompt_input"] == summary_run["prompt_input"]

    async def test_failed_rerun_is_502_and_recorded(
        self, client: AsyncClient, seeded: dict, fake_ai: FakeAIClient
    ):
        fake_ai.queue("Summary.", '{"decision": "NO_ACTION"}', AIProviderError("Claude API error: 529"))
        await client.post(
            f"{API}/webhooks/crm",
            json={"company_id": seeded["company_id"], "crm_id": "CRM-1"},
        )
        runs = (await client.get(f"{API}/prompt-runs")).json()["items"]
        summary_run = next(r for r in runs if r["prompt_output"] == "Summary.")

        response = await client.post(f"{API}/prompt-runs/{summary_run['id']}/rerun")

        assert response.status_code == 502
        errors = (await client.get(f"{API}/prompt-runs", params={"status": "ERROR"})).json()
        assert errors["total"] == 1
        assert errors["items"][0]["error_message"] == "Claude API error: 529"
        assert errors["items"][0]["prompt_input"] == summary_run["prompt_input"]
