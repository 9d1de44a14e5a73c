"""
CRM webhook ingestion.

The body is read raw so the signature can be checked over the exact bytes
the CRM sent, then validated into a ``CrmWebhookEvent`` and handed to the
project pipeline.
"""

import json
import logging

from fastapi import APIRouter, Header, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from ..core.dependencies import PipelineDep, SessionDep, SettingsDep
from ..core.security import verify_webhook_signature
from ..schemas import CrmWebhookEvent, DetectionSummary, WebhookResponse
from ..services import AIProviderError, PromptNotConfiguredError, WebhookOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def outcome_to_response(outcome: WebhookOutcome) -> WebhookResponse:
    detection = None
    if outcome.detection is not None:
        result = outcome.detection
        detection = DetectionSummary(
            decision=result.decision.value,
            prompt_run_id=result.prompt_run_id,
            action_record_id=result.action_record.id if result.action_record else None,
            next_check_date=result.next_check_date.isoformat() if result.next_check_date else None,
            error=result.error,
        )
    elif outcome.detection_error:
        detection = DetectionSummary(error=outcome.detection_error)

    return WebhookResponse(
        project_id=outcome.project.id,
        is_new_project=outcome.is_new_project,
        summary=outcome.summary,
        summary_prompt_run_id=outcome.summary_prompt_run_id,
        timeline_action_ids=outcome.timeline_action_ids,
        detection=detection,
    )


@router.post("/crm", response_model=WebhookResponse)
async def receive_crm_webhook(
    request: Request,
    settings: SettingsDep,
    session: SessionDep,
    pipeline: PipelineDep,
    x_webhook_timestamp: str | None = Header(default=None),
    x_webhook_signature: str | None = Header(default=None),
):
    """Process a project change event from the CRM."""
    body = await request.body()

    if settings.webhook_signing_enabled and not verify_webhook_signature(
        settings.webhook_secret, body, x_webhook_timestamp, x_webhook_signature
    ):
        logger.warning("Rejected CRM webhook with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        raw = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON in request body",
        )

    try:
        event = CrmWebhookEvent.model_validate(raw)
    except ValidationError as e:
        raise RequestValidationError(e.errors())

    try:
        outcome = await pipeline.process_webhook(event)
    except AIProviderError as e:
        logger.error(f"Webhook for CRM id {event.crm_id} failed at the AI provider: {e}")
        # Keep the project data and the ERROR prompt run; a redelivery regenerates the summary
        await session.commit()
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"AI provider error: {e}",
        )
    except PromptNotConfiguredError as e:
        logger.error(f"Webhook for CRM id {event.crm_id} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )

    return outcome_to_response(outcome)
