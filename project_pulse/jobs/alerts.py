"""Crash and partial-failure alerts for the background jobs.

Alerts always go to the log; Slack and a generic JSON webhook (PagerDuty,
Opsgenie and the like) are added when their URLs are configured.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from ..core.config import Settings

logger = logging.getLogger(__name__)

ALERT_TIMEOUT_SECONDS = 10
SEVERITY_COLORS = {"critical": "#dc2626", "error": "#f59e0b"}


def build_slack_payload(
    title: str,
    message: str,
    severity: str,
    details: dict[str, Any] | None,
    sent_at: datetime,
) -> dict[str, Any]:
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": title, "emoji": True}},
        {"type": "section", "text": {"type": "mrkdwn", "text": message}},
    ]
    if details:
        lines = "\n".join(f"• *{key}*: {value}" for key, value in details.items())
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": lines}})
    blocks.append({
        "type": "context",
        "elements": [{
            "type": "mrkdwn",
            "text": f"Severity: *{severity.upper()}* | Time: {sent_at.isoformat()}",
        }],
    })

    color = SEVERITY_COLORS.get(severity, SEVERITY_COLORS["error"])
    return {"attachments": [{"color": color, "blocks": blocks}]}


def build_webhook_payload(
    title: str,
    message: str,
    severity: str,
    details: dict[str, Any] | None,
    source: str,
    sent_at: datetime,
) -> dict[str, Any]:
    return {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": sent_at.isoformat(),
        "source": source,
        "details": details or {},
    }


async def send_alert(
    settings: Settings,
    title: str,
    message: str,
    severity: str = "error",
    details: dict[str, Any] | None = None,
    source: str = "project-pulse-job",
    http_client: httpx.AsyncClient | None = None,
) -> list[str]:
    """
    Log an alert and fan it out to the configured channels.

    Returns the names of the channels that accepted it. Delivery failures
    are logged and never raised, so a broken alert hook cannot mask the
    error being reported.
    """
    log_message = f"[JOB ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"
    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    sent_at = datetime.now(timezone.utc)
    targets = []
    if settings.slack_alerts_webhook_url:
        targets.append((
            "slack",
            settings.slack_alerts_webhook_url,
            build_slack_payload(title, message, severity, details, sent_at),
        ))
    if settings.alert_webhook_url:
        targets.append((
            "webhook",
            settings.alert_webhook_url,
            build_webhook_payload(title, message, severity, details, source, sent_at),
        ))
    if not targets:
        return []

    if http_client is not None:
        return await _deliver(http_client, targets)
    async with httpx.AsyncClient(timeout=ALERT_TIMEOUT_SECONDS) as client:
        return await _deliver(client, targets)


async def _deliver(
    client: httpx.AsyncClient,
    targets: list[tuple[str, str, dict[str, Any]]],
) -> list[str]:
    delivered = []
    for channel, url, payload in targets:
        try:
            response = await client.post(url, json=payload, timeout=ALERT_TIMEOUT_SECONDS)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to send {channel} alert: {e}")
            continue
        delivered.append(channel)
    return delivered
