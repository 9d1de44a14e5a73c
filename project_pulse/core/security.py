"""Webhook signature verification.

Inbound CRM webhooks are signed with a shared secret:

    X-Webhook-Timestamp: <unix seconds>
    X-Webhook-Signature: sha256=<hex HMAC-SHA256 of "<timestamp>.<raw body>">
"""

import hashlib
import hmac
import logging
import time

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
MAX_TIMESTAMP_SKEW_SECONDS = 60 * 5


def sign_webhook_body(secret: str, body: bytes, timestamp: str) -> str:
    """Compute the signature header value for a webhook body."""
    basestring = timestamp.encode() + b"." + body
    digest = hmac.new(secret.encode(), basestring, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_webhook_signature(
    secret: str,
    body: bytes,
    timestamp: str | None,
    signature: str | None,
    now: float | None = None,
) -> bool:
    """
    Verify a webhook request signature using HMAC-SHA256.

    Rejects requests whose timestamp is more than five minutes away from
    ``now`` to prevent replays.
    """
    if not timestamp or not signature:
        logger.warning("Webhook request missing signature headers")
        return False

    try:
        request_timestamp = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - request_timestamp) > MAX_TIMESTAMP_SKEW_SECONDS:
        logger.warning("Webhook request timestamp outside allowed window")
        return False

    expected = sign_webhook_body(secret, body, timestamp)
    return hmac.compare_digest(expected, signature)
