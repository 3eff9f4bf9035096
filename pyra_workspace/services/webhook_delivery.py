"""Single webhook delivery attempt: serialize, sign, POST, classify.

:func:`deliver_webhook` never raises for delivery problems. Timeouts, network
errors and non-2xx answers all come back as a failed :class:`DeliveryResult`
so the caller can persist the outcome and schedule a retry.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "Pyra-Workspace/1.0"
SIGNATURE_HEADER = "X-Pyra-Signature"
TIMESTAMP_HEADER = "X-Pyra-Timestamp"
EVENT_HEADER = "X-Pyra-Event"
WEBHOOK_ID_HEADER = "X-Pyra-Webhook-Id"

DELIVERY_TIMEOUT_SECONDS = 10.0
RESPONSE_BODY_LIMIT = 500
SECRET_PREFIX = "whsec_"

# Seconds to wait after the 1st, 2nd and 3rd+ failed attempt
RETRY_DELAYS = (60, 300, 900)


@dataclass
class DeliveryResult:
    """Outcome of one POST to a webhook receiver."""

    success: bool
    status_code: Optional[int] = None
    body: Optional[str] = None
    error: Optional[str] = None


def generate_webhook_secret() -> str:
    """New signing secret: ``whsec_`` followed by 48 hex characters."""
    return f"{SECRET_PREFIX}{secrets.token_hex(24)}"


def serialize_payload(payload: Any) -> str:
    """Compact JSON used as the request body and as the signed message."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def sign_payload(payload: str | bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the exact body bytes."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def build_envelope(event: str, data: dict[str, Any], now: Optional[datetime] = None) -> dict[str, Any]:
    """Wrap event data in the ``{event, timestamp, data}`` body receivers expect."""
    now = now or datetime.now(UTC)
    timestamp = now.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return {"event": event, "timestamp": timestamp, "data": data}


def get_retry_delay(attempt_count: int) -> int:
    """Delay in seconds before retrying after ``attempt_count`` attempts.

    60s after the first attempt, 300s after the second, then 900s for every
    attempt after that.
    """
    index = min(max(attempt_count, 1) - 1, len(RETRY_DELAYS) - 1)
    return RETRY_DELAYS[index]


def get_next_retry_time(attempt_count: int, now: Optional[datetime] = None) -> datetime:
    """Absolute UTC time of the next retry."""
    now = now or datetime.now(UTC)
    return now + timedelta(seconds=get_retry_delay(attempt_count))


async def deliver_webhook(
    webhook_id: int | str,
    url: str,
    secret: str,
    event: str,
    payload: dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DeliveryResult:
    """POST ``payload`` to ``url`` and classify the answer.

    Args:
        webhook_id: Sent in ``X-Pyra-Webhook-Id``
        url: Receiver URL
        secret: Plaintext signing secret
        event: Sent in ``X-Pyra-Event``
        payload: JSON-serializable body (normally the envelope from
            :func:`build_envelope`)
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)

    Returns:
        DeliveryResult; success means a 2xx status
    """
    timeout = DELIVERY_TIMEOUT_SECONDS
    body = serialize_payload(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: sign_payload(body, secret),
        TIMESTAMP_HEADER: str(time.time_ns() // 1_000_000),
        EVENT_HEADER: event,
        WEBHOOK_ID_HEADER: str(webhook_id),
        "User-Agent": USER_AGENT,
    }

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            # httpx timeouts are per phase; wait_for caps the whole exchange
            response = await asyncio.wait_for(
                client.post(url, content=body, headers=headers), timeout=timeout
            )
    except (httpx.TimeoutException, asyncio.TimeoutError):
        logger.warning(f"Webhook {webhook_id} delivery timed out after {timeout:g}s")
        return DeliveryResult(success=False, error=f"Request timeout after {timeout:g} seconds")
    except httpx.HTTPError as e:
        logger.warning(f"Webhook {webhook_id} delivery network error: {type(e).__name__}: {e}")
        return DeliveryResult(success=False, error=str(e) or "Network error")
    except Exception as e:
        logger.error(f"Webhook {webhook_id} delivery failed unexpectedly: {e}", exc_info=True)
        return DeliveryResult(success=False, error=str(e) or "Network error")

    response_body = response.text[:RESPONSE_BODY_LIMIT]
    if 200 <= response.status_code < 300:
        return DeliveryResult(success=True, status_code=response.status_code, body=response_body)

    return DeliveryResult(
        success=False,
        status_code=response.status_code,
        body=response_body,
        error=f"HTTP {response.status_code}",
    )
