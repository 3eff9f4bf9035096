"""Event fan-out to subscribed webhooks and the delivery retry processor."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Optional

import httpx
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.db import AsyncSessionLocal
from pyra_workspace.models.webhook import Webhook, WebhookDelivery
from pyra_workspace.schemas.webhook import WILDCARD_EVENT
from pyra_workspace.services.settings_service import SettingsService
from pyra_workspace.services.webhook_delivery import (
    DeliveryResult,
    build_envelope,
    deliver_webhook,
    get_next_retry_time,
)
from pyra_workspace.utils.encryption import decrypt_value
from pyra_workspace.utils.error_handling import log_and_continue

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
RETRY_BATCH_SIZE = 50

# Strong references so pending dispatch tasks are not garbage collected
_background_tasks: set[asyncio.Task] = set()


def matches_event(events: Optional[list[str]], event: str) -> bool:
    """True when a subscription list covers ``event``.

    An empty list subscribes to nothing; ``"*"`` subscribes to everything.
    """
    if not events:
        return False
    return event in events or WILDCARD_EVENT in events


def apply_outcome(
    delivery: WebhookDelivery,
    outcome: DeliveryResult,
    now: datetime,
    first_attempt: bool = False,
) -> None:
    """Copy an attempt outcome onto its delivery row.

    ``delivery.attempt_count`` must already count the attempt that produced
    ``outcome``. A failed retry that reaches ``max_attempts`` is terminal; a
    failed first attempt is always scheduled for retry.
    """
    delivery.response_status = outcome.status_code
    delivery.response_body = outcome.body

    if outcome.success:
        delivery.status = "success"
        delivery.error_message = None
        delivery.next_retry_at = None
        delivery.delivered_at = now
    elif not first_attempt and delivery.attempt_count >= delivery.max_attempts:
        delivery.status = "failed"
        delivery.error_message = outcome.error
        delivery.next_retry_at = None
    else:
        delivery.status = "retrying"
        delivery.error_message = outcome.error
        delivery.next_retry_at = get_next_retry_time(delivery.attempt_count, now)


async def _attempt(
    webhook: Webhook,
    event: str,
    payload: dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DeliveryResult:
    try:
        secret = decrypt_value(webhook.secret)
    except ValueError as e:
        log_and_continue(logger, e, f"Cannot decrypt secret for webhook {webhook.id}", log_level="error")
        return DeliveryResult(success=False, error="Failed to decrypt webhook secret")

    return await deliver_webhook(webhook.id, webhook.url, secret, event, payload, transport=transport)


async def dispatch_to_webhooks(
    db: AsyncSession,
    event: str,
    data: dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[WebhookDelivery]:
    """Deliver ``event`` to every enabled, subscribed webhook, one after another.

    Each attempt is recorded as a delivery row with ``attempt_count=1``.

    Returns:
        The delivery rows created
    """
    result = await db.execute(select(Webhook).where(Webhook.is_enabled.is_(True)).order_by(Webhook.id))
    webhooks = [w for w in result.scalars().all() if matches_event(w.events, event)]
    if not webhooks:
        logger.debug(f"No webhooks subscribed to '{event}'")
        return []

    max_attempts = await SettingsService.get_int(db, "webhook_max_attempts", default=DEFAULT_MAX_ATTEMPTS)
    envelope = build_envelope(event, data)
    deliveries = []

    for webhook in webhooks:
        outcome = await _attempt(webhook, event, envelope, transport=transport)
        delivery = WebhookDelivery(
            webhook_id=webhook.id,
            event=event,
            payload=envelope,
            attempt_count=1,
            max_attempts=max(max_attempts, 1),
        )
        apply_outcome(delivery, outcome, datetime.now(UTC), first_attempt=True)
        db.add(delivery)
        await db.commit()
        deliveries.append(delivery)

        if outcome.success:
            logger.info(f"Delivered '{event}' to webhook {webhook.id} ({outcome.status_code})")
        else:
            logger.warning(f"Delivery of '{event}' to webhook {webhook.id} failed: {outcome.error}")

    return deliveries


async def _dispatch_in_background(event: str, data: dict[str, Any]) -> None:
    try:
        async with AsyncSessionLocal() as db:
            await dispatch_to_webhooks(db, event, data)
    except Exception as e:
        log_and_continue(logger, e, f"Webhook dispatch for '{event}' failed", log_level="error")


def dispatch_webhook_event(event: str, data: dict[str, Any]) -> Optional[asyncio.Task]:
    """Fire-and-forget dispatch from request handlers.

    The caller never waits for delivery and never sees its errors. ``data``
    must already be JSON-serializable.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning(f"No running event loop, webhook event '{event}' not dispatched")
        return None

    task = loop.create_task(_dispatch_in_background(event, data))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def redeliver(
    db: AsyncSession,
    delivery: WebhookDelivery,
    webhook: Webhook,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DeliveryResult:
    """Run one more attempt for an existing delivery and update it in place.

    The stored envelope is resent as-is; the signature uses the webhook's
    current secret. The caller commits.
    """
    outcome = await _attempt(webhook, delivery.event, delivery.payload, transport=transport)
    delivery.attempt_count = (delivery.attempt_count or 0) + 1
    apply_outcome(delivery, outcome, datetime.now(UTC))
    return outcome


async def process_retries(
    db: AsyncSession,
    limit: int = RETRY_BATCH_SIZE,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, int]:
    """Retry deliveries whose ``next_retry_at`` has passed, oldest first.

    Deliveries of a disabled webhook are left ``retrying`` until it is
    enabled again. Deliveries whose webhook no longer exists are failed.

    Returns:
        ``{"processed", "succeeded", "failed"}`` where ``failed`` counts
        deliveries that became terminal in this pass
    """
    now = datetime.now(UTC)
    result = await db.execute(
        select(WebhookDelivery)
        .outerjoin(Webhook, Webhook.id == WebhookDelivery.webhook_id)
        .where(
            WebhookDelivery.status == "retrying",
            WebhookDelivery.next_retry_at <= now,
            or_(Webhook.id.is_(None), Webhook.is_enabled.is_(True)),
        )
        .order_by(WebhookDelivery.next_retry_at.asc(), WebhookDelivery.id.asc())
        .limit(limit)
    )
    due = list(result.scalars().all())
    stats = {"processed": len(due), "succeeded": 0, "failed": 0}
    if not due:
        return stats

    webhook_ids = {d.webhook_id for d in due}
    webhook_result = await db.execute(select(Webhook).where(Webhook.id.in_(webhook_ids)))
    webhooks = {w.id: w for w in webhook_result.scalars().all()}

    for delivery in due:
        webhook = webhooks.get(delivery.webhook_id)
        if webhook is None:
            delivery.status = "failed"
            delivery.error_message = "Webhook deleted"
            delivery.next_retry_at = None
            stats["failed"] += 1
            await db.commit()
            continue

        outcome = await redeliver(db, delivery, webhook, transport=transport)
        if outcome.success:
            stats["succeeded"] += 1
        elif delivery.status == "failed":
            stats["failed"] += 1
        await db.commit()

    logger.info(
        f"Webhook retry sweep: {stats['processed']} processed, "
        f"{stats['succeeded']} succeeded, {stats['failed']} failed"
    )
    return stats
