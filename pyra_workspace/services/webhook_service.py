"""Service layer for webhook administration."""

import logging
from datetime import UTC, datetime
from typing import Any, Optional

import httpx
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.exceptions import NotFoundError, ValidationError
from pyra_workspace.models.webhook import Webhook, WebhookDelivery
from pyra_workspace.schemas.webhook import (
    DELIVERY_STATUSES,
    WebhookCreate,
    WebhookSchema,
    WebhookStats,
    WebhookTestResponse,
    WebhookUpdate,
    WebhookWithSecret,
)
from pyra_workspace.services import webhook_dispatcher
from pyra_workspace.services.settings_service import SettingsService
from pyra_workspace.services.webhook_delivery import (
    build_envelope,
    deliver_webhook,
    generate_webhook_secret,
)
from pyra_workspace.utils.encryption import decrypt_value, encrypt_value
from pyra_workspace.utils.url_validation import validate_webhook_url

logger = logging.getLogger(__name__)

WEBHOOK_NOT_FOUND = "الـ Webhook غير موجود"
DELIVERY_NOT_FOUND = "سجل التسليم غير موجود"
TEST_EVENT = "test"
TEST_MESSAGE = "This is a test webhook from Pyra Workspace"


class WebhookService:
    """Service for managing webhooks and their deliveries."""

    @staticmethod
    async def _check_url(db: AsyncSession, url: str) -> None:
        allow_private = await SettingsService.get_bool(db, "webhook_allow_private_urls", default=False)
        validate_webhook_url(url, allow_private=allow_private)

    @staticmethod
    async def _get_or_404(db: AsyncSession, webhook_id: int) -> Webhook:
        result = await db.execute(select(Webhook).where(Webhook.id == webhook_id))
        webhook = result.scalar_one_or_none()
        if not webhook:
            raise NotFoundError(WEBHOOK_NOT_FOUND)
        return webhook

    @staticmethod
    async def _delivery_stats(db: AsyncSession, webhook_ids: list[int]) -> dict[int, dict[str, Any]]:
        """Delivery totals, successes and latest delivery time per webhook."""
        if not webhook_ids:
            return {}
        result = await db.execute(
            select(
                WebhookDelivery.webhook_id,
                func.count(WebhookDelivery.id),
                func.sum(case((WebhookDelivery.status == "success", 1), else_=0)),
                func.max(WebhookDelivery.created_at),
            )
            .where(WebhookDelivery.webhook_id.in_(webhook_ids))
            .group_by(WebhookDelivery.webhook_id)
        )
        stats = {}
        for webhook_id, total, successes, last_at in result.all():
            total = int(total or 0)
            successes = int(successes or 0)
            stats[webhook_id] = {
                "total_deliveries": total,
                "success_deliveries": successes,
                "success_rate": round(successes / total * 100, 1) if total else 0.0,
                "last_delivery_at": last_at,
            }
        return stats

    @staticmethod
    def _with_stats(webhook: Webhook, stats: Optional[dict[str, Any]]) -> WebhookStats:
        base = WebhookSchema.model_validate(webhook).model_dump()
        return WebhookStats(**base, **(stats or {}))

    @staticmethod
    async def create_webhook(
        db: AsyncSession, webhook_data: WebhookCreate, created_by: Optional[str] = None
    ) -> WebhookWithSecret:
        """Register a webhook with a freshly generated signing secret.

        Returns:
            The webhook including the plaintext secret (shown only once)

        Raises:
            SSRFProtectionError: URL points to a private/internal address
        """
        url = str(webhook_data.url)
        await WebhookService._check_url(db, url)

        secret = generate_webhook_secret()
        webhook = Webhook(
            name=webhook_data.name,
            url=url,
            secret=encrypt_value(secret),
            events=webhook_data.events,
            is_enabled=webhook_data.is_enabled,
            created_by=created_by,
        )

        db.add(webhook)
        await db.commit()
        await db.refresh(webhook)

        logger.info(f"Created webhook {webhook.id} ({webhook.name}) for events {webhook.events}")
        return WebhookWithSecret(**WebhookSchema.model_validate(webhook).model_dump(), secret=secret)

    @staticmethod
    async def list_webhooks(
        db: AsyncSession, page: int = 1, page_size: int = 20
    ) -> tuple[list[WebhookStats], int]:
        """Page of webhooks (newest first) with delivery statistics."""
        total = (await db.execute(select(func.count(Webhook.id)))).scalar_one()
        result = await db.execute(
            select(Webhook)
            .order_by(Webhook.created_at.desc(), Webhook.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        webhooks = list(result.scalars().all())
        stats = await WebhookService._delivery_stats(db, [w.id for w in webhooks])
        return [WebhookService._with_stats(w, stats.get(w.id)) for w in webhooks], total

    @staticmethod
    async def get_webhook(db: AsyncSession, webhook_id: int) -> WebhookStats:
        """Get a webhook with its delivery statistics.

        Raises:
            NotFoundError: Unknown webhook
        """
        webhook = await WebhookService._get_or_404(db, webhook_id)
        stats = await WebhookService._delivery_stats(db, [webhook.id])
        return WebhookService._with_stats(webhook, stats.get(webhook.id))

    @staticmethod
    async def update_webhook(
        db: AsyncSession, webhook_id: int, webhook_data: WebhookUpdate
    ) -> WebhookSchema | WebhookWithSecret:
        """Apply a partial update.

        Returns:
            Updated webhook; includes the new secret when one was regenerated
        """
        webhook = await WebhookService._get_or_404(db, webhook_id)

        if webhook_data.url is not None:
            url = str(webhook_data.url)
            await WebhookService._check_url(db, url)
            webhook.url = url
        if webhook_data.name is not None:
            webhook.name = webhook_data.name.strip()
        if webhook_data.events is not None:
            webhook.events = webhook_data.events
        if webhook_data.is_enabled is not None:
            webhook.is_enabled = webhook_data.is_enabled

        new_secret = None
        if webhook_data.regenerate_secret:
            new_secret = generate_webhook_secret()
            webhook.secret = encrypt_value(new_secret)
            logger.info(f"Regenerated secret for webhook {webhook.id}")

        webhook.updated_at = datetime.now(UTC)
        await db.commit()
        await db.refresh(webhook)

        schema = WebhookSchema.model_validate(webhook)
        if new_secret:
            return WebhookWithSecret(**schema.model_dump(), secret=new_secret)
        return schema

    @staticmethod
    async def toggle_webhook(db: AsyncSession, webhook_id: int) -> WebhookSchema:
        """Flip ``is_enabled``."""
        webhook = await WebhookService._get_or_404(db, webhook_id)
        webhook.is_enabled = not webhook.is_enabled
        webhook.updated_at = datetime.now(UTC)
        await db.commit()
        await db.refresh(webhook)
        return WebhookSchema.model_validate(webhook)

    @staticmethod
    async def delete_webhook(db: AsyncSession, webhook_id: int) -> Webhook:
        """Delete a webhook and its delivery history."""
        webhook = await WebhookService._get_or_404(db, webhook_id)
        await db.delete(webhook)
        await db.commit()
        return webhook

    @staticmethod
    async def test_webhook(
        db: AsyncSession,
        webhook_id: int,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> WebhookTestResponse:
        """Send the ``test`` event, bypassing subscriptions and the enabled flag.

        The attempt is recorded as ``success`` or ``failed``; it is never retried.
        """
        webhook = await WebhookService._get_or_404(db, webhook_id)

        try:
            secret = decrypt_value(webhook.secret)
        except ValueError as e:
            logger.error(f"Failed to decrypt webhook secret for {webhook.id}: {e}")
            return WebhookTestResponse(
                success=False,
                error="Failed to decrypt webhook secret",
                message="Test failed (secret unreadable, regenerate it)",
            )

        envelope = build_envelope(TEST_EVENT, {"message": TEST_MESSAGE})
        outcome = await deliver_webhook(webhook.id, webhook.url, secret, TEST_EVENT, envelope, transport=transport)

        now = datetime.now(UTC)
        delivery = WebhookDelivery(
            webhook_id=webhook.id,
            event=TEST_EVENT,
            payload=envelope,
            response_status=outcome.status_code,
            response_body=outcome.body,
            error_message=outcome.error,
            attempt_count=1,
            max_attempts=1,
            status="success" if outcome.success else "failed",
            delivered_at=now if outcome.success else None,
        )
        db.add(delivery)
        await db.commit()

        if outcome.success:
            message = f"Test successful (HTTP {outcome.status_code})"
        elif outcome.status_code:
            message = f"Test failed (HTTP {outcome.status_code})"
        else:
            message = "Test failed (connection error)"

        return WebhookTestResponse(
            success=outcome.success,
            status_code=outcome.status_code,
            response_body=outcome.body,
            error=outcome.error,
            delivery_id=delivery.id,
            message=message,
        )

    @staticmethod
    async def list_deliveries(
        db: AsyncSession,
        webhook_id: int,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[WebhookDelivery], int]:
        """Page of deliveries for one webhook, newest first."""
        await WebhookService._get_or_404(db, webhook_id)

        if status is not None and status not in DELIVERY_STATUSES:
            raise ValidationError(f"حالة غير صالحة: {status}")

        conditions = [WebhookDelivery.webhook_id == webhook_id]
        if status:
            conditions.append(WebhookDelivery.status == status)

        total = (
            await db.execute(select(func.count(WebhookDelivery.id)).where(*conditions))
        ).scalar_one()
        result = await db.execute(
            select(WebhookDelivery)
            .where(*conditions)
            .order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def retry_delivery(
        db: AsyncSession,
        webhook_id: int,
        delivery_id: int,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> WebhookDelivery:
        """Immediately re-attempt one failed or retrying delivery.

        Raises:
            NotFoundError: Unknown webhook or delivery
            ValidationError: Delivery succeeded already or has no attempts left
        """
        webhook = await WebhookService._get_or_404(db, webhook_id)
        result = await db.execute(
            select(WebhookDelivery).where(
                WebhookDelivery.id == delivery_id, WebhookDelivery.webhook_id == webhook_id
            )
        )
        delivery = result.scalar_one_or_none()
        if not delivery:
            raise NotFoundError(DELIVERY_NOT_FOUND)

        if delivery.status not in ("failed", "retrying"):
            raise ValidationError("لا يمكن إعادة المحاولة إلا للتسليمات الفاشلة أو قيد الإعادة")
        if delivery.attempt_count >= delivery.max_attempts:
            raise ValidationError("تم الوصول إلى الحد الأقصى لعدد المحاولات")

        await webhook_dispatcher.redeliver(db, delivery, webhook, transport=transport)
        await db.commit()
        await db.refresh(delivery)
        return delivery
