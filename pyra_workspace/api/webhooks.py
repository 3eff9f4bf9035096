"""API endpoints for webhook management."""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.db import get_db
from pyra_workspace.dependencies import Pagination, get_webhook_transport
from pyra_workspace.schemas.webhook import (
    RetrySweepResponse,
    WebhookCreate,
    WebhookDeliveryListResponse,
    WebhookDeliverySchema,
    WebhookListResponse,
    WebhookSchema,
    WebhookStats,
    WebhookTestResponse,
    WebhookUpdate,
    WebhookWithSecret,
)
from pyra_workspace.services import webhook_dispatcher
from pyra_workspace.services.activity_service import ActivityService
from pyra_workspace.services.auth import require_admin
from pyra_workspace.services.webhook_service import WebhookService
from pyra_workspace.utils.error_handling import DOMAIN_ERRORS, raise_http_error, safe_error_response

logger = logging.getLogger(__name__)

router = APIRouter()


def _target(webhook_id: int) -> str:
    return f"/dashboard/webhooks/{webhook_id}"


@router.get("/", response_model=WebhookListResponse, status_code=status.HTTP_200_OK)
async def list_webhooks(
    pagination: Pagination = Depends(),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> WebhookListResponse:
    """List webhooks with delivery statistics, newest first."""
    try:
        webhooks, total = await WebhookService.list_webhooks(db, pagination.page, pagination.page_size)
        return WebhookListResponse(
            items=webhooks, total=total, page=pagination.page, page_size=pagination.page_size
        )
    except Exception as e:
        safe_error_response(logger, e, "فشل في جلب الـ Webhooks")


@router.post("/", response_model=WebhookWithSecret, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    webhook: WebhookCreate,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> WebhookWithSecret:
    """Create a new webhook.

    SSRF Protection: Webhook URLs pointing to private/internal IPs are blocked.

    Returns:
        Created webhook including its signing secret (shown only once)

    Raises:
        400: URL points to a private/internal address
        422: Invalid name, URL or events
    """
    try:
        created = await WebhookService.create_webhook(db, webhook, created_by=admin["username"])
        await ActivityService.log(
            db,
            "webhook_created",
            admin,
            target_path=_target(created.id),
            details={"name": created.name, "url": created.url, "events": created.events},
            request=request,
        )
        return created
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
    except Exception as e:
        safe_error_response(logger, e, "فشل في إنشاء الـ Webhook")


@router.post("/process-retries", response_model=RetrySweepResponse, status_code=status.HTTP_200_OK)
async def process_retries(
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_webhook_transport),
) -> RetrySweepResponse:
    """Run one retry sweep over due deliveries now."""
    try:
        stats = await webhook_dispatcher.process_retries(db, transport=transport)
        return RetrySweepResponse(**stats)
    except Exception as e:
        safe_error_response(logger, e, "فشل في معالجة إعادة المحاولات")


@router.get("/{webhook_id}", response_model=WebhookStats, status_code=status.HTTP_200_OK)
async def get_webhook(
    webhook_id: int,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> WebhookStats:
    """Get a webhook with its delivery statistics.

    Raises:
        404: Webhook not found
    """
    try:
        return await WebhookService.get_webhook(db, webhook_id)
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.patch("/{webhook_id}", response_model=WebhookWithSecret | WebhookSchema, status_code=status.HTTP_200_OK)
async def update_webhook(
    webhook_id: int,
    webhook: WebhookUpdate,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> WebhookWithSecret | WebhookSchema:
    """Update an existing webhook.

    ``regenerate_secret: true`` rotates the signing secret and returns it.

    Raises:
        400: URL points to a private/internal address
        404: Webhook not found
    """
    try:
        updated = await WebhookService.update_webhook(db, webhook_id, webhook)
        changes = webhook.model_dump(exclude_unset=True, mode="json")
        await ActivityService.log(
            db,
            "webhook_updated",
            admin,
            target_path=_target(webhook_id),
            details={"name": updated.name, "changes": sorted(changes)},
            request=request,
        )
        return updated
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
    except Exception as e:
        safe_error_response(logger, e, "فشل في تحديث الـ Webhook")


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: int,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete a webhook and its delivery history.

    Raises:
        404: Webhook not found
    """
    try:
        deleted = await WebhookService.delete_webhook(db, webhook_id)
        await ActivityService.log(
            db,
            "webhook_deleted",
            admin,
            target_path=_target(webhook_id),
            details={"name": deleted.name, "url": deleted.url},
            request=request,
        )
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.patch("/{webhook_id}/toggle", response_model=WebhookSchema, status_code=status.HTTP_200_OK)
async def toggle_webhook(
    webhook_id: int,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> WebhookSchema:
    """Enable or disable a webhook."""
    try:
        webhook = await WebhookService.toggle_webhook(db, webhook_id)
        await ActivityService.log(
            db,
            "webhook_enabled" if webhook.is_enabled else "webhook_disabled",
            admin,
            target_path=_target(webhook_id),
            details={"name": webhook.name},
            request=request,
        )
        return webhook
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.post("/{webhook_id}/test", response_model=WebhookTestResponse, status_code=status.HTTP_200_OK)
async def test_webhook(
    webhook_id: int,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_webhook_transport),
) -> WebhookTestResponse:
    """Send a test payload to a webhook.

    Delivery failures are reported in the body, not as HTTP errors.

    Raises:
        404: Webhook not found
    """
    try:
        return await WebhookService.test_webhook(db, webhook_id, transport=transport)
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.get(
    "/{webhook_id}/deliveries",
    response_model=WebhookDeliveryListResponse,
    status_code=status.HTTP_200_OK,
)
async def list_deliveries(
    webhook_id: int,
    delivery_status: Optional[str] = Query(None, alias="status"),
    pagination: Pagination = Depends(),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> WebhookDeliveryListResponse:
    """Delivery history of one webhook, newest first."""
    try:
        deliveries, total = await WebhookService.list_deliveries(
            db, webhook_id, delivery_status, pagination.page, pagination.page_size
        )
        return WebhookDeliveryListResponse(
            items=[WebhookDeliverySchema.model_validate(d) for d in deliveries],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.post(
    "/{webhook_id}/deliveries/{delivery_id}/retry",
    response_model=WebhookDeliverySchema,
    status_code=status.HTTP_200_OK,
)
async def retry_delivery(
    webhook_id: int,
    delivery_id: int,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_webhook_transport),
) -> WebhookDeliverySchema:
    """Re-attempt a failed or retrying delivery immediately.

    Raises:
        404: Webhook or delivery not found
        422: Delivery already succeeded or has no attempts left
    """
    try:
        delivery = await WebhookService.retry_delivery(db, webhook_id, delivery_id, transport=transport)
        return WebhookDeliverySchema.model_validate(delivery)
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
