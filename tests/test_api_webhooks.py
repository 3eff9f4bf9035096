"""Tests for Webhooks API (pyra_workspace/api/webhooks.py).

Tests webhook management endpoints:
- GET /api/v1/webhooks - List webhooks with delivery stats
- POST /api/v1/webhooks - Create webhook
- GET /api/v1/webhooks/{id} - Get webhook by ID
- PATCH /api/v1/webhooks/{id} - Update webhook / rotate secret
- DELETE /api/v1/webhooks/{id} - Delete webhook
- PATCH /api/v1/webhooks/{id}/toggle - Enable / disable
- POST /api/v1/webhooks/{id}/test - Test webhook delivery
- GET /api/v1/webhooks/{id}/deliveries - Delivery history
- POST /api/v1/webhooks/{id}/deliveries/{delivery_id}/retry - Manual retry
- POST /api/v1/webhooks/process-retries - Retry sweep
"""

import hashlib
import hmac
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import httpx
from fastapi import status
from sqlalchemy import select

from pyra_workspace.models.activity_log import ActivityLog
from pyra_workspace.models.webhook import Webhook, WebhookDelivery
from pyra_workspace.services.auth import create_access_token
from pyra_workspace.utils.encryption import decrypt_value

BASE = "/api/v1/webhooks/"


async def add_delivery(db, webhook_id, **kwargs):
    defaults = {
        "event": "invoice_paid",
        "payload": {"event": "invoice_paid", "timestamp": "2025-01-01T00:00:00.000Z", "data": {"id": 1}},
        "attempt_count": 1,
        "max_attempts": 3,
        "status": "success",
    }
    delivery = WebhookDelivery(webhook_id=webhook_id, **{**defaults, **kwargs})
    db.add(delivery)
    await db.commit()
    await db.refresh(delivery)
    return delivery


async def activity_types(db):
    result = await db.execute(select(ActivityLog.action_type).order_by(ActivityLog.id))
    return list(result.scalars().all())


class TestListWebhooksEndpoint:
    """Test suite for GET /api/v1/webhooks endpoint."""

    async def test_list_webhooks_empty(self, authenticated_client):
        """Test listing webhooks when none exist."""
        response = await authenticated_client.get(BASE)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["items"] == []
        assert data["total"] == 0
        assert data["page"] == 1

    async def test_list_webhooks_with_stats(self, authenticated_client, db, make_webhook):
        """Each webhook carries its delivery totals and success rate."""
        busy = await make_webhook(name="busy")
        await make_webhook(name="quiet")
        for state in ("success", "success", "success", "failed"):
            await add_delivery(db, busy.id, status=state)

        response = await authenticated_client.get(BASE)

        assert response.status_code == status.HTTP_200_OK
        items = {w["name"]: w for w in response.json()["items"]}
        assert items["busy"]["total_deliveries"] == 4
        assert items["busy"]["success_deliveries"] == 3
        assert items["busy"]["success_rate"] == 75.0
        assert items["busy"]["last_delivery_at"] is not None
        assert items["quiet"]["total_deliveries"] == 0
        assert items["quiet"]["success_rate"] == 0.0
        assert "secret" not in items["busy"]

    async def test_list_webhooks_paginated(self, authenticated_client, make_webhook):
        for i in range(3):
            await make_webhook(name=f"hook-{i}")

        response = await authenticated_client.get(BASE, params={"page": 2, "page_size": 2})

        data = response.json()
        assert data["total"] == 3
        assert len(data["items"]) == 1

    async def test_list_webhooks_requires_auth(self, client):
        """Test requires authentication."""
        response = await client.get(BASE)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_list_webhooks_requires_admin_role(self, client):
        """A valid token without the admin role is forbidden."""
        token = create_access_token({"sub": "sara", "username": "sara", "role": "employee"})

        response = await client.get(BASE, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestCreateWebhookEndpoint:
    """Test suite for POST /api/v1/webhooks endpoint."""

    async def test_create_webhook_valid(self, authenticated_client, db):
        """Test creating webhook returns the secret once and stores it encrypted."""
        webhook_data = {
            "name": "CRM sync",
            "url": "https://hooks.example.com/pyra",
            "events": ["quote_signed", "invoice_paid"],
        }

        response = await authenticated_client.post(BASE, json=webhook_data)

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["name"] == "CRM sync"
        assert data["url"] == "https://hooks.example.com/pyra"
        assert data["events"] == ["quote_signed", "invoice_paid"]
        assert data["is_enabled"] is True
        assert data["created_by"] == "admin"
        assert data["secret"].startswith("whsec_")

        stored = (await db.execute(select(Webhook).where(Webhook.id == data["id"]))).scalar_one()
        assert stored.secret != data["secret"]
        assert decrypt_value(stored.secret) == data["secret"]
        assert await activity_types(db) == ["webhook_created"]

        # Secret is not shown again
        response = await authenticated_client.get(f"{BASE}{data['id']}")
        assert "secret" not in response.json()

    async def test_create_webhook_wildcard(self, authenticated_client):
        response = await authenticated_client.post(
            BASE, json={"name": "all", "url": "https://hooks.example.com/all", "events": ["*"]}
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["events"] == ["*"]

    async def test_create_webhook_invalid_url(self, authenticated_client):
        """Test creating webhook with invalid URL returns 422."""
        response = await authenticated_client.post(
            BASE, json={"name": "bad", "url": "not-a-valid-url", "events": ["invoice_paid"]}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT

    async def test_create_webhook_ssrf_protection(self, authenticated_client):
        """Test SSRF protection blocks private IPs."""
        for url in ("http://localhost:8080/webhook", "http://192.168.1.10/hook", "http://127.0.0.1/hook"):
            response = await authenticated_client.post(
                BASE, json={"name": "ssrf", "url": url, "events": ["invoice_paid"]}
            )

            assert response.status_code == status.HTTP_400_BAD_REQUEST
            assert "private/internal" in response.json()["detail"]

    async def test_create_webhook_missing_encryption_key(self, authenticated_client, db):
        """A server without an encryption key answers 500 without leaking config details."""
        with (
            patch("pyra_workspace.utils.url_validation.resolve_hostname", return_value="93.184.216.34"),
            patch(
                "pyra_workspace.services.webhook_service.encrypt_value",
                side_effect=ValueError("Encryption key not configured. Set PYRA_ENCRYPTION_KEY"),
            ),
        ):
            response = await authenticated_client.post(
                BASE, json={"name": "CRM sync", "url": "https://hooks.example.com/pyra", "events": ["*"]}
            )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "PYRA_ENCRYPTION_KEY" not in response.json()["detail"]
        assert (await db.execute(select(Webhook))).scalars().all() == []

    async def test_create_webhook_private_urls_allowed_by_setting(self, authenticated_client, db):
        from pyra_workspace.services.settings_service import SettingsService
        await SettingsService.set(db, "webhook_allow_private_urls", "true")

        response = await authenticated_client.post(
            BASE, json={"name": "lan", "url": "http://192.168.1.10/hook", "events": ["invoice_paid"]}
        )

        assert response.status_code == status.HTTP_201_CREATED

    async def test_create_webhook_invalid_events(self, authenticated_client):
        """Unknown event names are rejected."""
        response = await authenticated_client.post(
            BASE, json={"name": "bad", "url": "https://hooks.example.com/x", "events": ["invalid_event"]}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT

    async def test_create_webhook_requires_events(self, authenticated_client):
        response = await authenticated_client.post(
            BASE, json={"name": "none", "url": "https://hooks.example.com/x", "events": []}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT

    async def test_create_webhook_requires_auth(self, client):
        """Test requires authentication."""
        response = await client.post(
            BASE, json={"name": "t", "url": "https://hooks.example.com/x", "events": ["invoice_paid"]}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestGetWebhookEndpoint:
    """Test suite for GET /api/v1/webhooks/{id} endpoint."""

    async def test_get_webhook_valid_id(self, authenticated_client, make_webhook):
        webhook = await make_webhook(name="CRM sync")

        response = await authenticated_client.get(f"{BASE}{webhook.id}")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["id"] == webhook.id
        assert data["total_deliveries"] == 0

    async def test_get_webhook_invalid_id(self, authenticated_client):
        """Test getting webhook with invalid ID returns 404."""
        response = await authenticated_client.get(f"{BASE}99999")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == "الـ Webhook غير موجود"


class TestUpdateWebhookEndpoint:
    """Test suite for PATCH /api/v1/webhooks/{id} endpoint."""

    async def test_update_webhook_valid(self, authenticated_client, db, make_webhook):
        webhook = await make_webhook(name="old-name", events=["quote_sent"])

        response = await authenticated_client.patch(
            f"{BASE}{webhook.id}",
            json={"name": "new-name", "url": "https://hooks.example.com/new", "events": ["quote_sent", "quote_signed"]},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["name"] == "new-name"
        assert data["url"] == "https://hooks.example.com/new"
        assert data["events"] == ["quote_sent", "quote_signed"]
        assert "secret" not in data
        assert await activity_types(db) == ["webhook_updated"]

    async def test_regenerate_secret(self, authenticated_client, db, make_webhook, webhook_secret):
        webhook = await make_webhook()

        response = await authenticated_client.patch(f"{BASE}{webhook.id}", json={"regenerate_secret": True})

        assert response.status_code == status.HTTP_200_OK
        new_secret = response.json()["secret"]
        assert new_secret.startswith("whsec_")
        assert new_secret != webhook_secret
        await db.refresh(webhook)
        assert decrypt_value(webhook.secret) == new_secret

    async def test_update_webhook_invalid_id(self, authenticated_client):
        response = await authenticated_client.patch(f"{BASE}99999", json={"name": "new-name"})

        assert response.status_code == status.HTTP_404_NOT_FOUND

    async def test_update_webhook_ssrf_protection(self, authenticated_client, make_webhook):
        webhook = await make_webhook()

        response = await authenticated_client.patch(f"{BASE}{webhook.id}", json={"url": "http://10.0.0.5/hook"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestDeleteWebhookEndpoint:
    """Test suite for DELETE /api/v1/webhooks/{id} endpoint."""

    async def test_delete_webhook_cascades_deliveries(self, authenticated_client, db, make_webhook):
        webhook = await make_webhook()
        await add_delivery(db, webhook.id)

        response = await authenticated_client.delete(f"{BASE}{webhook.id}")

        assert response.status_code == status.HTTP_204_NO_CONTENT
        verify = await authenticated_client.get(f"{BASE}{webhook.id}")
        assert verify.status_code == status.HTTP_404_NOT_FOUND
        remaining = (await db.execute(select(WebhookDelivery))).scalars().all()
        assert remaining == []
        assert await activity_types(db) == ["webhook_deleted"]

    async def test_delete_webhook_invalid_id(self, authenticated_client):
        response = await authenticated_client.delete(f"{BASE}99999")

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestToggleWebhookEndpoint:
    """Test suite for PATCH /api/v1/webhooks/{id}/toggle endpoint."""

    async def test_toggle_twice(self, authenticated_client, db, make_webhook):
        webhook = await make_webhook(is_enabled=True)

        first = await authenticated_client.patch(f"{BASE}{webhook.id}/toggle")
        second = await authenticated_client.patch(f"{BASE}{webhook.id}/toggle")

        assert first.json()["is_enabled"] is False
        assert second.json()["is_enabled"] is True
        assert await activity_types(db) == ["webhook_disabled", "webhook_enabled"]


class TestTestWebhookEndpoint:
    """Test suite for POST /api/v1/webhooks/{id}/test endpoint."""

    async def test_test_webhook_success(
        self, authenticated_client, db, make_webhook, webhook_transport, webhook_secret
    ):
        """Test event is signed with the webhook secret and recorded."""
        webhook = await make_webhook(events=["invoice_paid"], is_enabled=False)

        response = await authenticated_client.post(f"{BASE}{webhook.id}/test")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is True
        assert data["status_code"] == 200
        assert data["delivery_id"] is not None

        [request] = webhook_transport.requests
        body = json.loads(request.content)
        assert body["event"] == "test"
        assert body["data"] == {"message": "This is a test webhook from Pyra Workspace"}
        assert request.headers["X-Pyra-Signature"] == hmac.new(
            webhook_secret.encode(), request.content, hashlib.sha256
        ).hexdigest()

        delivery = (await db.execute(select(WebhookDelivery))).scalar_one()
        assert delivery.status == "success"
        assert delivery.event == "test"

    async def test_test_webhook_failure(self, authenticated_client, db, make_webhook, webhook_transport):
        """A failing test is recorded as failed and never retried."""
        webhook = await make_webhook()
        webhook_transport.handler = lambda request: httpx.Response(500, text="Internal Server Error")

        response = await authenticated_client.post(f"{BASE}{webhook.id}/test")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is False
        assert data["status_code"] == 500
        assert data["error"] == "HTTP 500"

        delivery = (await db.execute(select(WebhookDelivery))).scalar_one()
        assert delivery.status == "failed"
        assert delivery.next_retry_at is None

    async def test_test_webhook_invalid_id(self, authenticated_client):
        response = await authenticated_client.post(f"{BASE}99999/test")

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestDeliveriesEndpoint:
    """Test suite for GET /api/v1/webhooks/{id}/deliveries endpoint."""

    async def test_list_deliveries_with_status_filter(self, authenticated_client, db, make_webhook):
        webhook = await make_webhook()
        await add_delivery(db, webhook.id, status="success")
        await add_delivery(db, webhook.id, status="failed")
        await add_delivery(db, webhook.id, status="retrying")

        everything = await authenticated_client.get(f"{BASE}{webhook.id}/deliveries")
        failed = await authenticated_client.get(f"{BASE}{webhook.id}/deliveries", params={"status": "failed"})

        assert everything.json()["total"] == 3
        assert failed.json()["total"] == 1
        assert failed.json()["items"][0]["status"] == "failed"

    async def test_invalid_status_filter(self, authenticated_client, make_webhook):
        webhook = await make_webhook()

        response = await authenticated_client.get(f"{BASE}{webhook.id}/deliveries", params={"status": "lost"})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT


class TestRetryDeliveryEndpoint:
    """Test suite for POST /api/v1/webhooks/{id}/deliveries/{delivery_id}/retry endpoint."""

    async def test_retry_failed_delivery(self, authenticated_client, db, make_webhook, webhook_transport):
        webhook = await make_webhook()
        delivery = await add_delivery(db, webhook.id, status="retrying", error_message="HTTP 500")

        response = await authenticated_client.post(f"{BASE}{webhook.id}/deliveries/{delivery.id}/retry")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "success"
        assert data["attempt_count"] == 2
        assert data["error_message"] is None

    async def test_retry_successful_delivery_rejected(self, authenticated_client, db, make_webhook, webhook_transport):
        webhook = await make_webhook()
        delivery = await add_delivery(db, webhook.id, status="success")

        response = await authenticated_client.post(f"{BASE}{webhook.id}/deliveries/{delivery.id}/retry")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT
        assert webhook_transport.requests == []

    async def test_retry_exhausted_delivery_rejected(self, authenticated_client, db, make_webhook, webhook_transport):
        webhook = await make_webhook()
        delivery = await add_delivery(db, webhook.id, status="failed", attempt_count=3, max_attempts=3)

        response = await authenticated_client.post(f"{BASE}{webhook.id}/deliveries/{delivery.id}/retry")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT

    async def test_retry_unknown_delivery(self, authenticated_client, make_webhook, webhook_transport):
        webhook = await make_webhook()

        response = await authenticated_client.post(f"{BASE}{webhook.id}/deliveries/424242/retry")

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestProcessRetriesEndpoint:
    """Test suite for POST /api/v1/webhooks/process-retries endpoint."""

    async def test_process_retries(self, authenticated_client, db, make_webhook, webhook_transport):
        webhook = await make_webhook()
        await add_delivery(
            db,
            webhook.id,
            status="retrying",
            next_retry_at=datetime.now(UTC) - timedelta(minutes=2),
        )

        response = await authenticated_client.post(f"{BASE}process-retries")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"processed": 1, "succeeded": 1, "failed": 0}
        assert len(webhook_transport.requests) == 1
