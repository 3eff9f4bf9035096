"""Tests for Quotes API (pyra_workspace/api/quotes.py).

Tests quote endpoints:
- GET /api/v1/quotes - List with status / client / search filters
- POST /api/v1/quotes - Create draft with computed totals
- GET /api/v1/quotes/{id} - Quote with line items
- PATCH /api/v1/quotes/{id} - Update, status transitions
- DELETE /api/v1/quotes/{id} - Delete
- POST /api/v1/quotes/{id}/send - Mark sent
- POST /api/v1/quotes/{id}/duplicate - Copy to new draft
"""

from datetime import timedelta

import pytest
from fastapi import status
from sqlalchemy import select

from pyra_workspace.models.activity_log import ActivityLog
from pyra_workspace.models.quote import QuoteItem
from pyra_workspace.services.billing import today
from pyra_workspace.services.settings_service import SettingsService

BASE = "/api/v1/quotes/"


@pytest.fixture
def create_quote(authenticated_client, line_items):
    """Create a quote through the API and return its JSON."""

    async def _create(**overrides):
        payload = {
            "client_name": "Nour Trading",
            "client_email": "accounts@nour.example",
            "client_company": "Nour Trading LLC",
            "project_name": "Brand refresh",
            "items": line_items,
            **overrides,
        }
        response = await authenticated_client.post(BASE, json=payload)
        assert response.status_code == status.HTTP_201_CREATED, response.text
        return response.json()

    return _create


async def move_to(authenticated_client, quote_id, *statuses):
    for next_status in statuses:
        response = await authenticated_client.patch(f"{BASE}{quote_id}", json={"status": next_status})
        assert response.status_code == status.HTTP_200_OK, response.text
    return response.json()


def dispatched_events(mock_dispatch):
    return [call.args[0] for call in mock_dispatch.call_args_list]


class TestCreateQuote:
    """Test suite for POST /api/v1/quotes."""

    async def test_create_computes_totals_at_default_vat(self, create_quote, mock_dispatch):
        """2 x 1500 + 1 x 500 = 3500, 5% VAT = 175, total 3675."""
        quote = await create_quote()

        assert quote["quote_number"] == "QT-0001"
        assert quote["status"] == "draft"
        assert quote["subtotal"] == 3500
        assert quote["tax_rate"] == 5
        assert quote["tax_amount"] == 175
        assert quote["total"] == 3675
        assert quote["currency"] == "AED"
        assert quote["created_by"] == "admin"
        assert [i["amount"] for i in quote["items"]] == [3000, 500]
        assert [i["sort_order"] for i in quote["items"]] == [1, 2]
        assert dispatched_events(mock_dispatch) == ["quote_created"]
        assert mock_dispatch.call_args.args[1]["quote_number"] == "QT-0001"

    async def test_dates_default_from_settings(self, create_quote, db):
        await SettingsService.set(db, "quote_expiry_days", "14")

        quote = await create_quote(estimate_date="2025-05-01")

        assert quote["estimate_date"] == "2025-05-01"
        assert quote["expiry_date"] == "2025-05-15"

    async def test_estimate_date_defaults_to_today(self, create_quote):
        quote = await create_quote()

        assert quote["estimate_date"] == today().isoformat()
        assert quote["expiry_date"] == (today() + timedelta(days=30)).isoformat()

    async def test_snapshot_of_settings(self, create_quote, db):
        """VAT, bank details and branding are copied at creation time."""
        await SettingsService.set(db, "vat_rate", "15")
        await SettingsService.set(db, "bank_name", "Emirates NBD")
        await SettingsService.set(db, "bank_iban", "AE070331234567890123456")
        await SettingsService.set(db, "company_name", "Pyra Studio")

        quote = await create_quote()
        await SettingsService.set(db, "vat_rate", "0")

        assert quote["tax_rate"] == 15
        assert quote["tax_amount"] == 525
        assert quote["total"] == 4025
        assert quote["bank_details"]["bank"] == "Emirates NBD"
        assert quote["bank_details"]["iban"] == "AE070331234567890123456"
        assert quote["company_name"] == "Pyra Studio"
        assert len(quote["terms_conditions"]) == 3

    async def test_numbers_increment(self, create_quote):
        first = await create_quote()
        second = await create_quote()

        assert first["quote_number"] == "QT-0001"
        assert second["quote_number"] == "QT-0002"

    async def test_prefix_override_and_setting(self, create_quote, db):
        custom = await create_quote(prefix="PRJ")
        await SettingsService.set(db, "quote_prefix", "EST")
        configured = await create_quote()

        assert custom["quote_number"] == "PRJ-0001"
        assert configured["quote_number"] == "EST-0001"

    async def test_items_required(self, authenticated_client, mock_dispatch):
        response = await authenticated_client.post(BASE, json={"client_name": "Nour", "items": []})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT
        mock_dispatch.assert_not_called()

    async def test_activity_logged(self, create_quote, db):
        quote = await create_quote()

        entry = (await db.execute(select(ActivityLog))).scalar_one()
        assert entry.action_type == "quote_created"
        assert entry.target_path == f"/dashboard/quotes/{quote['id']}"
        assert entry.details["quote_number"] == "QT-0001"

    async def test_requires_auth(self, client):
        response = await client.post(BASE, json={"items": []})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestListQuotes:
    """Test suite for GET /api/v1/quotes."""

    async def test_filters_and_search(self, authenticated_client, create_quote):
        await create_quote(client_name="Nour Trading", client_id="c-1")
        await create_quote(client_name="Atlas Foods", client_company="Atlas Group", client_id="c-2")
        sent = await create_quote(client_name="Nour Trading", project_name="Website", client_id="c-1")
        await authenticated_client.post(f"{BASE}{sent['id']}/send")

        everything = await authenticated_client.get(BASE)
        drafts = await authenticated_client.get(BASE, params={"status": "draft"})
        by_client = await authenticated_client.get(BASE, params={"client_id": "c-1"})
        by_company = await authenticated_client.get(BASE, params={"search": "atlas group"})
        by_number = await authenticated_client.get(BASE, params={"search": "QT-0003"})

        assert everything.json()["total"] == 3
        assert [q["quote_number"] for q in everything.json()["items"]] == ["QT-0003", "QT-0002", "QT-0001"]
        assert drafts.json()["total"] == 2
        assert by_client.json()["total"] == 2
        assert by_company.json()["items"][0]["client_name"] == "Atlas Foods"
        assert by_number.json()["items"][0]["project_name"] == "Website"

    async def test_search_escapes_wildcards(self, authenticated_client, create_quote):
        await create_quote(client_name="Nour Trading")

        response = await authenticated_client.get(BASE, params={"search": "%"})

        assert response.json()["total"] == 0


class TestGetQuote:
    """Test suite for GET /api/v1/quotes/{id}."""

    async def test_get_with_items(self, authenticated_client, create_quote):
        quote = await create_quote()

        response = await authenticated_client.get(f"{BASE}{quote['id']}")

        assert response.status_code == status.HTTP_200_OK
        assert len(response.json()["items"]) == 2

    async def test_not_found(self, authenticated_client):
        response = await authenticated_client.get(f"{BASE}99999")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == "عرض السعر غير موجود"


class TestUpdateQuote:
    """Test suite for PATCH /api/v1/quotes/{id}."""

    async def test_replace_items_recomputes_totals(self, authenticated_client, create_quote, db):
        quote = await create_quote()

        response = await authenticated_client.patch(
            f"{BASE}{quote['id']}",
            json={"items": [{"description": "Retainer", "quantity": 1, "rate": 1000}], "notes": " Net 15 "},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["subtotal"] == 1000
        assert data["tax_amount"] == 50
        assert data["total"] == 1050
        assert data["notes"] == "Net 15"
        assert [i["description"] for i in data["items"]] == ["Retainer"]
        rows = (await db.execute(select(QuoteItem))).scalars().all()
        assert len(rows) == 1

    async def test_full_lifecycle_to_signed(self, authenticated_client, create_quote, mock_dispatch):
        quote = await create_quote()

        await move_to(authenticated_client, quote["id"], "sent", "viewed")
        response = await authenticated_client.patch(
            f"{BASE}{quote['id']}", json={"status": "signed", "signed_by": " Huda Saleh "}
        )

        data = response.json()
        assert data["status"] == "signed"
        assert data["signed_by"] == "Huda Saleh"
        assert data["sent_at"] is not None
        assert data["viewed_at"] is not None
        assert data["signed_at"] is not None
        assert dispatched_events(mock_dispatch) == ["quote_created", "quote_sent", "quote_signed"]

    @pytest.mark.parametrize(
        "path,target",
        [
            ((), "signed"),
            ((), "viewed"),
            (("sent",), "signed"),
            (("sent", "viewed", "signed"), "draft"),
            ((), "expired"),
        ],
    )
    async def test_illegal_transitions(self, authenticated_client, create_quote, path, target):
        quote = await create_quote()
        if path:
            await move_to(authenticated_client, quote["id"], *path)

        response = await authenticated_client.patch(f"{BASE}{quote['id']}", json={"status": target})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT
        assert "لا يمكن تغيير حالة عرض السعر" in response.json()["detail"]

    async def test_back_to_draft(self, authenticated_client, create_quote):
        quote = await create_quote()

        data = await move_to(authenticated_client, quote["id"], "sent", "draft")

        assert data["status"] == "draft"

    async def test_same_status_is_noop(self, authenticated_client, create_quote, mock_dispatch):
        quote = await create_quote()

        response = await authenticated_client.patch(f"{BASE}{quote['id']}", json={"status": "draft"})

        assert response.status_code == status.HTTP_200_OK
        assert dispatched_events(mock_dispatch) == ["quote_created"]

    async def test_not_found(self, authenticated_client):
        response = await authenticated_client.patch(f"{BASE}99999", json={"notes": "x"})

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestDeleteQuote:
    """Test suite for DELETE /api/v1/quotes/{id}."""

    async def test_delete_removes_items(self, authenticated_client, create_quote, db):
        quote = await create_quote()

        response = await authenticated_client.delete(f"{BASE}{quote['id']}")

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert (await authenticated_client.get(f"{BASE}{quote['id']}")).status_code == status.HTTP_404_NOT_FOUND
        assert (await db.execute(select(QuoteItem))).scalars().all() == []

    async def test_delete_not_found(self, authenticated_client):
        response = await authenticated_client.delete(f"{BASE}99999")

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestSendQuote:
    """Test suite for POST /api/v1/quotes/{id}/send."""

    async def test_send_draft(self, authenticated_client, create_quote, mock_dispatch, db):
        quote = await create_quote()

        response = await authenticated_client.post(f"{BASE}{quote['id']}/send")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "sent"
        assert response.json()["sent_at"] is not None
        assert dispatched_events(mock_dispatch) == ["quote_created", "quote_sent"]
        actions = (await db.execute(select(ActivityLog.action_type))).scalars().all()
        assert "quote_sent" in actions

    async def test_send_twice_rejected(self, authenticated_client, create_quote):
        quote = await create_quote()
        await authenticated_client.post(f"{BASE}{quote['id']}/send")

        response = await authenticated_client.post(f"{BASE}{quote['id']}/send")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT


class TestDuplicateQuote:
    """Test suite for POST /api/v1/quotes/{id}/duplicate."""

    async def test_duplicate_signed_quote(self, authenticated_client, create_quote):
        """The copy is a fresh dated draft with the same client, items and totals."""
        quote = await create_quote(estimate_date="2024-01-10")
        await move_to(authenticated_client, quote["id"], "sent", "viewed", "signed")

        response = await authenticated_client.post(f"{BASE}{quote['id']}/duplicate")

        assert response.status_code == status.HTTP_201_CREATED
        copy = response.json()
        assert copy["id"] != quote["id"]
        assert copy["quote_number"] == "QT-0002"
        assert copy["status"] == "draft"
        assert copy["estimate_date"] == today().isoformat()
        assert copy["sent_at"] is None
        assert copy["signed_at"] is None
        assert copy["signed_by"] is None
        assert copy["client_name"] == quote["client_name"]
        assert copy["total"] == quote["total"]
        assert [i["description"] for i in copy["items"]] == [i["description"] for i in quote["items"]]

    async def test_duplicate_not_found(self, authenticated_client):
        response = await authenticated_client.post(f"{BASE}99999/duplicate")

        assert response.status_code == status.HTTP_404_NOT_FOUND
