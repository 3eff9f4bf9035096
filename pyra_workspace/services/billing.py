"""Shared quote/invoice helpers: line totals, VAT and settings snapshots."""

from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.exceptions import ValidationError
from pyra_workspace.schemas.document import LineItemIn
from pyra_workspace.services.settings_service import SettingsService

DEFAULT_CURRENCY = "AED"
DEFAULT_VAT_RATE = 5.0
ITEMS_REQUIRED = "يجب إضافة عنصر واحد على الأقل"

DEFAULT_TERMS = [
    {"text": "Quotation valid for 30 days from the date of issue."},
    {"text": "50% advance payment required to commence work."},
    {"text": "Balance payment due upon project completion."},
]

BANK_KEYS = ("bank_name", "bank_account_name", "bank_account_no", "bank_iban")
COMPANY_KEYS = ("company_name", "company_logo")


def money(value: float) -> float:
    return round(float(value), 2)


def today() -> date:
    """Current UTC calendar date."""
    return datetime.now(UTC).date()


@dataclass
class Totals:
    subtotal: float
    tax_rate: float
    tax_amount: float
    total: float


def build_item_rows(items: Iterable[LineItemIn]) -> list[dict[str, Any]]:
    """Normalized item rows with ``sort_order`` and ``amount``.

    Raises:
        ValidationError: No items
    """
    rows = [
        {
            "sort_order": index,
            "description": (item.description or "").strip(),
            "quantity": item.quantity or 0,
            "rate": item.rate or 0,
            "amount": money((item.quantity or 0) * (item.rate or 0)),
        }
        for index, item in enumerate(items, start=1)
    ]
    if not rows:
        raise ValidationError(ITEMS_REQUIRED)
    return rows


def compute_totals(rows: Iterable[dict[str, Any]], tax_rate: float) -> Totals:
    subtotal = money(sum(row["amount"] for row in rows))
    tax_amount = money(subtotal * tax_rate / 100)
    return Totals(subtotal=subtotal, tax_rate=tax_rate, tax_amount=tax_amount, total=money(subtotal + tax_amount))


async def settings_snapshot(db: AsyncSession) -> dict[str, Any]:
    """VAT rate, bank details and company branding copied onto new documents."""
    values = await SettingsService.get_many(db, BANK_KEYS + COMPANY_KEYS)
    return {
        "tax_rate": await SettingsService.get_float(db, "vat_rate", default=DEFAULT_VAT_RATE),
        "bank_details": {
            "bank": values.get("bank_name", ""),
            "account_name": values.get("bank_account_name", ""),
            "account_no": values.get("bank_account_no", ""),
            "iban": values.get("bank_iban", ""),
        },
        "company_name": values.get("company_name") or None,
        "company_logo": values.get("company_logo") or None,
    }


def clean(value: Any) -> Any:
    """Strip strings and turn blanks into None."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value
