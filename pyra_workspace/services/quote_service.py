"""Service layer for quotes."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.exceptions import InvalidStatusTransitionError, NotFoundError, ValidationError
from pyra_workspace.models.quote import Quote, QuoteItem
from pyra_workspace.schemas.quote import QuoteCreate, QuoteUpdate
from pyra_workspace.services import webhook_dispatcher
from pyra_workspace.services.activity_service import escape_like
from pyra_workspace.services.billing import (
    DEFAULT_CURRENCY,
    DEFAULT_TERMS,
    build_item_rows,
    clean,
    compute_totals,
    settings_snapshot,
    today,
)
from pyra_workspace.services.sequence import insert_with_number, resolve_prefix
from pyra_workspace.services.settings_service import SettingsService

logger = logging.getLogger(__name__)

QUOTE_NOT_FOUND = "عرض السعر غير موجود"
DEFAULT_EXPIRY_DAYS = 30

# Allowed next statuses; signed is final
QUOTE_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "draft": ("sent",),
    "sent": ("draft", "viewed"),
    "viewed": ("draft", "signed"),
    "signed": (),
    "expired": ("draft",),
}

CLIENT_FIELDS = (
    "client_id",
    "client_name",
    "client_email",
    "client_company",
    "client_phone",
    "client_address",
    "project_name",
)

COPIED_FIELDS = (
    "expiry_date",
    "currency",
    "subtotal",
    "tax_rate",
    "tax_amount",
    "total",
    "notes",
    "terms_conditions",
    "bank_details",
    "company_name",
    "company_logo",
)


def quote_event_data(quote: Quote) -> dict[str, Any]:
    """JSON-safe summary of a quote for webhook payloads."""
    return {
        "id": quote.id,
        "quote_number": quote.quote_number,
        "status": quote.status,
        "client_id": quote.client_id,
        "client_name": quote.client_name,
        "project_name": quote.project_name,
        "currency": quote.currency,
        "total": quote.total,
    }


class QuoteService:
    """Quote lifecycle: create, edit, send, sign and duplicate."""

    @staticmethod
    async def get_quote(db: AsyncSession, quote_id: int) -> Quote:
        """Load a quote with its items.

        Raises:
            NotFoundError: Unknown quote
        """
        result = await db.execute(
            select(Quote).where(Quote.id == quote_id).execution_options(populate_existing=True)
        )
        quote = result.scalar_one_or_none()
        if not quote:
            raise NotFoundError(QUOTE_NOT_FOUND)
        return quote

    @staticmethod
    async def list_quotes(
        db: AsyncSession,
        status: Optional[str] = None,
        client_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Quote], int]:
        """Page of quotes, newest first.

        ``search`` matches the quote number, client name and project name.
        """
        conditions = []
        if status and status != "all":
            conditions.append(Quote.status == status)
        if client_id:
            conditions.append(Quote.client_id == client_id)
        if search:
            pattern = f"%{escape_like(search.strip())}%"
            conditions.append(
                or_(
                    Quote.quote_number.ilike(pattern, escape="\\"),
                    Quote.client_name.ilike(pattern, escape="\\"),
                    Quote.client_company.ilike(pattern, escape="\\"),
                    Quote.project_name.ilike(pattern, escape="\\"),
                )
            )

        total = (await db.execute(select(func.count(Quote.id)).where(*conditions))).scalar_one()
        result = await db.execute(
            select(Quote)
            .where(*conditions)
            .order_by(Quote.created_at.desc(), Quote.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def create_quote(db: AsyncSession, data: QuoteCreate, created_by: Optional[str] = None) -> Quote:
        """Create a draft quote with the next number in its series.

        Totals are computed from the items and the configured VAT rate; bank
        details and company branding are copied from settings.

        Raises:
            ValidationError: No line items
            SequenceExhaustedError: Number kept colliding on insert
        """
        rows = build_item_rows(data.items)
        prefix = await resolve_prefix(db, "quote", data.prefix)
        snapshot = await settings_snapshot(db)
        totals = compute_totals(rows, snapshot["tax_rate"])

        expiry_days = await SettingsService.get_int(db, "quote_expiry_days", default=DEFAULT_EXPIRY_DAYS)
        estimate_date = data.estimate_date or today()
        expiry_date = data.expiry_date or estimate_date + timedelta(days=expiry_days)
        client = {field: clean(getattr(data, field)) for field in CLIENT_FIELDS}

        def build(number: str) -> Quote:
            return Quote(
                quote_number=number,
                status="draft",
                **client,
                estimate_date=estimate_date,
                expiry_date=expiry_date,
                currency=DEFAULT_CURRENCY,
                subtotal=totals.subtotal,
                tax_rate=totals.tax_rate,
                tax_amount=totals.tax_amount,
                total=totals.total,
                notes=clean(data.notes),
                terms_conditions=list(DEFAULT_TERMS),
                bank_details=snapshot["bank_details"],
                company_name=snapshot["company_name"],
                company_logo=snapshot["company_logo"],
                created_by=created_by,
                items=[QuoteItem(**row) for row in rows],
            )

        quote = await insert_with_number(db, Quote.quote_number, prefix, build)
        quote = await QuoteService.get_quote(db, quote.id)

        logger.info(f"Created quote {quote.quote_number} (total {quote.total} {quote.currency})")
        webhook_dispatcher.dispatch_webhook_event("quote_created", quote_event_data(quote))
        return quote

    @staticmethod
    def _apply_status(quote: Quote, requested: str, signed_by: Optional[str], now: datetime) -> Optional[str]:
        """Move ``quote`` to ``requested``; returns the webhook event to fire, if any."""
        current = quote.status
        if requested == current:
            return None
        if requested not in QUOTE_TRANSITIONS.get(current, ()):
            raise InvalidStatusTransitionError(
                current,
                requested,
                f'لا يمكن تغيير حالة عرض السعر من "{current}" إلى "{requested}"',
            )

        quote.status = requested
        if requested == "sent":
            quote.sent_at = now
            return "quote_sent"
        if requested == "viewed":
            quote.viewed_at = now
        elif requested == "signed":
            quote.signed_at = now
            if signed_by:
                quote.signed_by = signed_by.strip()
            return "quote_signed"
        return None

    @staticmethod
    async def update_quote(db: AsyncSession, quote_id: int, data: QuoteUpdate) -> Quote:
        """Apply a partial update.

        ``items`` replaces every line item and recomputes the totals at the
        quote's own tax rate. A status change must follow
        :data:`QUOTE_TRANSITIONS`; repeating the current status is a no-op.

        Raises:
            NotFoundError: Unknown quote
            InvalidStatusTransitionError: Status change not allowed
            ValidationError: Empty ``items``
        """
        quote = await QuoteService.get_quote(db, quote_id)
        now = datetime.now(UTC)

        event = None
        if data.status is not None:
            event = QuoteService._apply_status(quote, data.status, data.signed_by, now)

        fields = data.model_dump(exclude_unset=True, exclude={"status", "items", "signed_by"})
        for field, value in fields.items():
            setattr(quote, field, clean(value))

        if data.items is not None:
            rows = build_item_rows(data.items)
            totals = compute_totals(rows, quote.tax_rate)
            quote.items = [QuoteItem(**row) for row in rows]
            quote.subtotal = totals.subtotal
            quote.tax_amount = totals.tax_amount
            quote.total = totals.total

        quote.updated_at = now
        await db.commit()
        quote = await QuoteService.get_quote(db, quote_id)

        if event:
            logger.info(f"Quote {quote.quote_number} is now {quote.status}")
            webhook_dispatcher.dispatch_webhook_event(event, quote_event_data(quote))
        return quote

    @staticmethod
    async def delete_quote(db: AsyncSession, quote_id: int) -> Quote:
        """Delete a quote and its items."""
        quote = await QuoteService.get_quote(db, quote_id)
        await db.delete(quote)
        await db.commit()
        logger.info(f"Deleted quote {quote.quote_number}")
        return quote

    @staticmethod
    async def send_quote(db: AsyncSession, quote_id: int) -> Quote:
        """Mark a draft quote as sent.

        Raises:
            ValidationError: Quote is not a draft
        """
        quote = await QuoteService.get_quote(db, quote_id)
        if quote.status != "draft":
            raise ValidationError("لا يمكن إرسال عرض السعر إلا من حالة المسودة")

        now = datetime.now(UTC)
        quote.status = "sent"
        quote.sent_at = now
        quote.updated_at = now
        await db.commit()
        quote = await QuoteService.get_quote(db, quote_id)

        webhook_dispatcher.dispatch_webhook_event("quote_sent", quote_event_data(quote))
        return quote

    @staticmethod
    async def duplicate_quote(db: AsyncSession, quote_id: int, created_by: Optional[str] = None) -> Quote:
        """Copy a quote into a new draft with a fresh number.

        The copy is dated today and drops every send/view/sign stamp.
        """
        original = await QuoteService.get_quote(db, quote_id)
        prefix = await resolve_prefix(db, "quote")
        rows = [
            {
                "sort_order": index,
                "description": item.description,
                "quantity": item.quantity,
                "rate": item.rate,
                "amount": item.amount,
            }
            for index, item in enumerate(original.items, start=1)
        ]

        # Snapshot now: a rolled back insert attempt expires ``original``
        copied = {field: getattr(original, field) for field in CLIENT_FIELDS + COPIED_FIELDS}
        original_number = original.quote_number

        def build(number: str) -> Quote:
            return Quote(
                quote_number=number,
                status="draft",
                **copied,
                estimate_date=today(),
                created_by=created_by,
                items=[QuoteItem(**row) for row in rows],
            )

        copy = await insert_with_number(db, Quote.quote_number, prefix, build)
        copy = await QuoteService.get_quote(db, copy.id)
        logger.info(f"Duplicated quote {original_number} as {copy.quote_number}")
        return copy
