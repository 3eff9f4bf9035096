"""Service layer for invoices and payments."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.exceptions import InvalidStatusTransitionError, NotFoundError, ValidationError
from pyra_workspace.models.invoice import Invoice, InvoiceItem, Payment
from pyra_workspace.schemas.invoice import InvoiceCreate, InvoiceUpdate, PaymentCreate, RevenueSummary
from pyra_workspace.services import webhook_dispatcher
from pyra_workspace.services.activity_service import escape_like
from pyra_workspace.services.billing import (
    DEFAULT_CURRENCY,
    DEFAULT_TERMS,
    build_item_rows,
    clean,
    compute_totals,
    money,
    settings_snapshot,
    today,
)
from pyra_workspace.services.quote_service import CLIENT_FIELDS, QuoteService
from pyra_workspace.services.sequence import insert_with_number, resolve_prefix
from pyra_workspace.services.settings_service import SettingsService

logger = logging.getLogger(__name__)

INVOICE_NOT_FOUND = "الفاتورة غير موجودة"
DUE_DATE_REQUIRED = "تاريخ الاستحقاق مطلوب"
DEFAULT_PAYMENT_TERMS_DAYS = 30

# Admin-driven status changes; payment and overdue statuses are set by the system
INVOICE_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "draft": ("cancelled",),
    "sent": ("draft", "cancelled"),
    "overdue": ("draft", "cancelled"),
}

OVERDUE_CANDIDATES = ("sent", "partially_paid")
OUTSTANDING_STATUSES = ("sent", "partially_paid", "overdue")
DELETABLE_STATUSES = ("draft", "cancelled")


def invoice_event_data(invoice: Invoice) -> dict[str, Any]:
    """JSON-safe summary of an invoice for webhook payloads."""
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "status": invoice.status,
        "quote_id": invoice.quote_id,
        "client_id": invoice.client_id,
        "client_name": invoice.client_name,
        "project_name": invoice.project_name,
        "currency": invoice.currency,
        "total": invoice.total,
        "amount_paid": invoice.amount_paid,
        "amount_due": invoice.amount_due,
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
    }


class InvoiceService:
    """Invoice lifecycle, payments and revenue reporting."""

    @staticmethod
    async def get_invoice(db: AsyncSession, invoice_id: int) -> Invoice:
        """Load an invoice with its items and payments.

        Raises:
            NotFoundError: Unknown invoice
        """
        result = await db.execute(
            select(Invoice).where(Invoice.id == invoice_id).execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError(INVOICE_NOT_FOUND)
        return invoice

    @staticmethod
    async def list_invoices(
        db: AsyncSession,
        status: Optional[str] = None,
        client_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Invoice], int]:
        """Page of invoices, newest first."""
        conditions = []
        if status and status != "all":
            conditions.append(Invoice.status == status)
        if client_id:
            conditions.append(Invoice.client_id == client_id)
        if search:
            pattern = f"%{escape_like(search.strip())}%"
            conditions.append(
                or_(
                    Invoice.invoice_number.ilike(pattern, escape="\\"),
                    Invoice.client_name.ilike(pattern, escape="\\"),
                    Invoice.client_company.ilike(pattern, escape="\\"),
                    Invoice.project_name.ilike(pattern, escape="\\"),
                )
            )

        total = (await db.execute(select(func.count(Invoice.id)).where(*conditions))).scalar_one()
        result = await db.execute(
            select(Invoice)
            .where(*conditions)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def _insert(db: AsyncSession, prefix: str, fields: dict[str, Any], rows: list[dict[str, Any]]) -> Invoice:
        def build(number: str) -> Invoice:
            return Invoice(
                invoice_number=number,
                status="draft",
                **fields,
                items=[InvoiceItem(**row) for row in rows],
            )

        invoice = await insert_with_number(db, Invoice.invoice_number, prefix, build)
        return await InvoiceService.get_invoice(db, invoice.id)

    @staticmethod
    async def create_invoice(
        db: AsyncSession, data: InvoiceCreate, created_by: Optional[str] = None
    ) -> Invoice:
        """Create a draft invoice with the next number in its series.

        Raises:
            ValidationError: Missing due date or no line items
            SequenceExhaustedError: Number kept colliding on insert
        """
        if data.due_date is None:
            raise ValidationError(DUE_DATE_REQUIRED)
        rows = build_item_rows(data.items)

        if data.parent_invoice_id is not None:
            await InvoiceService.get_invoice(db, data.parent_invoice_id)

        prefix = await resolve_prefix(db, "invoice", data.prefix)
        snapshot = await settings_snapshot(db)
        totals = compute_totals(rows, snapshot["tax_rate"])

        fields = {field: clean(getattr(data, field)) for field in CLIENT_FIELDS}
        fields.update(
            parent_invoice_id=data.parent_invoice_id,
            milestone_type=clean(data.milestone_type),
            issue_date=data.issue_date or today(),
            due_date=data.due_date,
            currency=DEFAULT_CURRENCY,
            subtotal=totals.subtotal,
            tax_rate=totals.tax_rate,
            tax_amount=totals.tax_amount,
            total=totals.total,
            amount_paid=0.0,
            amount_due=totals.total,
            notes=clean(data.notes),
            terms_conditions=list(DEFAULT_TERMS),
            bank_details=snapshot["bank_details"],
            company_name=snapshot["company_name"],
            company_logo=snapshot["company_logo"],
            created_by=created_by,
        )

        invoice = await InvoiceService._insert(db, prefix, fields, rows)
        logger.info(f"Created invoice {invoice.invoice_number} (total {invoice.total} {invoice.currency})")
        webhook_dispatcher.dispatch_webhook_event("invoice_created", invoice_event_data(invoice))
        return invoice

    @staticmethod
    async def create_from_quote(db: AsyncSession, quote_id: int, created_by: Optional[str] = None) -> Invoice:
        """Invoice a signed quote: client, project, items and totals are copied.

        Raises:
            NotFoundError: Unknown quote
            ValidationError: Quote is not signed
        """
        quote = await QuoteService.get_quote(db, quote_id)
        if quote.status != "signed":
            raise ValidationError("يمكن إنشاء فاتورة فقط من عرض سعر موقع")

        payment_days = await SettingsService.get_int(
            db, "payment_terms_days", default=DEFAULT_PAYMENT_TERMS_DAYS
        )
        prefix = await resolve_prefix(db, "invoice")
        issue_date = today()

        rows = [
            {
                "sort_order": index,
                "description": item.description,
                "quantity": item.quantity,
                "rate": item.rate,
                "amount": item.amount,
            }
            for index, item in enumerate(quote.items, start=1)
        ]
        fields = {field: getattr(quote, field) for field in CLIENT_FIELDS}
        fields.update(
            quote_id=quote.id,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=payment_days),
            currency=quote.currency,
            subtotal=quote.subtotal,
            tax_rate=quote.tax_rate,
            tax_amount=quote.tax_amount,
            total=quote.total,
            amount_paid=0.0,
            amount_due=quote.total,
            notes=quote.notes,
            terms_conditions=quote.terms_conditions,
            bank_details=quote.bank_details,
            company_name=quote.company_name,
            company_logo=quote.company_logo,
            created_by=created_by,
        )
        quote_number = quote.quote_number

        invoice = await InvoiceService._insert(db, prefix, fields, rows)
        logger.info(f"Created invoice {invoice.invoice_number} from quote {quote_number}")
        webhook_dispatcher.dispatch_webhook_event("invoice_created", invoice_event_data(invoice))
        return invoice

    @staticmethod
    async def update_invoice(db: AsyncSession, invoice_id: int, data: InvoiceUpdate) -> Invoice:
        """Apply a partial update.

        ``status`` may only move along :data:`INVOICE_TRANSITIONS`. Field and
        item edits require the invoice to be a draft (after any status change
        in the same request). Item replacement recomputes totals and
        ``amount_due``.

        Raises:
            NotFoundError: Unknown invoice
            InvalidStatusTransitionError: Status change not allowed
            ValidationError: Invoice is not editable or ``items`` is empty
        """
        invoice = await InvoiceService.get_invoice(db, invoice_id)

        if data.status is not None and data.status != invoice.status:
            if data.status not in INVOICE_TRANSITIONS.get(invoice.status, ()):
                raise InvalidStatusTransitionError(
                    invoice.status,
                    data.status,
                    f'لا يمكن تغيير الحالة من "{invoice.status}" إلى "{data.status}"',
                )
            invoice.status = data.status

        fields = data.model_dump(exclude_unset=True, exclude={"status", "items"})
        if (fields or data.items is not None) and invoice.status != "draft":
            raise ValidationError("لا يمكن تعديل فاتورة غير مسودة")

        for field, value in fields.items():
            if field == "due_date" and value is None:
                raise ValidationError(DUE_DATE_REQUIRED)
            setattr(invoice, field, clean(value))

        if data.items is not None:
            rows = build_item_rows(data.items)
            totals = compute_totals(rows, invoice.tax_rate)
            invoice.items = [InvoiceItem(**row) for row in rows]
            invoice.subtotal = totals.subtotal
            invoice.tax_amount = totals.tax_amount
            invoice.total = totals.total
            invoice.amount_due = money(max(totals.total - (invoice.amount_paid or 0), 0))

        invoice.updated_at = datetime.now(UTC)
        await db.commit()
        return await InvoiceService.get_invoice(db, invoice_id)

    @staticmethod
    async def delete_invoice(db: AsyncSession, invoice_id: int) -> Invoice:
        """Delete a draft or cancelled invoice with its items and payments.

        Raises:
            ValidationError: Invoice was issued and is still live
        """
        invoice = await InvoiceService.get_invoice(db, invoice_id)
        if invoice.status not in DELETABLE_STATUSES:
            raise ValidationError("لا يمكن حذف فاتورة غير مسودة أو ملغاة")
        await db.delete(invoice)
        await db.commit()
        logger.info(f"Deleted invoice {invoice.invoice_number}")
        return invoice

    @staticmethod
    async def send_invoice(db: AsyncSession, invoice_id: int) -> Invoice:
        """Mark a draft invoice as sent."""
        invoice = await InvoiceService.get_invoice(db, invoice_id)
        if invoice.status != "draft":
            raise ValidationError("لا يمكن إرسال الفاتورة إلا من حالة المسودة")

        now = datetime.now(UTC)
        invoice.status = "sent"
        invoice.sent_at = now
        invoice.updated_at = now
        await db.commit()
        invoice = await InvoiceService.get_invoice(db, invoice_id)

        webhook_dispatcher.dispatch_webhook_event("invoice_sent", invoice_event_data(invoice))
        return invoice

    @staticmethod
    async def record_payment(
        db: AsyncSession, invoice_id: int, data: PaymentCreate, recorded_by: Optional[str] = None
    ) -> tuple[Payment, Invoice]:
        """Record a payment and roll it into the invoice balance.

        The invoice becomes ``paid`` once nothing is due, otherwise
        ``partially_paid``. Overpayment leaves ``amount_due`` at zero.

        Returns:
            The payment and the updated invoice

        Raises:
            ValidationError: Non-positive amount or invoice is draft/cancelled
        """
        if data.amount is None or data.amount <= 0:
            raise ValidationError("مبلغ الدفع يجب أن يكون أكبر من صفر")

        invoice = await InvoiceService.get_invoice(db, invoice_id)
        if invoice.status in ("draft", "cancelled"):
            raise ValidationError("لا يمكن تسجيل دفعة لهذه الفاتورة")

        now = datetime.now(UTC)
        payment = Payment(
            invoice_id=invoice.id,
            amount=money(data.amount),
            payment_date=data.payment_date or today(),
            method=data.method or "bank_transfer",
            reference=clean(data.reference),
            notes=clean(data.notes),
            recorded_by=recorded_by,
        )
        db.add(payment)

        amount_paid = money((invoice.amount_paid or 0) + payment.amount)
        amount_due = money(invoice.total - amount_paid)
        invoice.amount_paid = amount_paid
        invoice.amount_due = max(amount_due, 0.0)
        invoice.status = "paid" if amount_due <= 0 else "partially_paid"
        if invoice.status == "paid":
            invoice.paid_at = now
        invoice.updated_at = now

        await db.commit()
        await db.refresh(payment)
        invoice = await InvoiceService.get_invoice(db, invoice_id)

        logger.info(
            f"Recorded payment of {payment.amount} on {invoice.invoice_number}, now {invoice.status}"
        )
        event_data = invoice_event_data(invoice)
        webhook_dispatcher.dispatch_webhook_event(
            "payment_recorded",
            {**event_data, "payment": {"id": payment.id, "amount": payment.amount, "method": payment.method}},
        )
        if invoice.status == "paid":
            webhook_dispatcher.dispatch_webhook_event("invoice_paid", event_data)
        return payment, invoice

    @staticmethod
    async def list_payments(db: AsyncSession, invoice_id: int) -> list[Payment]:
        await InvoiceService.get_invoice(db, invoice_id)
        result = await db.execute(
            select(Payment)
            .where(Payment.invoice_id == invoice_id)
            .order_by(Payment.payment_date.desc(), Payment.id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def check_overdue(db: AsyncSession) -> int:
        """Flag sent and partially paid invoices past their due date as overdue.

        Returns:
            Number of invoices updated
        """
        result = await db.execute(
            select(Invoice).where(
                Invoice.status.in_(OVERDUE_CANDIDATES),
                Invoice.due_date < today(),
            )
        )
        invoices = list(result.scalars().all())
        if not invoices:
            return 0

        now = datetime.now(UTC)
        for invoice in invoices:
            invoice.status = "overdue"
            invoice.updated_at = now
        await db.commit()

        for invoice in invoices:
            webhook_dispatcher.dispatch_webhook_event("invoice_overdue", invoice_event_data(invoice))

        logger.info(f"Marked {len(invoices)} invoice(s) overdue")
        return len(invoices)

    @staticmethod
    async def revenue_summary(db: AsyncSession) -> RevenueSummary:
        """Revenue, outstanding and overdue totals across every invoice."""
        result = await db.execute(
            select(Invoice.status, Invoice.total, Invoice.amount_due, Invoice.paid_at)
        )
        now = datetime.now(UTC)

        summary = {
            "total_revenue": 0.0,
            "total_outstanding": 0.0,
            "total_overdue": 0.0,
            "revenue_this_month": 0.0,
            "total_invoices": 0,
            "paid_invoices": 0,
            "overdue_invoices": 0,
        }
        for status, total, amount_due, paid_at in result.all():
            summary["total_invoices"] += 1
            if status == "paid":
                summary["total_revenue"] += total or 0
                summary["paid_invoices"] += 1
                if paid_at and (paid_at.year, paid_at.month) == (now.year, now.month):
                    summary["revenue_this_month"] += total or 0
            if status in OUTSTANDING_STATUSES:
                summary["total_outstanding"] += amount_due or 0
            if status == "overdue":
                summary["total_overdue"] += amount_due or 0
                summary["overdue_invoices"] += 1

        for key in ("total_revenue", "total_outstanding", "total_overdue", "revenue_this_month"):
            summary[key] = money(summary[key])
        return RevenueSummary(**summary)
