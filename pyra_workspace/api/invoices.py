"""API endpoints for invoices and payments."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.db import get_db
from pyra_workspace.dependencies import Pagination
from pyra_workspace.schemas.invoice import (
    InvoiceCreate,
    InvoiceDetail,
    InvoiceListResponse,
    InvoiceSchema,
    InvoiceUpdate,
    OverdueCheckResponse,
    PaymentCreate,
    PaymentSchema,
    RevenueSummary,
)
from pyra_workspace.services.activity_service import ActivityService
from pyra_workspace.services.auth import require_admin
from pyra_workspace.services.invoice_service import InvoiceService
from pyra_workspace.utils.error_handling import DOMAIN_ERRORS, raise_http_error, safe_error_response

logger = logging.getLogger(__name__)

router = APIRouter()


def _target(invoice_id: int) -> str:
    return f"/dashboard/invoices/{invoice_id}"


@router.get("/", response_model=InvoiceListResponse, status_code=status.HTTP_200_OK)
async def list_invoices(
    invoice_status: Optional[str] = Query(None, alias="status"),
    client_id: Optional[str] = None,
    search: Optional[str] = None,
    pagination: Pagination = Depends(),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceListResponse:
    """List invoices, newest first."""
    try:
        invoices, total = await InvoiceService.list_invoices(
            db, invoice_status, client_id, search, pagination.page, pagination.page_size
        )
        return InvoiceListResponse(
            items=[InvoiceSchema.model_validate(i) for i in invoices],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )
    except Exception as e:
        safe_error_response(logger, e, "فشل في جلب الفواتير")


@router.post("/", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice: InvoiceCreate,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceDetail:
    """Create a draft invoice.

    Raises:
        404: Parent invoice not found
        409: No free number could be allocated
        422: Missing due date or no line items
    """
    try:
        created = await InvoiceService.create_invoice(db, invoice, created_by=admin["username"])
        result = InvoiceDetail.model_validate(created)
        await ActivityService.log(
            db,
            "invoice_created",
            admin,
            target_path=_target(created.id),
            details={"invoice_number": result.invoice_number, "client_name": result.client_name, "total": result.total},
            request=request,
        )
        return result
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
    except Exception as e:
        safe_error_response(logger, e, "فشل في إنشاء الفاتورة")


@router.post("/check-overdue", response_model=OverdueCheckResponse, status_code=status.HTTP_200_OK)
async def check_overdue(
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> OverdueCheckResponse:
    """Flag invoices past their due date as overdue now."""
    try:
        return OverdueCheckResponse(updated=await InvoiceService.check_overdue(db))
    except Exception as e:
        safe_error_response(logger, e, "فشل في فحص الفواتير المتأخرة")


@router.get("/revenue-summary", response_model=RevenueSummary, status_code=status.HTTP_200_OK)
async def revenue_summary(
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> RevenueSummary:
    """Revenue, outstanding and overdue totals across all invoices."""
    try:
        return await InvoiceService.revenue_summary(db)
    except Exception as e:
        safe_error_response(logger, e, "فشل في حساب ملخص الإيرادات")


@router.post("/from-quote/{quote_id}", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
async def create_from_quote(
    quote_id: int,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceDetail:
    """Invoice a signed quote.

    Raises:
        404: Quote not found
        422: Quote is not signed
    """
    try:
        created = await InvoiceService.create_from_quote(db, quote_id, created_by=admin["username"])
        result = InvoiceDetail.model_validate(created)
        await ActivityService.log(
            db,
            "invoice_from_quote",
            admin,
            target_path=_target(created.id),
            details={"invoice_number": result.invoice_number, "quote_id": quote_id, "total": result.total},
            request=request,
        )
        return result
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
    except Exception as e:
        safe_error_response(logger, e, "فشل في إنشاء الفاتورة من عرض السعر")


@router.get("/{invoice_id}", response_model=InvoiceDetail, status_code=status.HTTP_200_OK)
async def get_invoice(
    invoice_id: int,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceDetail:
    """Get an invoice with its items and payments."""
    try:
        return InvoiceDetail.model_validate(await InvoiceService.get_invoice(db, invoice_id))
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.patch("/{invoice_id}", response_model=InvoiceDetail, status_code=status.HTTP_200_OK)
async def update_invoice(
    invoice_id: int,
    invoice: InvoiceUpdate,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceDetail:
    """Update a draft invoice, or move it back to draft or to cancelled.

    Raises:
        404: Invoice not found
        422: Illegal status change, invoice not editable or empty items
    """
    try:
        updated = await InvoiceService.update_invoice(db, invoice_id, invoice)
        result = InvoiceDetail.model_validate(updated)
        await ActivityService.log(
            db,
            "invoice_updated",
            admin,
            target_path=_target(invoice_id),
            details={
                "invoice_number": result.invoice_number,
                "status": result.status,
                "changes": sorted(invoice.model_dump(exclude_unset=True)),
            },
            request=request,
        )
        return result
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
    except Exception as e:
        safe_error_response(logger, e, "فشل في تحديث الفاتورة")


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: int,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete a draft or cancelled invoice.

    Raises:
        422: Invoice is still live
    """
    try:
        deleted = await InvoiceService.delete_invoice(db, invoice_id)
        await ActivityService.log(
            db,
            "invoice_deleted",
            admin,
            target_path=_target(invoice_id),
            details={"invoice_number": deleted.invoice_number},
            request=request,
        )
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.post("/{invoice_id}/send", response_model=InvoiceDetail, status_code=status.HTTP_200_OK)
async def send_invoice(
    invoice_id: int,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceDetail:
    """Mark a draft invoice as sent."""
    try:
        sent = await InvoiceService.send_invoice(db, invoice_id)
        result = InvoiceDetail.model_validate(sent)
        await ActivityService.log(
            db,
            "invoice_sent",
            admin,
            target_path=_target(invoice_id),
            details={"invoice_number": result.invoice_number, "client_email": result.client_email},
            request=request,
        )
        return result
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.post("/{invoice_id}/payments", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
async def record_payment(
    invoice_id: int,
    payment: PaymentCreate,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> InvoiceDetail:
    """Record a payment; returns the invoice with its new balance.

    Raises:
        404: Invoice not found
        422: Non-positive amount or invoice is draft/cancelled
    """
    try:
        recorded, invoice = await InvoiceService.record_payment(
            db, invoice_id, payment, recorded_by=admin["username"]
        )
        result = InvoiceDetail.model_validate(invoice)
        await ActivityService.log(
            db,
            "payment_recorded",
            admin,
            target_path=_target(invoice_id),
            details={
                "invoice_number": result.invoice_number,
                "amount": recorded.amount,
                "method": recorded.method,
                "new_status": result.status,
            },
            request=request,
        )
        return result
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
    except Exception as e:
        safe_error_response(logger, e, "فشل في تسجيل الدفعة")


@router.get("/{invoice_id}/payments", response_model=List[PaymentSchema], status_code=status.HTTP_200_OK)
async def list_payments(
    invoice_id: int,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> List[PaymentSchema]:
    """Payments recorded against an invoice, latest first."""
    try:
        payments = await InvoiceService.list_payments(db, invoice_id)
        return [PaymentSchema.model_validate(p) for p in payments]
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
