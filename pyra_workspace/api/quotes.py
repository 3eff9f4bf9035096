"""API endpoints for quotes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.db import get_db
from pyra_workspace.dependencies import Pagination
from pyra_workspace.schemas.quote import QuoteCreate, QuoteDetail, QuoteListResponse, QuoteSchema, QuoteUpdate
from pyra_workspace.services.activity_service import ActivityService
from pyra_workspace.services.auth import require_admin
from pyra_workspace.services.quote_service import QuoteService
from pyra_workspace.utils.error_handling import DOMAIN_ERRORS, raise_http_error, safe_error_response

logger = logging.getLogger(__name__)

router = APIRouter()


def _target(quote_id: int) -> str:
    return f"/dashboard/quotes/{quote_id}"


@router.get("/", response_model=QuoteListResponse, status_code=status.HTTP_200_OK)
async def list_quotes(
    quote_status: Optional[str] = Query(None, alias="status"),
    client_id: Optional[str] = None,
    search: Optional[str] = None,
    pagination: Pagination = Depends(),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> QuoteListResponse:
    """List quotes, newest first."""
    try:
        quotes, total = await QuoteService.list_quotes(
            db, quote_status, client_id, search, pagination.page, pagination.page_size
        )
        return QuoteListResponse(
            items=[QuoteSchema.model_validate(q) for q in quotes],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )
    except Exception as e:
        safe_error_response(logger, e, "فشل في جلب عروض الأسعار")


@router.post("/", response_model=QuoteDetail, status_code=status.HTTP_201_CREATED)
async def create_quote(
    quote: QuoteCreate,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> QuoteDetail:
    """Create a draft quote.

    Raises:
        409: No free number could be allocated
        422: No line items
    """
    try:
        created = await QuoteService.create_quote(db, quote, created_by=admin["username"])
        result = QuoteDetail.model_validate(created)
        await ActivityService.log(
            db,
            "quote_created",
            admin,
            target_path=_target(created.id),
            details={"quote_number": result.quote_number, "client_name": result.client_name, "total": result.total},
            request=request,
        )
        return result
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
    except Exception as e:
        safe_error_response(logger, e, "فشل في إنشاء عرض السعر")


@router.get("/{quote_id}", response_model=QuoteDetail, status_code=status.HTTP_200_OK)
async def get_quote(
    quote_id: int,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> QuoteDetail:
    """Get a quote with its line items."""
    try:
        return QuoteDetail.model_validate(await QuoteService.get_quote(db, quote_id))
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.patch("/{quote_id}", response_model=QuoteDetail, status_code=status.HTTP_200_OK)
async def update_quote(
    quote_id: int,
    quote: QuoteUpdate,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> QuoteDetail:
    """Update a quote; a status change must be an allowed transition.

    Raises:
        404: Quote not found
        422: Illegal status transition or empty items
    """
    try:
        updated = await QuoteService.update_quote(db, quote_id, quote)
        result = QuoteDetail.model_validate(updated)
        await ActivityService.log(
            db,
            "quote_updated",
            admin,
            target_path=_target(quote_id),
            details={
                "quote_number": result.quote_number,
                "status": result.status,
                "changes": sorted(quote.model_dump(exclude_unset=True)),
            },
            request=request,
        )
        return result
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
    except Exception as e:
        safe_error_response(logger, e, "فشل في تحديث عرض السعر")


@router.delete("/{quote_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_quote(
    quote_id: int,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete a quote and its line items."""
    try:
        deleted = await QuoteService.delete_quote(db, quote_id)
        await ActivityService.log(
            db,
            "quote_deleted",
            admin,
            target_path=_target(quote_id),
            details={"quote_number": deleted.quote_number},
            request=request,
        )
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.post("/{quote_id}/send", response_model=QuoteDetail, status_code=status.HTTP_200_OK)
async def send_quote(
    quote_id: int,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> QuoteDetail:
    """Mark a draft quote as sent to the client.

    Raises:
        422: Quote is not a draft
    """
    try:
        sent = await QuoteService.send_quote(db, quote_id)
        result = QuoteDetail.model_validate(sent)
        await ActivityService.log(
            db,
            "quote_sent",
            admin,
            target_path=_target(quote_id),
            details={"quote_number": result.quote_number, "client_email": result.client_email},
            request=request,
        )
        return result
    except DOMAIN_ERRORS as e:
        raise_http_error(e)


@router.post("/{quote_id}/duplicate", response_model=QuoteDetail, status_code=status.HTTP_201_CREATED)
async def duplicate_quote(
    quote_id: int,
    request: Request,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> QuoteDetail:
    """Copy a quote into a new draft with a fresh number."""
    try:
        copy = await QuoteService.duplicate_quote(db, quote_id, created_by=admin["username"])
        result = QuoteDetail.model_validate(copy)
        await ActivityService.log(
            db,
            "quote_duplicated",
            admin,
            target_path=_target(copy.id),
            details={"source_id": quote_id, "quote_number": result.quote_number},
            request=request,
        )
        return result
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise_http_error(e)
    except Exception as e:
        safe_error_response(logger, e, "فشل في نسخ عرض السعر")
