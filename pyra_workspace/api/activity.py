"""Activity log API endpoints."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.db import get_db
from pyra_workspace.schemas.activity import ActivityListResponse, ActivityLogSchema
from pyra_workspace.services.activity_service import MAX_PAGE_SIZE, ActivityService
from pyra_workspace.services.auth import require_admin
from pyra_workspace.utils.error_handling import safe_error_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=ActivityListResponse, status_code=status.HTTP_200_OK)
async def list_activity(
    action_type: Optional[str] = None,
    username: Optional[str] = None,
    target_path: Optional[str] = None,
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ActivityListResponse:
    """Filtered activity feed, newest first.

    ``to`` includes the whole day.
    """
    try:
        entries, total = await ActivityService.list_entries(
            db,
            action_type=action_type,
            username=username,
            target_path=target_path,
            date_from=date_from,
            date_to=date_to,
            page=page,
            page_size=page_size,
        )
        return ActivityListResponse(
            items=[ActivityLogSchema.model_validate(e) for e in entries],
            total=total,
            page=page,
            page_size=page_size,
        )
    except Exception as e:
        safe_error_response(logger, e, "فشل في جلب سجل النشاط")
