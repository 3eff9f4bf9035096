"""Settings API endpoints."""

import logging
from typing import Any, Dict

from apscheduler.triggers.cron import CronTrigger
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.db import get_db
from pyra_workspace.services.activity_service import ActivityService
from pyra_workspace.services.auth import require_admin
from pyra_workspace.services.scheduler import scheduler_service
from pyra_workspace.services.settings_service import SettingsService
from pyra_workspace.utils.error_handling import safe_error_response

logger = logging.getLogger(__name__)
router = APIRouter()

SCHEDULE_KEYS = ("webhook_retry_schedule", "overdue_check_schedule")


def _to_setting_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value).strip()


@router.get("/", response_model=Dict[str, str])
async def get_settings(
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, str]:
    """All settings as a key/value map; encrypted values are masked."""
    try:
        return await SettingsService.get_map(db)
    except Exception as e:
        safe_error_response(logger, e, "فشل في جلب الإعدادات")


@router.patch("/", response_model=Dict[str, str])
async def update_settings(
    request: Request,
    updates: Dict[str, Any] = Body(...),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, str]:
    """Upsert several settings at once.

    Only whitelisted keys are accepted. Schedule changes take effect
    immediately.

    Raises:
        422: Empty body, unknown keys or an invalid cron schedule
    """
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail="يجب تقديم إعدادات للتحديث"
        )

    invalid = sorted(set(updates) - SettingsService.WRITABLE_KEYS)
    if invalid:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"مفاتيح غير مسموح بها: {', '.join(invalid)}",
        )

    values = {key: _to_setting_value(value) for key, value in updates.items()}
    for key in SCHEDULE_KEYS:
        if key in values:
            try:
                CronTrigger.from_crontab(values[key])
            except ValueError:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
                    detail=f"جدول زمني غير صالح: {key}",
                )

    try:
        for key, value in values.items():
            await SettingsService.set(db, key, value, commit=False)
        await db.commit()

        await ActivityService.log(
            db,
            "settings_updated",
            admin,
            target_path="/dashboard/settings",
            details={"keys": sorted(values)},
            request=request,
        )
        await scheduler_service.reload_schedule(db)
        return await SettingsService.get_map(db)
    except HTTPException:
        raise
    except Exception as e:
        safe_error_response(logger, e, "فشل في تحديث الإعدادات")
