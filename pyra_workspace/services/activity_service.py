"""Activity log writing and querying."""

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pyra_workspace.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def escape_like(value: str) -> str:
    """Escape LIKE wildcards in user search input."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def client_ip(request: Optional[Request]) -> str:
    """First ``X-Forwarded-For`` hop, else the socket peer, else ``unknown``."""
    if request is None:
        return "server"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


class ActivityService:
    """Audit trail for admin actions."""

    @staticmethod
    async def log(
        db: AsyncSession,
        action_type: str,
        admin: Optional[dict],
        target_path: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        request: Optional[Request] = None,
        commit: bool = True,
    ) -> ActivityLog:
        """Record one action.

        Args:
            db: Database session
            action_type: e.g. ``quote_created``, ``webhook_deleted``
            admin: Authenticated admin dict (``username``, ``display_name``)
            target_path: Dashboard path of the affected record
            details: Extra JSON details
            request: Incoming request, used for the client IP
            commit: Commit immediately (False when the caller commits)
        """
        admin = admin or {}
        entry = ActivityLog(
            action_type=action_type,
            username=admin.get("username", "system"),
            display_name=admin.get("display_name"),
            target_path=target_path,
            details=details or {},
            ip_address=client_ip(request),
        )
        db.add(entry)
        if commit:
            await db.commit()
        logger.debug(f"Activity: {action_type} by {entry.username} on {target_path}")
        return entry

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        action_type: Optional[str] = None,
        username: Optional[str] = None,
        target_path: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[ActivityLog], int]:
        """Filtered page of activity, newest first.

        ``date_to`` includes the whole day.
        """
        conditions = []
        if action_type and action_type != "all":
            conditions.append(ActivityLog.action_type == action_type)
        if username:
            conditions.append(ActivityLog.username == username)
        if target_path:
            conditions.append(ActivityLog.target_path.ilike(f"%{escape_like(target_path)}%", escape="\\"))
        if date_from:
            conditions.append(ActivityLog.created_at >= datetime.combine(date_from, time.min))
        if date_to:
            conditions.append(
                ActivityLog.created_at < datetime.combine(date_to + timedelta(days=1), time.min)
            )

        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

        total = (await db.execute(select(func.count(ActivityLog.id)).where(*conditions))).scalar_one()
        result = await db.execute(
            select(ActivityLog)
            .where(*conditions)
            .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total
