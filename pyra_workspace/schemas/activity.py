"""Schemas for the activity log."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict


class ActivityLogSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action_type: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    target_path: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    created_at: datetime


class ActivityListResponse(BaseModel):
    items: List[ActivityLogSchema]
    total: int
    page: int
    page_size: int
