"""Schemas for webhook configuration, deliveries and test results."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, HttpUrl, Field, field_validator, ConfigDict


WILDCARD_EVENT = "*"

# Domain events a webhook can subscribe to ("*" subscribes to all of them)
VALID_WEBHOOK_EVENTS = [
    "quote_created",
    "quote_sent",
    "quote_signed",
    "invoice_created",
    "invoice_sent",
    "invoice_paid",
    "invoice_overdue",
    "payment_recorded",
    "file_uploaded",
    "project_created",
    "project_status_changed",
    "client_created",
    "client_comment",
    "approval_status_changed",
]

DELIVERY_STATUSES = ("success", "failed", "retrying")


def _check_events(events: List[str]) -> List[str]:
    invalid_events = [e for e in events if e != WILDCARD_EVENT and e not in VALID_WEBHOOK_EVENTS]
    if invalid_events:
        raise ValueError(
            f"Invalid event types: {invalid_events}. "
            f"Valid events: {VALID_WEBHOOK_EVENTS} or '{WILDCARD_EVENT}'"
        )
    # Preserve order, drop duplicates
    return list(dict.fromkeys(events))


class WebhookCreate(BaseModel):
    """Schema for registering a webhook. The secret is generated server-side."""

    name: str = Field(..., min_length=1, max_length=100)
    url: HttpUrl = Field(..., description="Receiver URL (HTTPS recommended)")
    events: List[str] = Field(..., min_length=1, description="Event names or '*'")
    is_enabled: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v

    @field_validator("events")
    @classmethod
    def validate_events(cls, v):
        """Validate that all events are recognized."""
        return _check_events(v)


class WebhookUpdate(BaseModel):
    """Schema for a partial webhook update."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    url: Optional[HttpUrl] = None
    events: Optional[List[str]] = Field(None, min_length=1)
    is_enabled: Optional[bool] = None
    regenerate_secret: bool = False

    @field_validator("events")
    @classmethod
    def validate_events(cls, v):
        if v is not None:
            return _check_events(v)
        return v


class WebhookSchema(BaseModel):
    """Webhook as returned by the API. Never carries the secret."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    url: str
    events: List[str]
    is_enabled: bool
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class WebhookWithSecret(WebhookSchema):
    """Returned once, on creation or secret regeneration."""

    secret: str


class WebhookStats(WebhookSchema):
    """Webhook plus delivery statistics."""

    total_deliveries: int = 0
    success_deliveries: int = 0
    success_rate: float = 0.0
    last_delivery_at: Optional[datetime] = None


class WebhookListResponse(BaseModel):
    items: List[WebhookStats]
    total: int
    page: int
    page_size: int


class WebhookDeliverySchema(BaseModel):
    """One recorded delivery."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    webhook_id: int
    event: str
    payload: Dict[str, Any]
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    attempt_count: int
    max_attempts: int
    status: str
    next_retry_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime


class WebhookDeliveryListResponse(BaseModel):
    items: List[WebhookDeliverySchema]
    total: int
    page: int
    page_size: int


class WebhookTestResponse(BaseModel):
    """Outcome of sending the test event."""

    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    delivery_id: Optional[int] = None
    message: str


class RetrySweepResponse(BaseModel):
    """Counts from one pass of the retry processor."""

    processed: int
    succeeded: int
    failed: int
