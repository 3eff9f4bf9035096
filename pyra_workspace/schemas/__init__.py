"""Pydantic schemas for API validation."""

from pyra_workspace.schemas.webhook import (
    WebhookCreate,
    WebhookUpdate,
    WebhookSchema,
    WebhookWithSecret,
    WebhookStats,
    WebhookDeliverySchema,
    WebhookTestResponse,
)
from pyra_workspace.schemas.quote import QuoteCreate, QuoteUpdate, QuoteSchema, QuoteDetail
from pyra_workspace.schemas.invoice import (
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceSchema,
    InvoiceDetail,
    PaymentCreate,
    PaymentSchema,
)
from pyra_workspace.schemas.activity import ActivityLogSchema

__all__ = [
    "WebhookCreate",
    "WebhookUpdate",
    "WebhookSchema",
    "WebhookWithSecret",
    "WebhookStats",
    "WebhookDeliverySchema",
    "WebhookTestResponse",
    "QuoteCreate",
    "QuoteUpdate",
    "QuoteSchema",
    "QuoteDetail",
    "InvoiceCreate",
    "InvoiceUpdate",
    "InvoiceSchema",
    "InvoiceDetail",
    "PaymentCreate",
    "PaymentSchema",
    "ActivityLogSchema",
]
