"""Database models for Pyra Workspace."""

from pyra_workspace.models.setting import Setting
from pyra_workspace.models.webhook import Webhook, WebhookDelivery
from pyra_workspace.models.quote import Quote, QuoteItem
from pyra_workspace.models.invoice import Invoice, InvoiceItem, Payment
from pyra_workspace.models.activity_log import ActivityLog

__all__ = [
    "Setting",
    "Webhook",
    "WebhookDelivery",
    "Quote",
    "QuoteItem",
    "Invoice",
    "InvoiceItem",
    "Payment",
    "ActivityLog",
]
