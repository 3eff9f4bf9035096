"""Schemas for invoices and payments."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from pyra_workspace.schemas.document import ClientSnapshot, LineItemIn, LineItemSchema


INVOICE_STATUSES = ("draft", "sent", "partially_paid", "paid", "overdue", "cancelled")
PAYMENT_METHODS = ("bank_transfer", "cash", "cheque", "card", "online", "other")


class InvoiceCreate(ClientSnapshot):
    """Create a draft invoice. ``due_date`` is checked by the service."""

    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    milestone_type: Optional[str] = None
    parent_invoice_id: Optional[int] = None
    prefix: Optional[str] = Field(None, min_length=1, max_length=10, pattern=r"^[A-Za-z0-9]+$")
    items: List[LineItemIn] = Field(default_factory=list)


class InvoiceUpdate(BaseModel):
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_company: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    project_name: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    milestone_type: Optional[str] = None
    status: Optional[str] = Field(None, pattern=r"^(draft|cancelled)$")
    items: Optional[List[LineItemIn]] = None


class PaymentCreate(BaseModel):
    amount: float
    payment_date: Optional[date] = None
    method: str = "bank_transfer"
    reference: Optional[str] = None
    notes: Optional[str] = None


class PaymentSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    amount: float
    payment_date: date
    method: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None
    created_at: datetime


class InvoiceSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    status: str
    quote_id: Optional[int] = None
    parent_invoice_id: Optional[int] = None
    milestone_type: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_company: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    project_name: Optional[str] = None
    issue_date: date
    due_date: date
    currency: str
    subtotal: float
    tax_rate: float
    tax_amount: float
    total: float
    amount_paid: float
    amount_due: float
    notes: Optional[str] = None
    terms_conditions: Optional[List[Dict[str, Any]]] = None
    bank_details: Optional[Dict[str, Any]] = None
    company_name: Optional[str] = None
    company_logo: Optional[str] = None
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class InvoiceDetail(InvoiceSchema):
    items: List[LineItemSchema] = []
    payments: List[PaymentSchema] = []


class InvoiceListResponse(BaseModel):
    items: List[InvoiceSchema]
    total: int
    page: int
    page_size: int


class OverdueCheckResponse(BaseModel):
    updated: int


class RevenueSummary(BaseModel):
    total_revenue: float
    total_outstanding: float
    total_overdue: float
    revenue_this_month: float
    total_invoices: int
    paid_invoices: int
    overdue_invoices: int
