"""Schemas for quotes."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from pyra_workspace.schemas.document import ClientSnapshot, LineItemIn, LineItemSchema


QUOTE_STATUSES = ("draft", "sent", "viewed", "signed", "expired")


class QuoteCreate(ClientSnapshot):
    """Create a draft quote. ``prefix`` overrides the configured quote prefix."""

    estimate_date: Optional[date] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None
    prefix: Optional[str] = Field(None, min_length=1, max_length=10, pattern=r"^[A-Za-z0-9]+$")
    items: List[LineItemIn] = Field(default_factory=list)


class QuoteUpdate(BaseModel):
    """Partial update; ``items`` replaces every line item when present."""

    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_company: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    project_name: Optional[str] = None
    estimate_date: Optional[date] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    signed_by: Optional[str] = None
    items: Optional[List[LineItemIn]] = None


class QuoteSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quote_number: str
    status: str
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_company: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    project_name: Optional[str] = None
    estimate_date: date
    expiry_date: Optional[date] = None
    currency: str
    subtotal: float
    tax_rate: float
    tax_amount: float
    total: float
    notes: Optional[str] = None
    terms_conditions: Optional[List[Dict[str, Any]]] = None
    bank_details: Optional[Dict[str, Any]] = None
    company_name: Optional[str] = None
    company_logo: Optional[str] = None
    signed_by: Optional[str] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class QuoteDetail(QuoteSchema):
    items: List[LineItemSchema] = []


class QuoteListResponse(BaseModel):
    items: List[QuoteSchema]
    total: int
    page: int
    page_size: int
