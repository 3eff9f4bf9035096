"""Shared schemas for quote and invoice line items."""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class LineItemIn(BaseModel):
    """Line item as submitted by the client."""

    description: str = Field(default="", max_length=500)
    quantity: float = Field(default=0, ge=0)
    rate: float = Field(default=0, ge=0)


class LineItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sort_order: int
    description: str
    quantity: float
    rate: float
    amount: float


class ClientSnapshot(BaseModel):
    """Client fields copied onto a document at creation time."""

    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_company: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    project_name: Optional[str] = None
