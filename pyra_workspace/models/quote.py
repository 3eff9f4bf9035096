"""Quote (price estimate) models."""

from sqlalchemy import JSON, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from pyra_workspace.db import Base


class Quote(Base):
    """Client quote with a unique ``{prefix}-{NNNN}`` number."""

    __tablename__ = "quotes"

    id = Column(Integer, primary_key=True, index=True)
    quote_number = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default="draft")  # draft, sent, viewed, signed, expired

    # Client snapshot
    client_id = Column(String, nullable=True, index=True)
    client_name = Column(String, nullable=True)
    client_email = Column(String, nullable=True)
    client_company = Column(String, nullable=True)
    client_phone = Column(String, nullable=True)
    client_address = Column(String, nullable=True)
    project_name = Column(String, nullable=True)

    estimate_date = Column(Date, nullable=False)
    expiry_date = Column(Date, nullable=True)
    currency = Column(String, nullable=False, default="AED")

    subtotal = Column(Float, nullable=False, default=0.0)
    tax_rate = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)

    notes = Column(Text, nullable=True)
    terms_conditions = Column(JSON, nullable=True)
    bank_details = Column(JSON, nullable=True)
    company_name = Column(String, nullable=True)
    company_logo = Column(String, nullable=True)

    signed_by = Column(String, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    viewed_at = Column(DateTime(timezone=True), nullable=True)
    signed_at = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    items = relationship(
        "QuoteItem",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteItem.sort_order",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Quote(id={self.id}, number='{self.quote_number}', status='{self.status}')>"


class QuoteItem(Base):
    """Line item on a quote."""

    __tablename__ = "quote_items"

    id = Column(Integer, primary_key=True, index=True)
    quote_id = Column(Integer, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)
    sort_order = Column(Integer, nullable=False, default=1)
    description = Column(String, nullable=False, default="")
    quantity = Column(Float, nullable=False, default=0.0)
    rate = Column(Float, nullable=False, default=0.0)
    amount = Column(Float, nullable=False, default=0.0)

    quote = relationship("Quote", back_populates="items")
