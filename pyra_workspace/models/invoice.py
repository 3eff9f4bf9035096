"""Invoice, invoice item and payment models."""

from sqlalchemy import JSON, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from pyra_workspace.db import Base


class Invoice(Base):
    """Client invoice with a unique ``{prefix}-{NNNN}`` number.

    Status moves draft -> sent -> partially_paid/paid, with ``overdue`` set by
    the daily overdue check and ``cancelled`` set by an admin.
    """

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default="draft")

    quote_id = Column(Integer, ForeignKey("quotes.id", ondelete="SET NULL"), nullable=True)
    parent_invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True)
    milestone_type = Column(String, nullable=True)  # e.g. advance, completion

    client_id = Column(String, nullable=True, index=True)
    client_name = Column(String, nullable=True)
    client_email = Column(String, nullable=True)
    client_company = Column(String, nullable=True)
    client_phone = Column(String, nullable=True)
    client_address = Column(String, nullable=True)
    project_name = Column(String, nullable=True)

    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    currency = Column(String, nullable=False, default="AED")

    subtotal = Column(Float, nullable=False, default=0.0)
    tax_rate = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)
    amount_paid = Column(Float, nullable=False, default=0.0)
    amount_due = Column(Float, nullable=False, default=0.0)

    notes = Column(Text, nullable=True)
    terms_conditions = Column(JSON, nullable=True)
    bank_details = Column(JSON, nullable=True)
    company_name = Column(String, nullable=True)
    company_logo = Column(String, nullable=True)

    sent_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.sort_order",
        lazy="selectin",
    )
    payments = relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.id",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Invoice(id={self.id}, number='{self.invoice_number}', status='{self.status}')>"


class InvoiceItem(Base):
    """Line item on an invoice."""

    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    sort_order = Column(Integer, nullable=False, default=1)
    description = Column(String, nullable=False, default="")
    quantity = Column(Float, nullable=False, default=0.0)
    rate = Column(Float, nullable=False, default=0.0)
    amount = Column(Float, nullable=False, default=0.0)

    invoice = relationship("Invoice", back_populates="items")


class Payment(Base):
    """Payment recorded against an invoice."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    payment_date = Column(Date, nullable=False)
    method = Column(String, nullable=False, default="bank_transfer")
    reference = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    recorded_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    invoice = relationship("Invoice", back_populates="payments")
