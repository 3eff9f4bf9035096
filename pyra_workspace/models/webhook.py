"""Webhook registration and delivery models."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from pyra_workspace.db import Base


class Webhook(Base):
    """External HTTP endpoint subscribed to domain events.

    ``events`` holds event names or the ``"*"`` wildcard. An empty list
    subscribes to nothing.
    """

    __tablename__ = "webhooks"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    secret = Column(String, nullable=False)  # Fernet-encrypted HMAC secret
    events = Column(JSON, nullable=False, default=list)
    is_enabled = Column(Boolean, nullable=False, default=True)
    created_by = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    deliveries = relationship(
        "WebhookDelivery",
        back_populates="webhook",
        cascade="all, delete-orphan",
        order_by="WebhookDelivery.id.desc()",
    )

    def __repr__(self):
        return f"<Webhook(id={self.id}, name='{self.name}', enabled={self.is_enabled})>"


class WebhookDelivery(Base):
    """One event sent to one webhook, updated in place on each retry."""

    __tablename__ = "webhook_deliveries"
    __table_args__ = (Index("ix_webhook_deliveries_status_next_retry", "status", "next_retry_at"),)

    id = Column(Integer, primary_key=True, index=True)
    webhook_id = Column(
        Integer, ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)  # Full {event, timestamp, data} envelope

    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)  # First 500 characters
    error_message = Column(Text, nullable=True)

    attempt_count = Column(Integer, nullable=False, default=1)
    max_attempts = Column(Integer, nullable=False, default=3)
    status = Column(String, nullable=False, default="retrying")  # success, retrying, failed
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    webhook = relationship("Webhook", back_populates="deliveries")

    def __repr__(self):
        return (
            f"<WebhookDelivery(id={self.id}, webhook_id={self.webhook_id}, "
            f"event='{self.event}', status='{self.status}', attempts={self.attempt_count})>"
        )
