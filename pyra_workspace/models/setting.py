"""Settings model for database-backed configuration."""

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from pyra_workspace.db import Base


class Setting(Base):
    """Key-value application setting (document prefixes, VAT, bank details)."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True, index=True)
    value = Column(String, nullable=False)
    category = Column(String, nullable=False, default="general")  # billing, company, webhooks...
    description = Column(String, nullable=True)
    encrypted = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Setting(key={self.key}, category={self.category})>"
