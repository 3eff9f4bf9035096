"""Activity log model."""

from sqlalchemy import JSON, Column, DateTime, Integer, String, func

from pyra_workspace.db import Base


class ActivityLog(Base):
    """Audit trail row written by every mutating admin action."""

    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, index=True)
    action_type = Column(String, nullable=False, index=True)
    username = Column(String, nullable=True, index=True)
    display_name = Column(String, nullable=True)
    target_path = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    def __repr__(self):
        return f"<ActivityLog(id={self.id}, action='{self.action_type}', user='{self.username}')>"
