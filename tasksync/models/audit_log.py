"""Audit log model"""
import enum

from sqlalchemy import Column, DateTime, Integer, String, Text

from tasksync.models.base import Base, utcnow


class AuditAction(str, enum.Enum):
    """Audit action types"""
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    IGNORED = "ignored"
    DELETED = "deleted"
    ROLLED_BACK = "rolled_back"
    MAPPING_ADDED = "mapping_added"


class AuditLogEntry(Base):
    """Append-only record of a single field-level change"""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    operation_id = Column(Integer, nullable=False, index=True)
    ticket_id = Column(String, nullable=False, index=True)  # "B-123", board task gid, "operation_7", ...
    platform = Column(String, nullable=False)  # "A", "B", "mapping" or "system"
    action_type = Column(String, nullable=False, index=True)
    user_email = Column(String, nullable=False, default="", index=True)

    field_name = Column(String, nullable=True)  # e.g. "status", "ignore_type", "mapping"
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)

    timestamp = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<AuditLogEntry(ticket={self.ticket_id}, action={self.action_type})>"
