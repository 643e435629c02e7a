"""Ignored ticket model"""
import enum

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from tasksync.models.base import Base, utcnow


class IgnoreType(str, enum.Enum):
    """Ignore sub-type; NONE means no row exists"""
    NONE = "none"
    TEMPORARY = "temporary"
    FOREVER = "forever"


class IgnoredTicket(Base):
    """Ticket excluded from automatic sync"""

    __tablename__ = "ignored_tickets"
    __table_args__ = (
        UniqueConstraint("user_id", "ticket_id", name="uq_ignored_tickets_user_ticket"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    ticket_id = Column(String, nullable=False)
    ignore_type = Column(String, nullable=False)  # "temporary" or "forever"
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<IgnoredTicket(ticket_id='{self.ticket_id}', type='{self.ignore_type}')>"
