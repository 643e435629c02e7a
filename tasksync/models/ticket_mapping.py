"""Ticket mapping model"""
from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from tasksync.models.base import Base, utcnow


class TicketMapping(Base):
    """Association between a board ticket (platform A) and its tracker counterpart (platform B)"""

    __tablename__ = "ticket_mappings"
    __table_args__ = (
        UniqueConstraint("user_id", "a_ticket_id", name="uq_ticket_mappings_user_a_ticket"),
        UniqueConstraint("user_id", "b_ticket_id", name="uq_ticket_mappings_user_b_ticket"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)

    a_ticket_id = Column(String, nullable=False)  # task board ticket
    b_ticket_id = Column(String, nullable=False)  # issue tracker ticket, e.g. "B-340"

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "a_ticket_id": self.a_ticket_id,
            "b_ticket_id": self.b_ticket_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self):
        return f"<TicketMapping({self.a_ticket_id} <-> {self.b_ticket_id})>"
