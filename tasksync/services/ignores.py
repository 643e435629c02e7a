"""Ignore markers: tickets excluded from automatic sync"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tasksync.errors import InvalidState, StorageError
from tasksync.models import IgnoredTicket
from tasksync.models.base import utcnow
from tasksync.models.ignored_ticket import IgnoreType

logger = logging.getLogger(__name__)


class IgnoreService:
    def __init__(self, db: Session):
        self.db = db

    def _row(self, user_id: int, ticket_id: str):
        return (
            self.db.query(IgnoredTicket)
            .filter(IgnoredTicket.user_id == user_id, IgnoredTicket.ticket_id == ticket_id)
            .first()
        )

    def get_type(self, user_id: int, ticket_id: str) -> IgnoreType:
        row = self._row(user_id, ticket_id)
        return IgnoreType(row.ignore_type) if row else IgnoreType.NONE

    def set_ignore(self, user_id: int, ticket_id: str, ignore_type: IgnoreType) -> None:
        """Mark a ticket ignored, replacing any existing marker"""
        ignore_type = IgnoreType(ignore_type)
        if ignore_type == IgnoreType.NONE:
            raise InvalidState("Use remove_ignore to clear an ignore marker")
        row = self._row(user_id, ticket_id)
        try:
            if row is None:
                self.db.add(
                    IgnoredTicket(
                        user_id=user_id, ticket_id=ticket_id, ignore_type=ignore_type.value, created_at=utcnow()
                    )
                )
            else:
                row.ignore_type = ignore_type.value
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to ignore ticket {ticket_id}: {e}") from e

        logger.info(f"Ticket {ticket_id} ignored ({ignore_type.value}) for user {user_id}")

    def remove_ignore(self, user_id: int, ticket_id: str) -> bool:
        """Clear the marker; returns False if there was none"""
        row = self._row(user_id, ticket_id)
        if row is None:
            return False
        try:
            self.db.delete(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to un-ignore ticket {ticket_id}: {e}") from e

        logger.info(f"Ticket {ticket_id} no longer ignored for user {user_id}")
        return True
