"""Ticket mapping store"""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tasksync.errors import InvalidState, MappingNotFound, StorageError
from tasksync.models import TicketMapping
from tasksync.models.base import utcnow

logger = logging.getLogger(__name__)


class MappingService:
    """Create, look up and delete board <-> tracker ticket mappings"""

    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, user_id: int) -> List[TicketMapping]:
        return (
            self.db.query(TicketMapping)
            .filter(TicketMapping.user_id == user_id)
            .order_by(TicketMapping.created_at.desc(), TicketMapping.id.desc())
            .all()
        )

    def find(self, user_id: int, *, a_ticket_id: Optional[str] = None, b_ticket_id: Optional[str] = None):
        query = self.db.query(TicketMapping).filter(TicketMapping.user_id == user_id)
        if a_ticket_id is not None:
            query = query.filter(TicketMapping.a_ticket_id == a_ticket_id)
        if b_ticket_id is not None:
            query = query.filter(TicketMapping.b_ticket_id == b_ticket_id)
        return query.first()

    def create_mapping(self, user_id: int, a_ticket_id: str, b_ticket_id: str) -> TicketMapping:
        now = utcnow()
        mapping = TicketMapping(
            user_id=user_id,
            a_ticket_id=str(a_ticket_id),
            b_ticket_id=str(b_ticket_id),
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(mapping)
            self.db.commit()
            self.db.refresh(mapping)
        except IntegrityError as e:
            self.db.rollback()
            raise InvalidState(f"Mapping for {a_ticket_id} or {b_ticket_id} already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to create mapping: {e}") from e

        logger.info(f"Created mapping {mapping.id}: {a_ticket_id} <-> {b_ticket_id} for user {user_id}")
        return mapping

    def delete_mapping(self, user_id: int, mapping_id: int) -> None:
        mapping = (
            self.db.query(TicketMapping)
            .filter(TicketMapping.id == mapping_id, TicketMapping.user_id == user_id)
            .first()
        )
        if mapping is None:
            raise MappingNotFound(mapping_id)
        try:
            self.db.delete(mapping)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to delete mapping {mapping_id}: {e}") from e

        logger.info(f"Deleted mapping {mapping_id} for user {user_id}")
