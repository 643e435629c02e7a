"""Operation ledger: one row per sync/rollback attempt"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tasksync.errors import OperationNotFound, StorageError
from tasksync.models import RollbackSnapshot, SyncOperation
from tasksync.models.base import dump_json, utcnow
from tasksync.models.operation import FINAL_STATUSES, OperationStatus, OperationType

logger = logging.getLogger(__name__)


class OperationLedger:
    """Dumb record of operations and their status.

    Transitions are not validated; callers set statuses in the right order.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self, user_id: int, operation_type: OperationType, data: Optional[Dict[str, Any]] = None
    ) -> SyncOperation:
        operation = SyncOperation(
            user_id=user_id,
            operation_type=OperationType(operation_type),
            operation_data=dump_json(data or {}),
            status=OperationStatus.PENDING,
            created_at=utcnow(),
        )
        try:
            self.db.add(operation)
            self.db.commit()
            self.db.refresh(operation)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to create operation: {e}") from e

        logger.info(f"Created operation {operation.id} ({operation.operation_type.value}) for user {user_id}")
        return operation

    def get(self, operation_id: int) -> SyncOperation:
        operation = self.db.query(SyncOperation).filter(SyncOperation.id == operation_id).first()
        if operation is None:
            raise OperationNotFound(operation_id)
        return operation

    def set_status(
        self, operation_id: int, status: OperationStatus, error_message: Optional[str] = None
    ) -> SyncOperation:
        operation = self.get(operation_id)
        status = OperationStatus(status)
        operation.status = status
        operation.error_message = error_message
        if status in FINAL_STATUSES:
            operation.completed_at = utcnow()
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to update operation {operation_id}: {e}") from e

        logger.info(f"Operation {operation_id} -> {status.value}" + (f" ({error_message})" if error_message else ""))
        return operation

    def list_for_user(self, user_id: int, limit: int = 50) -> List[SyncOperation]:
        query = (
            self.db.query(SyncOperation)
            .filter(SyncOperation.user_id == user_id)
            .order_by(SyncOperation.created_at.desc(), SyncOperation.id.desc())
        )
        if limit and limit > 0:
            query = query.limit(limit)
        return query.all()

    def purge_older_than(self, duration: timedelta) -> int:
        """Delete operations (and their snapshots) created before now - duration.

        Best-effort: storage failures are logged and 0 is returned.
        """
        cutoff = utcnow() - duration
        try:
            ids = [
                row.id
                for row in self.db.query(SyncOperation.id).filter(SyncOperation.created_at < cutoff).all()
            ]
            if not ids:
                return 0
            self.db.query(RollbackSnapshot).filter(RollbackSnapshot.operation_id.in_(ids)).delete(
                synchronize_session=False
            )
            self.db.query(SyncOperation).filter(SyncOperation.id.in_(ids)).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to purge operations older than {duration}: {e}")
            return 0

        logger.info(f"Purged {len(ids)} operations older than {cutoff.isoformat()}")
        return len(ids)
