"""Snapshot store: pre-mutation state captured per operation for rollback"""

import enum
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, PrivateAttr
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tasksync.config import settings
from tasksync.errors import InvalidState, SnapshotNotFound, StorageError
from tasksync.models import RollbackSnapshot, SyncOperation, UserSettings
from tasksync.models.base import utcnow
from tasksync.models.operation import OperationStatus
from tasksync.services.ledger import OperationLedger
from tasksync.services.locks import KeyedLock, snapshot_locks

logger = logging.getLogger(__name__)

# Snapshots can only be appended to while their operation is still running.
_WRITABLE_STATUSES = (OperationStatus.PENDING, OperationStatus.IN_PROGRESS)


class MappingAction(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class TicketState(BaseModel):
    platform: str
    ticket_id: str
    original_status: str
    new_status: Optional[str] = None
    original_data: Dict[str, Any] = Field(default_factory=dict)


class CreatedTicket(BaseModel):
    platform: str
    ticket_id: str
    mapping_id: Optional[int] = None


class MappingChange(BaseModel):
    mapping_id: int
    action: MappingAction
    old_mapping: Optional[Dict[str, Any]] = None
    new_mapping: Optional[Dict[str, Any]] = None


class IgnoreChange(BaseModel):
    ticket_id: str
    old_ignore_type: str
    new_ignore_type: str


class SnapshotData(BaseModel):
    original_tickets: List[TicketState] = Field(default_factory=list)
    created_tickets: List[CreatedTicket] = Field(default_factory=list)
    updated_mappings: List[MappingChange] = Field(default_factory=list)
    ignore_changes: List[IgnoreChange] = Field(default_factory=list)
    # Copy of the user's column mappings at sync time; display only.
    column_mappings: Optional[Any] = None

    # (platform, ticket_id) -> position in original_tickets
    _ticket_index: Dict[Tuple[str, str], int] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        for i, ticket in enumerate(self.original_tickets):
            self._ticket_index.setdefault((ticket.platform, ticket.ticket_id), i)

    def upsert_ticket_state(self, state: TicketState) -> bool:
        """Insert `state`, or only bump new_status if the ticket is already recorded.

        Returns True when a new entry was added.
        """
        key = (state.platform, state.ticket_id)
        existing = self._ticket_index.get(key)
        if existing is not None:
            self.original_tickets[existing].new_status = state.new_status
            return False
        self._ticket_index[key] = len(self.original_tickets)
        self.original_tickets.append(state)
        return True


class SnapshotSummary(BaseModel):
    operation_id: int
    tickets_created: int
    tickets_updated: int
    mappings_changed: int
    ignore_changes: int
    total_changes: int
    can_rollback: bool
    rollback_deadline: datetime


def load_snapshot_data(snapshot: RollbackSnapshot) -> SnapshotData:
    return SnapshotData.model_validate_json(snapshot.snapshot_data)


def is_expired(snapshot: RollbackSnapshot, now: Optional[datetime] = None) -> bool:
    return (now or utcnow()) >= snapshot.expires_at


class SnapshotStore:
    """Creates, appends to and expires rollback snapshots"""

    def __init__(
        self,
        db: Session,
        *,
        retention: Optional[int] = None,
        ttl: Optional[timedelta] = None,
        locks: KeyedLock = snapshot_locks,
    ):
        self.db = db
        self.ledger = OperationLedger(db)
        self.retention = retention if retention is not None else settings.snapshot_retention
        self.ttl = ttl if ttl is not None else timedelta(hours=settings.snapshot_ttl_hours)
        self.locks = locks

    def _column_mappings(self, user_id: int) -> Optional[Any]:
        user_settings = self.db.query(UserSettings).filter(UserSettings.user_id == user_id).first()
        if user_settings is None:
            return None
        # Parsed fresh from JSON, so the snapshot holds its own copy.
        return user_settings.column_mappings_data

    def _enforce_retention(self, user_id: int) -> None:
        """Delete the oldest snapshots so that one more fits under the cap."""
        existing = (
            self.db.query(RollbackSnapshot)
            .filter(RollbackSnapshot.user_id == user_id)
            .order_by(RollbackSnapshot.created_at.asc(), RollbackSnapshot.id.asc())
            .all()
        )
        excess = len(existing) - self.retention + 1
        for snapshot in existing[: max(excess, 0)]:
            self.db.delete(snapshot)
            logger.info(
                f"Deleted old snapshot {snapshot.id} (operation {snapshot.operation_id}) "
                f"to keep user {user_id} at {self.retention} snapshots"
            )

    def create_pre_sync_snapshot(self, user_id: int, operation_id: int, sync_type: str) -> RollbackSnapshot:
        # Eviction and insert must not interleave with another snapshot for the same user.
        with self.locks.locked(("user", user_id)):
            snapshot = self._insert_snapshot(user_id, operation_id)

        logger.info(f"Created pre-sync snapshot {snapshot.id} for operation {operation_id} ({sync_type})")
        return snapshot

    def _insert_snapshot(self, user_id: int, operation_id: int) -> RollbackSnapshot:
        self.ledger.get(operation_id)
        if self.db.query(RollbackSnapshot).filter(RollbackSnapshot.operation_id == operation_id).first():
            raise InvalidState(f"Operation {operation_id} already has a snapshot")

        now = utcnow()
        data = SnapshotData(column_mappings=self._column_mappings(user_id))
        snapshot = RollbackSnapshot(
            operation_id=operation_id,
            user_id=user_id,
            snapshot_data=data.model_dump_json(),
            created_at=now,
            expires_at=now + self.ttl,
        )
        try:
            self._enforce_retention(user_id)
            self.db.add(snapshot)
            self.db.commit()
            self.db.refresh(snapshot)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to create snapshot for operation {operation_id}: {e}") from e
        return snapshot

    def get_by_operation(self, operation_id: int) -> RollbackSnapshot:
        snapshot = (
            self.db.query(RollbackSnapshot).filter(RollbackSnapshot.operation_id == operation_id).first()
        )
        if snapshot is None:
            raise SnapshotNotFound(operation_id)
        return snapshot

    def list_for_user(self, user_id: int, limit: int = 0) -> List[RollbackSnapshot]:
        query = (
            self.db.query(RollbackSnapshot)
            .filter(RollbackSnapshot.user_id == user_id)
            .order_by(RollbackSnapshot.created_at.desc(), RollbackSnapshot.id.desc())
        )
        if limit and limit > 0:
            query = query.limit(limit)
        return query.all()

    def _mutate(self, operation_id: int, change: Callable[[SnapshotData], None]) -> SnapshotData:
        """Load, change and save one snapshot under the per-operation lock."""
        with self.locks.locked(operation_id):
            snapshot = (
                self.db.query(RollbackSnapshot)
                .filter(RollbackSnapshot.operation_id == operation_id)
                .with_for_update()
                .first()
            )
            if snapshot is None:
                self.db.rollback()
                raise SnapshotNotFound(operation_id)

            operation = self.db.query(SyncOperation).filter(SyncOperation.id == operation_id).first()
            if operation is not None and operation.status not in _WRITABLE_STATUSES:
                self.db.rollback()
                raise InvalidState(
                    f"Snapshot for operation {operation_id} is frozen (status {operation.status.value})"
                )

            data = load_snapshot_data(snapshot)
            change(data)
            snapshot.snapshot_data = data.model_dump_json()
            try:
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                raise StorageError(f"Failed to update snapshot for operation {operation_id}: {e}") from e
            return data

    def record_ticket_creation(
        self, operation_id: int, platform: str, ticket_id: str, mapping_id: Optional[int] = None
    ) -> None:
        self._mutate(
            operation_id,
            lambda data: data.created_tickets.append(
                CreatedTicket(platform=platform, ticket_id=ticket_id, mapping_id=mapping_id)
            ),
        )
        logger.info(f"Recorded ticket creation: {platform} {ticket_id} in operation {operation_id}")

    def record_ticket_update(
        self,
        operation_id: int,
        platform: str,
        ticket_id: str,
        old_status: str,
        new_status: Optional[str],
        original_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        state = TicketState(
            platform=platform,
            ticket_id=ticket_id,
            original_status=old_status,
            new_status=new_status,
            original_data=original_data or {},
        )
        self._mutate(operation_id, lambda data: data.upsert_ticket_state(state))
        logger.info(
            f"Recorded ticket update: {platform} {ticket_id} ({old_status} -> {new_status}) "
            f"in operation {operation_id}"
        )

    def record_mapping_creation(self, operation_id: int, mapping_id: int, mapping: Dict[str, Any]) -> None:
        self._mutate(
            operation_id,
            lambda data: data.updated_mappings.append(
                MappingChange(mapping_id=mapping_id, action=MappingAction.CREATED, new_mapping=mapping)
            ),
        )
        logger.info(f"Recorded mapping creation: ID {mapping_id} in operation {operation_id}")

    def record_ignore_change(self, operation_id: int, ticket_id: str, old_type: str, new_type: str) -> None:
        self._mutate(
            operation_id,
            lambda data: data.ignore_changes.append(
                IgnoreChange(ticket_id=ticket_id, old_ignore_type=old_type, new_ignore_type=new_type)
            ),
        )
        logger.info(
            f"Recorded ignore change for ticket {ticket_id} ({old_type} -> {new_type}) in operation {operation_id}"
        )

    def summary(self, operation_id: int) -> SnapshotSummary:
        snapshot = self.get_by_operation(operation_id)
        operation = self.ledger.get(operation_id)
        data = load_snapshot_data(snapshot)

        created = len(data.created_tickets)
        updated = len(data.original_tickets)
        mappings = len(data.updated_mappings)
        return SnapshotSummary(
            operation_id=operation_id,
            tickets_created=created,
            tickets_updated=updated,
            mappings_changed=mappings,
            ignore_changes=len(data.ignore_changes),
            total_changes=created + updated + mappings,
            can_rollback=operation.status == OperationStatus.COMPLETED and not is_expired(snapshot),
            rollback_deadline=snapshot.expires_at,
        )

    def cleanup_expired(self) -> int:
        """Delete every snapshot past its deadline, whatever its operation's status."""
        now = utcnow()
        try:
            deleted = (
                self.db.query(RollbackSnapshot)
                .filter(RollbackSnapshot.expires_at < now)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to clean up expired snapshots: {e}") from e

        if deleted:
            logger.info(f"Cleaned up {deleted} expired snapshots")
        return deleted
