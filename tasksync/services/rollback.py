"""Rollback engine: reverses a completed sync operation from its snapshot"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from tasksync.errors import (
    InvalidState,
    OperationNotFound,
    RemoteError,
    SnapshotExpired,
    SnapshotNotFound,
    StorageError,
    Unauthorized,
)
from tasksync.models.base import utcnow
from tasksync.models.ignored_ticket import IgnoreType
from tasksync.models.operation import OperationStatus, OperationType
from tasksync.services.audit import AuditLog
from tasksync.services.ignores import IgnoreService
from tasksync.services.ledger import OperationLedger
from tasksync.services.locks import KeyedLock, rollback_locks
from tasksync.services.mappings import MappingService
from tasksync.services.notifier import EventType, Notifier, safe_notify
from tasksync.services.snapshot_store import (
    MappingAction,
    SnapshotData,
    SnapshotStore,
    is_expired,
    load_snapshot_data,
)
from tasksync.services.ticket_services import Platform, TicketService

logger = logging.getLogger(__name__)


@dataclass
class RollbackResult:
    success: bool = False
    tickets_deleted: int = 0
    tickets_restored: int = 0
    mappings_reverted: int = 0
    ignores_reverted: int = 0
    errors: List[str] = field(default_factory=list)
    partial_success: bool = False
    # Mapping changes the engine does not know how to reverse.
    not_supported: List[str] = field(default_factory=list)

    @property
    def reverted_count(self) -> int:
        return self.tickets_deleted + self.tickets_restored + self.mappings_reverted + self.ignores_reverted

    def details(self) -> str:
        return (
            f"Deleted: {self.tickets_deleted}, Restored: {self.tickets_restored}, "
            f"Mappings: {self.mappings_reverted}, Ignores: {self.ignores_reverted}, Errors: {len(self.errors)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RollbackEngine:
    """Best-effort reversal of one operation.

    Validation failures raise. Once validation passes, every per-item failure is
    collected into the result and the remaining items are still attempted.
    """

    def __init__(
        self,
        db: Session,
        *,
        notifier: Optional[Notifier] = None,
        locks: KeyedLock = rollback_locks,
        snapshots: Optional[SnapshotStore] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.locks = locks
        self.ledger = OperationLedger(db)
        self.snapshots = snapshots or SnapshotStore(db)
        self.audit = AuditLog(db)
        self.mappings = MappingService(db)
        self.ignores = IgnoreService(db)

    def can_rollback(self, operation_id: int) -> Tuple[bool, str]:
        try:
            operation = self.ledger.get(operation_id)
        except OperationNotFound:
            return False, "Operation not found"

        if operation.status != OperationStatus.COMPLETED:
            return False, f"Operation status is '{OperationStatus(operation.status).value}', must be 'completed'"

        try:
            snapshot = self.snapshots.get_by_operation(operation_id)
        except SnapshotNotFound:
            return False, "Snapshot not found"

        if is_expired(snapshot):
            hours = int(self.snapshots.ttl.total_seconds() // 3600)
            return False, f"Snapshot expired (>{hours} hours old)"

        return True, ""

    def perform_rollback(
        self,
        operation_id: int,
        user_id: int,
        user_email: str,
        ticket_service_a: TicketService,
        ticket_service_b: TicketService,
    ) -> RollbackResult:
        with self.locks.locked(operation_id, blocking=False) as acquired:
            if not acquired:
                raise InvalidState(f"Rollback already in progress for operation {operation_id}")
            return self._perform(
                operation_id,
                user_id,
                user_email,
                {Platform.A.value: ticket_service_a, Platform.B.value: ticket_service_b},
            )

    def _validate(self, operation_id: int, user_id: int) -> SnapshotData:
        operation = self.ledger.get(operation_id)
        if operation.user_id != user_id:
            raise Unauthorized(f"Operation {operation_id} belongs to a different user")
        if operation.status != OperationStatus.COMPLETED:
            raise InvalidState(
                f"Can only roll back completed operations, current status: "
                f"{OperationStatus(operation.status).value}"
            )

        snapshot = self.snapshots.get_by_operation(operation_id)
        if is_expired(snapshot):
            raise SnapshotExpired(
                f"Snapshot for operation {operation_id} expired at {snapshot.expires_at.isoformat()}"
            )
        return load_snapshot_data(snapshot)

    @staticmethod
    def _service_for(services: Dict[str, TicketService], platform: str) -> TicketService:
        service = services.get(platform)
        if service is None:
            raise RemoteError(f"No ticket service for platform '{platform}'", platform=platform)
        return service

    def _perform(
        self, operation_id: int, user_id: int, user_email: str, services: Dict[str, TicketService]
    ) -> RollbackResult:
        data = self._validate(operation_id, user_id)

        logger.info(f"Starting rollback for operation {operation_id}")
        rollback_op = self.ledger.create(
            user_id,
            OperationType.ROLLBACK,
            {"target_operation_id": operation_id, "rollback_started": utcnow().isoformat()},
        )
        self.ledger.set_status(rollback_op.id, OperationStatus.IN_PROGRESS)

        result = RollbackResult()
        self._delete_created(data, rollback_op.id, user_id, user_email, services, result)
        self._restore_originals(data, rollback_op.id, user_id, user_email, services, result)
        self._revert_mappings(data, user_id, result)
        self._revert_ignores(data, user_id, result)

        # The original operation is marked even when individual items failed.
        try:
            self.ledger.set_status(operation_id, OperationStatus.ROLLED_BACK)
        except StorageError as e:
            result.errors.append(f"Failed to update original operation status: {e}")

        error_message = f"Rollback completed with {len(result.errors)} errors" if result.errors else None
        try:
            self.ledger.set_status(rollback_op.id, OperationStatus.COMPLETED, error_message)
        except StorageError as e:
            result.errors.append(f"Failed to update rollback operation status: {e}")

        result.success = not result.errors
        result.partial_success = bool(result.errors) and result.reverted_count > 0

        details = result.details()
        self.audit.log_rollback(rollback_op.id, user_email, details)
        logger.info(f"Completed rollback for operation {operation_id} - {details}")

        safe_notify(
            self.notifier,
            user_id,
            EventType.ROLLBACK_COMPLETE,
            {
                "operation_id": operation_id,
                "rollback_operation_id": rollback_op.id,
                "tickets_deleted": result.tickets_deleted,
                "tickets_restored": result.tickets_restored,
                "mappings_reverted": result.mappings_reverted,
                "ignores_reverted": result.ignores_reverted,
                "errors": result.errors,
            },
        )
        return result

    def _delete_created(self, data, rollback_op_id, user_id, user_email, services, result):
        for created in data.created_tickets:
            try:
                self._service_for(services, created.platform).delete_ticket(user_id, created.ticket_id)
            except Exception as e:
                msg = f"Failed to delete {created.platform} ticket {created.ticket_id}: {e}"
                result.errors.append(msg)
                logger.error(msg)
                continue

            result.tickets_deleted += 1
            logger.info(f"Deleted {created.platform} ticket {created.ticket_id}")
            self.audit.log_ticket_deleted(rollback_op_id, user_email, created.ticket_id, created.platform)

    def _restore_originals(self, data, rollback_op_id, user_id, user_email, services, result):
        for state in data.original_tickets:
            try:
                self._service_for(services, state.platform).update_ticket_status(
                    user_id, state.ticket_id, state.original_status
                )
            except Exception as e:
                msg = (
                    f"Failed to restore {state.platform} ticket {state.ticket_id} "
                    f"to status '{state.original_status}': {e}"
                )
                result.errors.append(msg)
                logger.error(msg)
                continue

            result.tickets_restored += 1
            logger.info(f"Restored {state.platform} ticket {state.ticket_id} to status '{state.original_status}'")
            # Audited as a forward change: "status changed from new to original".
            self.audit.log_status_change(
                rollback_op_id, user_email, state.ticket_id, state.platform, state.new_status, state.original_status
            )

    def _revert_mappings(self, data, user_id, result):
        for change in data.updated_mappings:
            if change.action != MappingAction.CREATED:
                note = f"Reverting mapping {change.mapping_id} ({change.action.value}) is not supported"
                result.not_supported.append(note)
                logger.warning(note)
                continue

            try:
                self.mappings.delete_mapping(user_id, change.mapping_id)
            except Exception as e:
                msg = f"Failed to delete mapping ID {change.mapping_id}: {e}"
                result.errors.append(msg)
                logger.error(msg)
                continue

            result.mappings_reverted += 1
            logger.info(f"Deleted mapping ID {change.mapping_id}")

    def _revert_ignores(self, data, user_id, result):
        for change in data.ignore_changes:
            failed = False
            try:
                self.ignores.remove_ignore(user_id, change.ticket_id)
            except Exception as e:
                failed = True
                msg = f"Failed to clear ignore state for {change.ticket_id}: {e}"
                result.errors.append(msg)
                logger.error(msg)

            if change.old_ignore_type != IgnoreType.NONE.value:
                # No further compensation if this fails; the removal above stands.
                try:
                    self.ignores.set_ignore(user_id, change.ticket_id, IgnoreType(change.old_ignore_type))
                except Exception as e:
                    failed = True
                    msg = f"Failed to restore ignore state for {change.ticket_id}: {e}"
                    result.errors.append(msg)
                    logger.error(msg)

            if not failed:
                result.ignores_reverted += 1
                logger.info(f"Restored ignore state for {change.ticket_id} to '{change.old_ignore_type}'")
