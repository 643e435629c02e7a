"""Sync runner: applies a planned change set while recording snapshot and audit state"""

import enum
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tasksync.models import SyncOperation
from tasksync.models.ignored_ticket import IgnoreType
from tasksync.models.operation import OperationStatus, OperationType
from tasksync.services.audit import AuditLog
from tasksync.services.ignores import IgnoreService
from tasksync.services.ledger import OperationLedger
from tasksync.services.mappings import MappingService
from tasksync.services.notifier import EventType, Notifier, safe_notify
from tasksync.services.snapshot_store import SnapshotStore
from tasksync.services.ticket_services import Platform, TicketService

logger = logging.getLogger(__name__)


class ChangeKind(str, enum.Enum):
    CREATE_TICKET = "create_ticket"
    CHANGE_STATUS = "change_status"
    IGNORE_TICKET = "ignore_ticket"


class PlannedChange(BaseModel):
    """One change the caller selected for this sync"""

    kind: ChangeKind
    platform: Platform
    # Existing ticket for change_status/ignore_ticket; the source ticket for create_ticket.
    ticket_id: Optional[str] = None
    status: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    ignore_type: IgnoreType = IgnoreType.TEMPORARY


class SyncService:
    """Service for running sync operations"""

    def __init__(self, db: Session, notifier: Optional[Notifier] = None):
        self.db = db
        self.notifier = notifier
        self.ledger = OperationLedger(db)
        self.snapshots = SnapshotStore(db)
        self.audit = AuditLog(db)
        self.mappings = MappingService(db)
        self.ignores = IgnoreService(db)

    def start_sync(
        self, user_id: int, sync_type: OperationType, options: Optional[Dict[str, Any]] = None
    ) -> SyncOperation:
        """Record a pending operation; the caller dispatches run_sync in the background"""
        sync_type = OperationType(sync_type)
        if sync_type == OperationType.ROLLBACK:
            raise ValueError("Rollback operations are started through the rollback engine")
        return self.ledger.create(user_id, sync_type, {"options": options or {}})

    def run_sync(
        self,
        operation_id: int,
        user_email: str,
        changes: List[PlannedChange],
        ticket_service_a: TicketService,
        ticket_service_b: TicketService,
    ) -> Dict[str, Any]:
        operation = self.ledger.get(operation_id)
        user_id = operation.user_id
        services = {Platform.A: ticket_service_a, Platform.B: ticket_service_b}

        try:
            self.ledger.set_status(operation_id, OperationStatus.IN_PROGRESS)
            self.snapshots.create_pre_sync_snapshot(user_id, operation_id, operation.operation_type.value)
        except Exception as e:
            logger.error(f"Sync operation {operation_id} failed to start: {e}")
            self._fail(operation_id, user_id, str(e))
            return {"status": "failed", "error": str(e)}

        safe_notify(
            self.notifier,
            user_id,
            EventType.SYNC_START,
            {"operation_id": operation_id, "type": operation.operation_type.value},
        )

        stats = {"created": 0, "updated": 0, "ignored": 0, "errors": 0}
        errors: List[str] = []
        total = len(changes)
        for index, change in enumerate(changes, start=1):
            try:
                self._apply(operation_id, user_id, user_email, change, services, stats)
            except Exception as e:
                stats["errors"] += 1
                msg = f"{change.kind.value} {change.platform.value} {change.ticket_id or change.title or ''}: {e}"
                errors.append(msg)
                logger.error(f"Sync operation {operation_id}: {msg}")

            safe_notify(
                self.notifier,
                user_id,
                EventType.SYNC_PROGRESS,
                {
                    "operation_id": operation_id,
                    "progress": int(index * 100 / total),
                    "message": f"Applied {index} of {total} changes",
                },
            )

        error_message = f"Sync completed with {len(errors)} errors" if errors else None
        try:
            self.ledger.set_status(operation_id, OperationStatus.COMPLETED, error_message)
        except Exception as e:
            logger.error(f"Sync operation {operation_id} could not be finalized: {e}")
            self._fail(operation_id, user_id, str(e))
            return {"status": "failed", "error": str(e), "stats": stats}

        logger.info(f"Sync operation {operation_id} completed: {stats}")
        safe_notify(
            self.notifier,
            user_id,
            EventType.SYNC_COMPLETE,
            {"operation_id": operation_id, "stats": stats, "errors": errors},
        )
        return {"status": "success", "stats": stats, "errors": errors}

    def _fail(self, operation_id: int, user_id: int, message: str) -> None:
        try:
            self.ledger.set_status(operation_id, OperationStatus.FAILED, message)
        except Exception as e:
            logger.error(f"Failed to mark operation {operation_id} as failed: {e}")
        safe_notify(self.notifier, user_id, EventType.SYNC_ERROR, {"operation_id": operation_id, "error": message})

    def _apply(self, operation_id, user_id, user_email, change, services, stats):
        if change.kind == ChangeKind.CREATE_TICKET:
            self._create_ticket(operation_id, user_id, user_email, change, services[change.platform])
            stats["created"] += 1
        elif change.kind == ChangeKind.CHANGE_STATUS:
            self._change_status(operation_id, user_id, user_email, change, services[change.platform])
            stats["updated"] += 1
        elif change.kind == ChangeKind.IGNORE_TICKET:
            self._ignore_ticket(operation_id, user_id, user_email, change)
            stats["ignored"] += 1

    def _create_ticket(self, operation_id, user_id, user_email, change, service):
        """Create the counterpart ticket on `change.platform` and map it to `change.ticket_id`"""
        new_ticket_id = service.create_ticket(
            user_id,
            {
                "title": change.title,
                "description": change.description,
                "status": change.status,
                "labels": change.labels,
            },
        )

        mapping = None
        try:
            if change.ticket_id:
                if change.platform == Platform.A:
                    mapping = self.mappings.create_mapping(user_id, new_ticket_id, change.ticket_id)
                else:
                    mapping = self.mappings.create_mapping(user_id, change.ticket_id, new_ticket_id)
        finally:
            # Record the created ticket even if the mapping failed, so rollback can delete it.
            self.snapshots.record_ticket_creation(
                operation_id, change.platform.value, new_ticket_id, mapping.id if mapping else None
            )

        self.audit.log_ticket_created(operation_id, user_email, new_ticket_id, change.platform.value, change.status)
        if mapping is not None:
            self.snapshots.record_mapping_creation(operation_id, mapping.id, mapping.to_dict())
            self.audit.log_mapping_created(operation_id, user_email, mapping.a_ticket_id, mapping.b_ticket_id)

    def _change_status(self, operation_id, user_id, user_email, change, service):
        if not change.ticket_id or not change.status:
            raise ValueError("change_status needs ticket_id and status")

        current = service.get_ticket(user_id, change.ticket_id)
        old_status = current.get("status") or ""
        # The "before" state must be in the snapshot before the remote mutation.
        self.snapshots.record_ticket_update(
            operation_id, change.platform.value, change.ticket_id, old_status, change.status, current
        )
        service.update_ticket_status(user_id, change.ticket_id, change.status)
        self.audit.log_status_change(
            operation_id, user_email, change.ticket_id, change.platform.value, old_status, change.status
        )

    def _ignore_ticket(self, operation_id, user_id, user_email, change):
        if not change.ticket_id:
            raise ValueError("ignore_ticket needs ticket_id")

        old_type = self.ignores.get_type(user_id, change.ticket_id)
        self.snapshots.record_ignore_change(operation_id, change.ticket_id, old_type.value, change.ignore_type.value)
        if change.ignore_type == IgnoreType.NONE:
            self.ignores.remove_ignore(user_id, change.ticket_id)
        else:
            self.ignores.set_ignore(user_id, change.ticket_id, change.ignore_type)
        self.audit.log_ticket_ignored(
            operation_id, user_email, change.ticket_id, change.platform.value, change.ignore_type.value
        )
