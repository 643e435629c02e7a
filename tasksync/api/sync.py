"""Sync operation, snapshot and rollback endpoints"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tasksync.api.deps import CurrentUser, get_current_user, get_notifier, get_ticket_services
from tasksync.errors import InvalidState, NotFound, SnapshotExpired, StorageError, Unauthorized
from tasksync.models.base import get_db
from tasksync.models.operation import OperationType
from tasksync.scheduler import scheduler
from tasksync.services.ledger import OperationLedger
from tasksync.services.rollback import RollbackEngine
from tasksync.services.snapshot_store import SnapshotStore, SnapshotSummary
from tasksync.services.sync_service import PlannedChange, SyncService
from tasksync.services.ticket_services import Platform

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncRequest(BaseModel):
    sync_type: OperationType
    options: Dict[str, Any] = Field(default_factory=dict)
    changes: List[PlannedChange] = Field(default_factory=list)


class OperationResponse(BaseModel):
    id: int
    user_id: int
    operation_type: str
    operation_data: Dict[str, Any]
    status: str
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class RollbackResponse(BaseModel):
    success: bool
    tickets_deleted: int
    tickets_restored: int
    mappings_reverted: int
    ignores_reverted: int
    errors: List[str]
    partial_success: bool
    not_supported: List[str]


def _owned_operation(db: Session, operation_id: int, user: CurrentUser):
    try:
        operation = OperationLedger(db).get(operation_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    if operation.user_id != user.user_id:
        raise HTTPException(status_code=403, detail="Access denied")
    return operation


@router.post("/start", response_model=OperationResponse)
def start_sync(
    request: SyncRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a pending sync operation and run it in the background"""
    sync_service = SyncService(db)
    try:
        operation = sync_service.start_sync(user.user_id, request.sync_type, request.options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    scheduler.submit_sync(operation.id, user.email, request.changes)
    return operation.to_dict()


@router.get("/history", response_model=List[OperationResponse])
def sync_history(limit: int = 50, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    """List the caller's operations, newest first"""
    return [op.to_dict() for op in OperationLedger(db).list_for_user(user.user_id, limit)]


@router.get("/operations/{operation_id}", response_model=OperationResponse)
def get_operation(operation_id: int, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return _owned_operation(db, operation_id, user).to_dict()


@router.get("/operations/{operation_id}/snapshot", response_model=SnapshotSummary)
def get_snapshot_summary(
    operation_id: int, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Summarize what a rollback of this operation would undo"""
    _owned_operation(db, operation_id, user)
    try:
        return SnapshotStore(db).summary(operation_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/operations/{operation_id}/can-rollback")
def can_rollback(operation_id: int, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    _owned_operation(db, operation_id, user)
    ok, reason = RollbackEngine(db).can_rollback(operation_id)
    return {"operation_id": operation_id, "can_rollback": ok, "reason": reason}


@router.post("/operations/{operation_id}/rollback", response_model=RollbackResponse)
def rollback_operation(
    operation_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    services=Depends(get_ticket_services),
    sink=Depends(get_notifier),
):
    """Reverse a completed operation; blocks until every item has been attempted"""
    _owned_operation(db, operation_id, user)
    engine = RollbackEngine(db, notifier=sink)
    ok, reason = engine.can_rollback(operation_id)
    if not ok:
        raise HTTPException(status_code=400, detail=reason)
    try:
        result = engine.perform_rollback(
            operation_id, user.user_id, user.email, services[Platform.A], services[Platform.B]
        )
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Unauthorized as e:
        raise HTTPException(status_code=403, detail=str(e))
    except (InvalidState, SnapshotExpired) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return result.to_dict()


@router.get("/events")
def drain_events(user: CurrentUser = Depends(get_current_user), sink=Depends(get_notifier)):
    """Return and clear the caller's buffered progress events"""
    return sink.drain(user.user_id)
