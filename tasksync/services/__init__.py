"""Services"""

from tasksync.services.audit import AuditLog
from tasksync.services.ledger import OperationLedger
from tasksync.services.rollback import RollbackEngine, RollbackResult
from tasksync.services.snapshot_store import SnapshotStore
from tasksync.services.sync_service import SyncService

__all__ = ["AuditLog", "OperationLedger", "RollbackEngine", "RollbackResult", "SnapshotStore", "SyncService"]
