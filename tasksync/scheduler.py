"""Background scheduler for sync runs and maintenance sweeps"""

import logging
from datetime import timedelta
from typing import Any, Dict, List

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tasksync.config import settings
from tasksync.models.base import SessionLocal
from tasksync.models.operation import OperationStatus
from tasksync.services.ledger import OperationLedger
from tasksync.services.notifier import EventType, notifier, safe_notify
from tasksync.services.snapshot_store import SnapshotStore
from tasksync.services.sync_service import PlannedChange, SyncService
from tasksync.services.ticket_services import Platform, build_ticket_services

logger = logging.getLogger(__name__)

MAINTENANCE_JOB_ID = "maintenance"


class SyncScheduler:
    """Runs sync operations off the request thread and sweeps expired state"""

    def __init__(self):
        self.scheduler = BackgroundScheduler()

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Sync scheduler started")
        self.schedule_maintenance(settings.cleanup_interval_minutes)

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")

    def schedule_maintenance(self, interval_minutes: int):
        self.scheduler.add_job(
            func=self._maintenance_job,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=MAINTENANCE_JOB_ID,
            replace_existing=True,
        )
        logger.info(f"Scheduled maintenance every {interval_minutes} minutes")

    def submit_sync(self, operation_id: int, user_email: str, changes: List[PlannedChange]) -> str:
        """Queue a one-shot job that runs the sync immediately"""
        job_id = f"sync_operation_{operation_id}"
        self.scheduler.add_job(
            func=self._sync_job,
            id=job_id,
            args=[operation_id, user_email, [c.model_dump(mode="json") for c in changes]],
            replace_existing=True,
        )
        logger.info(f"Queued sync operation {operation_id} ({len(changes)} changes)")
        return job_id

    def _sync_job(self, operation_id: int, user_email: str, changes: List[Dict[str, Any]]):
        """Job function to run one sync operation"""
        db = SessionLocal()
        try:
            services = build_ticket_services()
            if services is None:
                operation = OperationLedger(db).set_status(
                    operation_id, OperationStatus.FAILED, "Remote ticket services are not configured"
                )
                safe_notify(
                    notifier,
                    operation.user_id,
                    EventType.SYNC_ERROR,
                    {"operation_id": operation_id, "error": operation.error_message},
                )
                return
            planned = [PlannedChange.model_validate(c) for c in changes]
            result = SyncService(db, notifier=notifier).run_sync(
                operation_id, user_email, planned, services[Platform.A], services[Platform.B]
            )
            logger.info(f"Sync operation {operation_id} finished: {result}")
        except Exception as e:
            logger.error(f"Sync operation {operation_id} crashed: {e}")
        finally:
            db.close()

    def _maintenance_job(self):
        """Expire old snapshots and purge old operations"""
        db = SessionLocal()
        try:
            expired = SnapshotStore(db).cleanup_expired()
            purged = OperationLedger(db).purge_older_than(timedelta(days=settings.operation_retention_days))
            logger.info(f"Maintenance: {expired} expired snapshots removed, {purged} old operations purged")
        except Exception as e:
            logger.error(f"Maintenance run failed: {e}")
        finally:
            db.close()


# Global scheduler instance
scheduler = SyncScheduler()
