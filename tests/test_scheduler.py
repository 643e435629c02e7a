import logging
import unittest
from datetime import timedelta
from unittest.mock import Mock, patch

logging.disable(logging.CRITICAL)


def _make_sessionmaker():
    from sqlalchemy.orm import sessionmaker

    from tasksync.models.base import build_engine, init_db

    engine = build_engine("sqlite://")
    init_db(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


class SyncSchedulerTests(unittest.TestCase):
    def setUp(self):
        from tasksync.scheduler import SyncScheduler

        self.Session = _make_sessionmaker()
        self.sync_scheduler = SyncScheduler()
        self.sync_scheduler.scheduler = Mock()

    def test_submit_sync_queues_one_shot_job(self):
        from tasksync.services.sync_service import ChangeKind, PlannedChange
        from tasksync.services.ticket_services import Platform

        change = PlannedChange(kind=ChangeKind.CHANGE_STATUS, platform=Platform.A, ticket_id="A-1", status="done")
        job_id = self.sync_scheduler.submit_sync(12, "dev@example.com", [change])

        self.assertEqual(job_id, "sync_operation_12")
        kwargs = self.sync_scheduler.scheduler.add_job.call_args.kwargs
        self.assertEqual(kwargs["id"], "sync_operation_12")
        operation_id, email, changes = kwargs["args"]
        self.assertEqual((operation_id, email), (12, "dev@example.com"))
        self.assertEqual(changes[0]["kind"], "change_status")
        self.assertEqual(changes[0]["platform"], "A")

    def test_sync_job_fails_operation_when_services_missing(self):
        from tasksync.models.operation import OperationStatus, OperationType
        from tasksync.services.ledger import OperationLedger

        db = self.Session()
        op = OperationLedger(db).create(5, OperationType.A_TO_B)
        db.close()

        sink = Mock()
        with patch("tasksync.scheduler.SessionLocal", self.Session), patch(
            "tasksync.scheduler.build_ticket_services", return_value=None
        ), patch("tasksync.scheduler.notifier", sink):
            self.sync_scheduler._sync_job(op.id, "dev@example.com", [])

        db = self.Session()
        stored = OperationLedger(db).get(op.id)
        self.assertEqual(stored.status, OperationStatus.FAILED)
        self.assertIn("not configured", stored.error_message)
        db.close()
        sink.notify.assert_called_once()

    def test_sync_job_runs_planned_changes(self):
        from tasksync.models.operation import OperationStatus, OperationType
        from tasksync.services.ledger import OperationLedger
        from tasksync.services.ticket_services import Platform

        db = self.Session()
        op = OperationLedger(db).create(5, OperationType.A_TO_B)
        db.close()

        service_a = Mock()
        service_a.get_ticket.return_value = {"id": "A-1", "status": "open"}
        services = {Platform.A: service_a, Platform.B: Mock()}
        change = {"kind": "change_status", "platform": "A", "ticket_id": "A-1", "status": "done"}

        with patch("tasksync.scheduler.SessionLocal", self.Session), patch(
            "tasksync.scheduler.build_ticket_services", return_value=services
        ), patch("tasksync.scheduler.notifier", Mock()):
            self.sync_scheduler._sync_job(op.id, "dev@example.com", [change])

        service_a.update_ticket_status.assert_called_once_with(5, "A-1", "done")
        db = self.Session()
        self.assertEqual(OperationLedger(db).get(op.id).status, OperationStatus.COMPLETED)
        db.close()

    def test_maintenance_job_sweeps_snapshots_and_operations(self):
        from tasksync.models import RollbackSnapshot, SyncOperation
        from tasksync.models.base import utcnow
        from tasksync.models.operation import OperationType
        from tasksync.services.ledger import OperationLedger
        from tasksync.services.snapshot_store import SnapshotStore

        db = self.Session()
        ledger = OperationLedger(db)
        old = ledger.create(1, OperationType.A_TO_B)
        recent = ledger.create(1, OperationType.A_TO_B)
        SnapshotStore(db).create_pre_sync_snapshot(1, recent.id, "platform_A_to_B")
        snapshot = SnapshotStore(db).get_by_operation(recent.id)
        snapshot.expires_at = utcnow() - timedelta(hours=1)
        old.created_at = utcnow() - timedelta(days=90)
        recent_id = recent.id
        db.commit()
        db.close()

        with patch("tasksync.scheduler.SessionLocal", self.Session):
            self.sync_scheduler._maintenance_job()

        db = self.Session()
        self.assertEqual(db.query(RollbackSnapshot).count(), 0)
        self.assertEqual([o.id for o in db.query(SyncOperation).all()], [recent_id])
        db.close()

    def test_start_schedules_maintenance(self):
        self.sync_scheduler.start()

        self.sync_scheduler.scheduler.start.assert_called_once_with()
        kwargs = self.sync_scheduler.scheduler.add_job.call_args.kwargs
        self.assertEqual(kwargs["id"], "maintenance")
        self.assertTrue(kwargs["replace_existing"])


if __name__ == "__main__":
    unittest.main()
