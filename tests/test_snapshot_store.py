import logging
import os
import tempfile
import threading
import time
import unittest
from datetime import timedelta

logging.disable(logging.CRITICAL)


def _make_session():
    from sqlalchemy.orm import sessionmaker

    from tasksync.models.base import build_engine, init_db

    engine = build_engine("sqlite://")
    init_db(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


class SnapshotStoreTests(unittest.TestCase):
    def setUp(self):
        from tasksync.services.ledger import OperationLedger
        from tasksync.services.snapshot_store import SnapshotStore

        self.db = _make_session()
        self.ledger = OperationLedger(self.db)
        self.store = SnapshotStore(self.db)

    def tearDown(self):
        self.db.close()

    def _running_op(self, user_id=1):
        from tasksync.models.operation import OperationStatus, OperationType

        op = self.ledger.create(user_id, OperationType.A_TO_B)
        self.ledger.set_status(op.id, OperationStatus.IN_PROGRESS)
        self.store.create_pre_sync_snapshot(user_id, op.id, "platform_A_to_B")
        return op

    def _data(self, operation_id):
        from tasksync.services.snapshot_store import load_snapshot_data

        self.db.expire_all()
        return load_snapshot_data(self.store.get_by_operation(operation_id))

    def test_create_snapshot_is_empty_and_expires_after_ttl(self):
        from tasksync.models.operation import OperationType

        op = self.ledger.create(1, OperationType.A_TO_B)
        snapshot = self.store.create_pre_sync_snapshot(1, op.id, "platform_A_to_B")

        self.assertEqual(snapshot.expires_at - snapshot.created_at, timedelta(hours=24))
        data = self._data(op.id)
        self.assertEqual(data.original_tickets, [])
        self.assertEqual(data.created_tickets, [])
        self.assertEqual(data.updated_mappings, [])
        self.assertEqual(data.ignore_changes, [])
        self.assertIsNone(data.column_mappings)

    def test_create_snapshot_copies_column_mappings(self):
        from tasksync.models import UserSettings
        from tasksync.models.base import dump_json
        from tasksync.models.operation import OperationType

        user_settings = UserSettings(user_id=4, column_mappings=dump_json({"To Do": "open", "Done": "closed"}))
        self.db.add(user_settings)
        self.db.commit()

        op = self.ledger.create(4, OperationType.A_TO_B)
        self.store.create_pre_sync_snapshot(4, op.id, "platform_A_to_B")

        user_settings.column_mappings = dump_json({"To Do": "reopened"})
        self.db.commit()

        self.assertEqual(self._data(op.id).column_mappings, {"To Do": "open", "Done": "closed"})

    def test_second_snapshot_for_same_operation_is_rejected(self):
        from tasksync.errors import InvalidState

        op = self._running_op()
        with self.assertRaises(InvalidState):
            self.store.create_pre_sync_snapshot(1, op.id, "platform_A_to_B")

    def test_snapshot_for_unknown_operation_is_rejected(self):
        from tasksync.errors import OperationNotFound

        with self.assertRaises(OperationNotFound):
            self.store.create_pre_sync_snapshot(1, 404, "platform_A_to_B")

    def test_sixteenth_snapshot_evicts_the_oldest(self):
        ops = [self._running_op(user_id=9) for _ in range(16)]
        other_user = self._running_op(user_id=10)

        kept = self.store.list_for_user(9)
        self.assertEqual(len(kept), 15)
        kept_ops = {s.operation_id for s in kept}
        self.assertNotIn(ops[0].id, kept_ops)
        self.assertEqual(kept_ops, {op.id for op in ops[1:]})
        self.assertEqual(len(self.store.list_for_user(10)), 1)
        self.assertEqual(self.store.list_for_user(10)[0].operation_id, other_user.id)

    def test_first_recorded_status_wins_for_a_ticket(self):
        op = self._running_op()

        self.store.record_ticket_update(op.id, "A", "A-5", "open", "in_progress", {"title": "Fix"})
        self.store.record_ticket_update(op.id, "A", "A-5", "in_progress", "done")
        self.store.record_ticket_update(op.id, "B", "A-5", "todo", "done")

        tickets = self._data(op.id).original_tickets
        self.assertEqual(len(tickets), 2)
        self.assertEqual(tickets[0].platform, "A")
        self.assertEqual(tickets[0].original_status, "open")
        self.assertEqual(tickets[0].new_status, "done")
        self.assertEqual(tickets[0].original_data, {"title": "Fix"})
        self.assertEqual(tickets[1].original_status, "todo")

    def test_records_preserve_insertion_order(self):
        op = self._running_op()

        self.store.record_ticket_creation(op.id, "B", "B-1", mapping_id=3)
        self.store.record_ticket_creation(op.id, "B", "B-2")
        self.store.record_mapping_creation(op.id, 3, {"a_ticket_id": "A-1", "b_ticket_id": "B-1"})
        self.store.record_ignore_change(op.id, "A-9", "none", "forever")

        data = self._data(op.id)
        self.assertEqual([(c.ticket_id, c.mapping_id) for c in data.created_tickets], [("B-1", 3), ("B-2", None)])
        self.assertEqual(data.updated_mappings[0].action.value, "created")
        self.assertEqual(data.updated_mappings[0].new_mapping["b_ticket_id"], "B-1")
        self.assertEqual(data.ignore_changes[0].old_ignore_type, "none")
        self.assertEqual(data.ignore_changes[0].new_ignore_type, "forever")

    def test_snapshot_is_frozen_once_operation_completes(self):
        from tasksync.errors import InvalidState
        from tasksync.models.operation import OperationStatus

        op = self._running_op()
        self.store.record_ticket_creation(op.id, "B", "B-1")
        self.ledger.set_status(op.id, OperationStatus.COMPLETED)

        with self.assertRaises(InvalidState):
            self.store.record_ticket_creation(op.id, "B", "B-2")
        self.assertEqual([c.ticket_id for c in self._data(op.id).created_tickets], ["B-1"])

    def test_recording_without_snapshot_raises(self):
        from tasksync.errors import SnapshotNotFound
        from tasksync.models.operation import OperationType

        op = self.ledger.create(1, OperationType.A_TO_B)
        with self.assertRaises(SnapshotNotFound):
            self.store.record_ticket_update(op.id, "A", "A-1", "open", "done")

    def test_summary_counts_changes(self):
        from tasksync.models.operation import OperationStatus

        op = self._running_op()
        self.store.record_ticket_creation(op.id, "B", "B-1", mapping_id=1)
        self.store.record_ticket_update(op.id, "A", "A-1", "open", "done")
        self.store.record_ticket_update(op.id, "A", "A-2", "open", "done")
        self.store.record_mapping_creation(op.id, 1, {"a_ticket_id": "A-3", "b_ticket_id": "B-1"})
        self.store.record_ignore_change(op.id, "A-4", "none", "temporary")

        summary = self.store.summary(op.id)
        self.assertEqual(summary.tickets_created, 1)
        self.assertEqual(summary.tickets_updated, 2)
        self.assertEqual(summary.mappings_changed, 1)
        self.assertEqual(summary.ignore_changes, 1)
        self.assertEqual(summary.total_changes, 4)
        self.assertFalse(summary.can_rollback)

        self.ledger.set_status(op.id, OperationStatus.COMPLETED)
        self.assertTrue(self.store.summary(op.id).can_rollback)

    def test_expiry_boundary_is_inclusive(self):
        from unittest.mock import patch

        from tasksync.services.snapshot_store import is_expired

        op = self._running_op()
        snapshot = self.store.get_by_operation(op.id)

        self.assertFalse(is_expired(snapshot, now=snapshot.expires_at - timedelta(seconds=1)))
        self.assertTrue(is_expired(snapshot, now=snapshot.expires_at))
        with patch("tasksync.services.snapshot_store.utcnow", return_value=snapshot.created_at + timedelta(hours=25)):
            self.assertTrue(is_expired(snapshot))

    def test_cleanup_expired_removes_only_past_deadline(self):
        from tasksync.models.base import utcnow

        expired = self._running_op()
        live = self._running_op()
        snapshot = self.store.get_by_operation(expired.id)
        snapshot.expires_at = utcnow() - timedelta(minutes=1)
        self.db.commit()

        self.assertEqual(self.store.cleanup_expired(), 1)
        self.assertEqual([s.operation_id for s in self.store.list_for_user(1)], [live.id])
        self.assertEqual(self.store.cleanup_expired(), 0)

class SnapshotDataTests(unittest.TestCase):
    def test_upsert_tracks_tickets_loaded_from_json(self):
        from tasksync.services.snapshot_store import SnapshotData, TicketState

        data = SnapshotData.model_validate_json(
            SnapshotData(
                original_tickets=[
                    TicketState(platform="A", ticket_id="A-1", original_status="open", new_status="done"),
                    TicketState(platform="B", ticket_id="A-1", original_status="todo"),
                ]
            ).model_dump_json()
        )

        closed = TicketState(platform="B", ticket_id="A-1", original_status="x", new_status="closed")
        added = data.upsert_ticket_state(closed)

        self.assertFalse(added)
        self.assertEqual(len(data.original_tickets), 2)
        self.assertEqual(data.original_tickets[1].original_status, "todo")
        self.assertEqual(data.original_tickets[1].new_status, "closed")
        self.assertEqual(data.original_tickets[0].new_status, "done")

    def test_upsert_after_appends_updates_the_right_entry(self):
        from tasksync.services.snapshot_store import SnapshotData, TicketState

        data = SnapshotData()
        self.assertTrue(data.upsert_ticket_state(TicketState(platform="A", ticket_id="A-1", original_status="open")))
        self.assertTrue(data.upsert_ticket_state(TicketState(platform="A", ticket_id="A-2", original_status="open")))
        self.assertFalse(
            data.upsert_ticket_state(TicketState(platform="A", ticket_id="A-1", original_status="done", new_status="done"))
        )

        self.assertEqual([t.ticket_id for t in data.original_tickets], ["A-1", "A-2"])
        self.assertEqual(data.original_tickets[0].original_status, "open")
        self.assertEqual(data.original_tickets[0].new_status, "done")
        self.assertIsNone(data.original_tickets[1].new_status)


class SnapshotRetentionConcurrencyTests(unittest.TestCase):
    def setUp(self):
        from sqlalchemy.orm import sessionmaker

        from tasksync.models.base import build_engine, init_db

        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        # Each thread needs its own connection, so use a file database.
        self.engine = build_engine(f"sqlite:///{os.path.join(tmp.name, 'tasksync.db')}")
        self.addCleanup(self.engine.dispose)
        init_db(bind=self.engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def test_concurrent_snapshots_for_one_user_stay_under_cap(self):
        from tasksync.models.operation import OperationType
        from tasksync.services.ledger import OperationLedger
        from tasksync.services.snapshot_store import SnapshotStore

        db = self.Session()
        ledger = OperationLedger(db)
        store = SnapshotStore(db)
        for _ in range(14):
            op = ledger.create(1, OperationType.A_TO_B)
            store.create_pre_sync_snapshot(1, op.id, "platform_A_to_B")
        first_id = ledger.create(1, OperationType.A_TO_B).id
        second_id = ledger.create(1, OperationType.B_TO_A).id
        db.close()

        entered = threading.Event()
        second_started = threading.Event()
        errors = []

        def first():
            session = self.Session()
            try:
                first_store = SnapshotStore(session)
                enforce = first_store._enforce_retention

                def slow_enforce(user_id):
                    entered.set()
                    second_started.wait(5)
                    # Leave room for the second thread to run its own eviction.
                    time.sleep(0.2)
                    enforce(user_id)

                first_store._enforce_retention = slow_enforce
                first_store.create_pre_sync_snapshot(1, first_id, "platform_A_to_B")
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        def second():
            session = self.Session()
            try:
                entered.wait(5)
                second_started.set()
                SnapshotStore(session).create_pre_sync_snapshot(1, second_id, "platform_B_to_A")
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        self.assertEqual(errors, [])
        db = self.Session()
        self.addCleanup(db.close)
        kept = {s.operation_id for s in SnapshotStore(db).list_for_user(1)}
        self.assertEqual(len(kept), 15)
        self.assertIn(first_id, kept)
        self.assertIn(second_id, kept)


if __name__ == "__main__":
    unittest.main()
