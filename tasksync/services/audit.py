"""Audit log: append-only history of every field-level change"""

import csv
import io
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from tasksync.config import settings
from tasksync.models import AuditLogEntry
from tasksync.models.audit_log import AuditAction
from tasksync.models.base import utcnow

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Timestamp",
    "User Email",
    "Ticket ID",
    "Platform",
    "Action Type",
    "Field Name",
    "Old Value",
    "New Value",
]
CSV_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class AuditLog:
    """Writes and queries audit entries.

    Writes are best-effort: a failed append is logged and never raised, so an
    audit problem can't abort the change it describes.
    """

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        operation_id: int,
        ticket_id: str,
        platform: str,
        action_type: AuditAction,
        user_email: str,
        field_name: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> Optional[AuditLogEntry]:
        entry = AuditLogEntry(
            operation_id=operation_id,
            ticket_id=str(ticket_id),
            platform=str(platform),
            action_type=AuditAction(action_type).value,
            user_email=user_email or "",
            field_name=field_name,
            old_value=None if old_value is None else str(old_value),
            new_value=None if new_value is None else str(new_value),
            timestamp=utcnow(),
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to write audit entry ({entry.action_type} {platform} {ticket_id}): {e}")
            return None

        logger.debug(f"Audit entry {entry.id}: {entry.action_type} {platform} {ticket_id} by {user_email}")
        return entry

    # Convenience writers, one per kind of change the sync and rollback flows make.

    def log_ticket_created(self, operation_id, user_email, ticket_id, platform, initial_status):
        return self.log(
            operation_id, ticket_id, platform, AuditAction.CREATED, user_email,
            field_name="status", old_value="", new_value=initial_status,
        )

    def log_status_change(self, operation_id, user_email, ticket_id, platform, old_status, new_status):
        return self.log(
            operation_id, ticket_id, platform, AuditAction.STATUS_CHANGED, user_email,
            field_name="status", old_value=old_status, new_value=new_status,
        )

    def log_field_update(self, operation_id, user_email, ticket_id, platform, field_name, old_value, new_value):
        return self.log(
            operation_id, ticket_id, platform, AuditAction.UPDATED, user_email,
            field_name=field_name, old_value=old_value, new_value=new_value,
        )

    def log_ticket_ignored(self, operation_id, user_email, ticket_id, platform, ignore_type):
        return self.log(
            operation_id, ticket_id, platform, AuditAction.IGNORED, user_email,
            field_name="ignore_type", old_value="", new_value=ignore_type,
        )

    def log_ticket_deleted(self, operation_id, user_email, ticket_id, platform):
        return self.log(operation_id, ticket_id, platform, AuditAction.DELETED, user_email)

    def log_mapping_created(self, operation_id, user_email, a_ticket_id, b_ticket_id):
        return self.log(
            operation_id,
            f"{a_ticket_id} <-> {b_ticket_id}",
            "mapping",
            AuditAction.MAPPING_ADDED,
            user_email,
            field_name="mapping",
            old_value="",
            new_value=f"A: {a_ticket_id}, B: {b_ticket_id}",
        )

    def log_rollback(self, operation_id, user_email, details):
        return self.log(
            operation_id,
            f"operation_{operation_id}",
            "system",
            AuditAction.ROLLED_BACK,
            user_email,
            field_name="rollback",
            old_value="",
            new_value=details,
        )

    def by_ticket(self, ticket_id: str) -> List[AuditLogEntry]:
        """History of one ticket, newest first"""
        return (
            self.db.query(AuditLogEntry)
            .filter(AuditLogEntry.ticket_id == ticket_id)
            .order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
            .all()
        )

    def by_operation(self, operation_id: int) -> List[AuditLogEntry]:
        """Entries of one operation in the order they were written"""
        return (
            self.db.query(AuditLogEntry)
            .filter(AuditLogEntry.operation_id == operation_id)
            .order_by(AuditLogEntry.timestamp.asc(), AuditLogEntry.id.asc())
            .all()
        )

    def filtered(
        self,
        user_email: Optional[str] = None,
        ticket_id: Optional[str] = None,
        platform: Optional[str] = None,
        action_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AuditLogEntry]:
        query = self.db.query(AuditLogEntry)
        if user_email:
            query = query.filter(AuditLogEntry.user_email == user_email)
        if ticket_id:
            query = query.filter(AuditLogEntry.ticket_id == ticket_id)
        if platform:
            query = query.filter(AuditLogEntry.platform == platform)
        if action_type:
            query = query.filter(AuditLogEntry.action_type == action_type)
        if start_date is not None:
            query = query.filter(AuditLogEntry.timestamp >= start_date)
        if end_date is not None:
            query = query.filter(AuditLogEntry.timestamp <= end_date)

        query = query.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
        if limit is None:
            limit = settings.audit_default_limit
        if limit > 0:
            query = query.limit(limit)
        return query.all()

    def recent(self, limit: int = 50) -> List[AuditLogEntry]:
        return self.filtered(limit=limit)

    @staticmethod
    def render_csv(entries: List[AuditLogEntry]) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for entry in entries:
            writer.writerow(
                [
                    entry.timestamp.strftime(CSV_TIMESTAMP_FORMAT) if entry.timestamp else "",
                    entry.user_email or "",
                    entry.ticket_id,
                    entry.platform,
                    entry.action_type,
                    entry.field_name or "",
                    entry.old_value or "",
                    entry.new_value or "",
                ]
            )
        return buf.getvalue()

    def export_csv(self, **filters) -> str:
        """Render the filtered entries as CSV (RFC 4180 quoting)"""
        filters.setdefault("limit", settings.audit_export_limit)
        return self.render_csv(self.filtered(**filters))
