"""Database models"""

from tasksync.models.audit_log import AuditLogEntry
from tasksync.models.base import Base
from tasksync.models.ignored_ticket import IgnoredTicket
from tasksync.models.operation import SyncOperation
from tasksync.models.snapshot import RollbackSnapshot
from tasksync.models.ticket_mapping import TicketMapping
from tasksync.models.user_settings import UserSettings

__all__ = [
    "Base",
    "SyncOperation",
    "RollbackSnapshot",
    "AuditLogEntry",
    "TicketMapping",
    "IgnoredTicket",
    "UserSettings",
]
