"""Sync operation model"""
import enum

from sqlalchemy import Column, DateTime, Enum, Integer, Text

from tasksync.models.base import Base, load_json, utcnow


class OperationType(str, enum.Enum):
    """Kind of sync (or rollback) an operation records"""
    A_TO_B = "platform_A_to_B"
    B_TO_A = "platform_B_to_A"
    BIDIRECTIONAL = "bidirectional"
    ROLLBACK = "rollback"
    CUSTOM = "custom"


class OperationStatus(str, enum.Enum):
    """Operation lifecycle status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


FINAL_STATUSES = (OperationStatus.COMPLETED, OperationStatus.FAILED, OperationStatus.ROLLED_BACK)


class SyncOperation(Base):
    """One sync or rollback attempt"""

    __tablename__ = "sync_operations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)

    operation_type = Column(Enum(OperationType), nullable=False)
    operation_data = Column(Text, nullable=True)  # JSON payload, opaque to the ledger
    status = Column(Enum(OperationStatus), nullable=False, default=OperationStatus.PENDING)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)

    @property
    def data(self) -> dict:
        return load_json(self.operation_data, {})

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "operation_type": OperationType(self.operation_type).value,
            "operation_data": self.data,
            "status": OperationStatus(self.status).value,
            "error_message": self.error_message,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    def __repr__(self):
        return f"<SyncOperation(id={self.id}, type={self.operation_type}, status={self.status})>"
