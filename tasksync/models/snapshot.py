"""Rollback snapshot model"""
from sqlalchemy import Column, DateTime, Integer, Text

from tasksync.models.base import Base, utcnow


class RollbackSnapshot(Base):
    """Pre-mutation state captured for one sync operation"""

    __tablename__ = "rollback_snapshots"

    id = Column(Integer, primary_key=True, index=True)

    # One snapshot per operation (weak reference, no FK cascade)
    operation_id = Column(Integer, nullable=False, unique=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)

    snapshot_data = Column(Text, nullable=False)  # JSON, see services.snapshot_store.SnapshotData

    # Timestamps
    created_at = Column(DateTime, default=utcnow, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<RollbackSnapshot(id={self.id}, operation_id={self.operation_id})>"
