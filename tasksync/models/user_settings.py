"""User settings model"""
from sqlalchemy import Column, DateTime, Integer, Text

from tasksync.models.base import Base, load_json, utcnow


class UserSettings(Base):
    """Per-user sync configuration (only the parts the sync core reads)"""

    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, unique=True, index=True)

    # Column/state mapping between board columns and tracker states (JSON)
    column_mappings = Column(Text, nullable=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def column_mappings_data(self):
        return load_json(self.column_mappings)

    def __repr__(self):
        return f"<UserSettings(user_id={self.user_id})>"
