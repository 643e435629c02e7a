"""API routes"""

from tasksync.api import audit, mappings, sync

__all__ = ["sync", "audit", "mappings"]
