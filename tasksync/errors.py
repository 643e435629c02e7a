"""Error kinds raised by the ledger, stores and rollback engine."""


class TaskSyncError(Exception):
    """Base class for all service errors."""


class NotFound(TaskSyncError):
    """A requested record does not exist."""


class OperationNotFound(NotFound):
    def __init__(self, operation_id: int):
        super().__init__(f"Operation {operation_id} not found")
        self.operation_id = operation_id


class SnapshotNotFound(NotFound):
    def __init__(self, operation_id: int):
        super().__init__(f"Snapshot not found for operation {operation_id}")
        self.operation_id = operation_id


class MappingNotFound(NotFound):
    def __init__(self, mapping_id: int):
        super().__init__(f"Mapping {mapping_id} not found")
        self.mapping_id = mapping_id


class Unauthorized(TaskSyncError):
    """The operation belongs to a different user."""


class InvalidState(TaskSyncError):
    """The record is not in a status that allows the requested action."""


class SnapshotExpired(TaskSyncError):
    """The snapshot is past its rollback deadline."""


class RemoteError(TaskSyncError):
    """A call to one of the remote ticket services failed."""

    def __init__(self, message: str, *, platform: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.platform = platform
        self.status_code = status_code


class StorageError(TaskSyncError):
    """Persisting ledger, snapshot or audit state failed."""
