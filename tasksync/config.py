"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./tasksync.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Rollback
    # Snapshots older than this can no longer be rolled back.
    snapshot_ttl_hours: int = 24
    # Maximum number of snapshots kept per user; the oldest are purged first.
    snapshot_retention: int = 15
    operation_retention_days: int = 30
    cleanup_interval_minutes: int = 60

    # Audit
    audit_default_limit: int = 50
    audit_export_limit: int = 1000

    # Notifications
    notification_buffer_size: int = 200

    # Remote ticket services.
    # Platform A is the task board, platform B the issue tracker.
    platform_a_url: str | None = None
    platform_a_token: str | None = None
    platform_a_project_id: str | None = None
    platform_b_url: str | None = None
    platform_b_token: str | None = None
    platform_b_project_id: str | None = None
    # Ticket status is stored as a scoped label, e.g. "Status::In Progress".
    status_label_prefix: str = "Status::"
    # Comma-separated statuses that also close the remote ticket.
    closed_statuses: str = "done,closed"

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
