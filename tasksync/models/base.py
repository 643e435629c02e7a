"""Database base configuration"""
import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from tasksync.config import settings


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime (what the DB stores)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_engine(database_url: str):
    """Create an engine; in-memory SQLite shares one connection across threads."""
    kwargs: dict[str, Any] = {}
    if "sqlite" in database_url:
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def load_json(value: str | None, default: Any = None) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


def init_db(bind=None):
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    import tasksync.models  # noqa: F401  (import for side-effects)

    Base.metadata.create_all(bind=bind or engine)
