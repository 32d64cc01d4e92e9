"""SQLModel engine singleton for the local cache database."""
from sqlmodel import SQLModel, create_engine

from eventfeed.config import get_settings

_engine = None


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},  # SQLite only
        )
        init_db(_engine)
    return _engine


def init_db(engine) -> None:
    """Create all cache tables and apply pending migrations (idempotent)."""
    # Import all models so metadata is populated before create_all
    from eventfeed.models.download import DownloadRecord  # noqa
    from eventfeed.models.event import Event  # noqa
    from eventfeed.models.user import User  # noqa
    SQLModel.metadata.create_all(engine)
    from eventfeed.db.migrations import run_migrations
    run_migrations(engine)
