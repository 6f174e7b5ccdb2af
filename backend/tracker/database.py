"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine and provides small
helpers used by the application, scripts and tests. Without a
``DATABASE_URL`` the database is a local SQLite file, `tracker.db`, in the
`backend/` folder.
"""

from pathlib import Path

from sqlalchemy import event
from sqlmodel import SQLModel, Session, create_engine

from .config import settings

BASE = Path(__file__).resolve().parent.parent
DB_URL = settings.DATABASE_URL or f"sqlite:///{BASE / 'tracker.db'}"

_connect_args = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}
engine = create_engine(DB_URL, echo=False, connect_args=_connect_args)


if DB_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        """SQLite ignores ON DELETE CASCADE unless foreign keys are enabled per connection."""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    Intended for local development and tests; production deployments
    should run a proper migration tool instead.
    """
    from . import models  # noqa: F401  registers the tables on the metadata
    SQLModel.metadata.create_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
