"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file `app.db` by default) and
provides the small helpers used by the application, scripts and tests.
"""

from contextlib import contextmanager

from sqlmodel import SQLModel, create_engine, Session

from .config import settings


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=_connect_args(settings.DATABASE_URL))


def create_db_and_tables():
    """Create any missing tables for the registered SQLModel tables.

    Called on app import and by the seed script; schema changes to an
    existing database still need a migration.
    """
    # models must be imported so their tables are registered on the metadata
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)


def get_session():
    """Request-scoped `Session` dependency, closed when the request ends."""
    with Session(engine) as session:
        yield session


@contextmanager
def atomic(session: Session):
    """Commit everything staged inside the block once, or roll it all back.

    Used by services whose writes span several rows (a wallet balance and
    its ledger entry, a workout and its exercises) so that the rows land
    together or not at all.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
