"""Database session management for the ledger, notification history and loan book tables"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from mfi_gateway.config import settings


def build_engine(database_url: str) -> Engine:
    """
    PostgreSQL in production; SQLite is accepted for local development.

    Repositories are called from async routes and scheduler jobs on the
    event loop thread and from worker threads, so SQLite must allow
    cross-thread use.
    """
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        pool_pre_ping=True,  # Gateway callbacks can arrive after long idle periods
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


engine = build_engine(settings.database_url)

# Generated ids and timestamps are read after commit, once the session is closed
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
