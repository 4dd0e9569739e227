"""Database initialization and utilities."""

from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

DEFAULT_DB_URL = "sqlite:///lottery.db"


def create_db_engine(db_url: str = DEFAULT_DB_URL, echo: bool = False):
    """
    Create SQLAlchemy engine.

    For SQLite the pysqlite driver's own transaction handling is disabled and
    BEGIN is emitted by SQLAlchemy instead, otherwise SAVEPOINT (used for the
    per-entry savepoints of a processing run) does not behave.
    """
    engine = create_engine(db_url, echo=echo)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _do_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def init_database(db_url: str = DEFAULT_DB_URL) -> None:
    """Initialize database and create all tables."""
    engine = create_db_engine(db_url)
    Base.metadata.create_all(engine)
    print(f"[INFO] Database initialized: {db_url}")


def get_session_factory(db_url: str = DEFAULT_DB_URL, engine=None):
    """Get a session factory for the database."""
    engine = engine or create_db_engine(db_url)
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_session(db_url: str = DEFAULT_DB_URL) -> Session:
    """Get a new database session."""
    SessionFactory = get_session_factory(db_url)
    return SessionFactory()


def reset_database(db_url: str = DEFAULT_DB_URL) -> None:
    """Drop all tables and recreate (WARNING: deletes all data!)."""
    engine = create_db_engine(db_url)
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    print(f"[WARN] Database reset: {db_url}")
