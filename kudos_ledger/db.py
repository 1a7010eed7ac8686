"""Database engine and session utilities."""

from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from kudos_ledger.config import get_settings

Base = declarative_base()

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _enable_sqlite_transactions(engine: Engine) -> None:
    """Emit ``BEGIN IMMEDIATE`` ourselves so SAVEPOINTs work and writers queue on the busy timeout."""

    @event.listens_for(engine, "connect")
    def _disable_implicit_begin(dbapi_connection, _connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection):  # pragma: no cover - driver hook
        connection.exec_driver_sql("BEGIN IMMEDIATE")


@lru_cache()
def get_engine() -> Engine:
    """Create or return a cached SQLAlchemy engine."""

    settings = get_settings()
    if settings.database_url.startswith("sqlite"):
        engine = create_engine(
            settings.database_url,
            future=True,
            echo=False,
            connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS, "check_same_thread": False},
        )
        _enable_sqlite_transactions(engine)
        return engine
    return create_engine(settings.database_url, future=True, echo=False, pool_pre_ping=True)


@lru_cache()
def get_session_factory() -> sessionmaker[Session]:
    """Return a cached session factory bound to the engine."""

    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, future=True)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope for DB operations."""

    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
