from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from housecup.core.logger import election_logger as logger
from housecup.core.settings import get_settings

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; they are always stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def build_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    # check_same_thread=False is required for SQLite when using threads (Uvicorn workers, tests)
    engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 15})

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = build_sessionmaker(engine)


def init_db(bind: Optional[Engine] = None) -> None:
    # Import for side effect: registers the tables on Base.metadata.
    from housecup import db_models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_atomic(db: Session, work: Callable[[], T], *, attempts: Optional[int] = None) -> T:
    """
    Run ``work`` and commit it as one transaction.

    Transient storage failures (``OperationalError``, e.g. SQLite's
    "database is locked") roll back and repeat the whole unit, at most
    ``attempts`` times. Any other exception rolls back and propagates.
    """
    attempts = attempts or get_settings().db_retry_attempts
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except OperationalError as exc:
            db.rollback()
            if attempt >= attempts:
                raise
            logger.warning(f"Transient storage error (attempt {attempt}/{attempts}): {exc.orig}")
            time.sleep(0.05 * attempt)
        except Exception:
            db.rollback()
            raise
    raise RuntimeError("unreachable")


__all__ = [
    "Base",
    "SessionLocal",
    "as_utc",
    "build_engine",
    "build_sessionmaker",
    "engine",
    "get_db",
    "init_db",
    "run_atomic",
    "utcnow",
]
