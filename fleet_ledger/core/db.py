"""
Engine and session factory for the ledger database.

PostgreSQL is the production target: the write path depends on row locks
(``SELECT ... FOR UPDATE``) and the rollup on REPEATABLE READ snapshots.
SQLite is accepted for local runs and tests. Row locks are no-ops there, so
writers take the database write lock up front with ``BEGIN IMMEDIATE``.
"""

from __future__ import annotations

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import settings


def _pool_setting(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Request threads and the rollup ticker share one engine.
        return create_engine(url, future=True, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        future=True,
        pool_pre_ping=True,
        pool_size=_pool_setting("DB_POOL_SIZE", 5),
        max_overflow=_pool_setting("DB_MAX_OVERFLOW", 10),
        pool_recycle=_pool_setting("DB_POOL_RECYCLE_SEC", 1800),
        pool_timeout=_pool_setting("DB_POOL_TIMEOUT_SEC", 30),
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, future=True)


engine = build_engine(settings.database_url)
SessionLocal = make_session_factory(engine)


def get_db():
    """Yield a database session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dialect_name(db: Session) -> str:
    return db.get_bind().dialect.name


def is_postgres(db: Session) -> bool:
    return dialect_name(db) == "postgresql"


def begin_write(db: Session) -> None:
    """Open the write transaction. SQLite takes its database write lock here."""
    if dialect_name(db) != "sqlite":
        return
    raw = db.connection().connection.driver_connection
    if not raw.in_transaction:
        raw.execute("BEGIN IMMEDIATE")
