"""
Database configuration and session management.

This module is intentionally small and test-friendly:
- Defaults to SQLite for local dev
- Supports Postgres via DATABASE_URL
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from grantsync.config import get_settings
from grantsync.models.base import Base


def get_database_url() -> str:
    settings = get_settings()
    return settings.DATABASE_URL


def create_db_engine(database_url: Optional[str] = None, *, echo: bool = False):
    url = database_url or get_database_url()

    connect_args: dict = {}
    if "sqlite" in url:
        connect_args["check_same_thread"] = False

    if url.startswith("sqlite:///:memory:"):
        from sqlalchemy.pool import StaticPool

        engine = create_engine(
            url,
            echo=echo,
            connect_args=connect_args,
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            pool_recycle=3600,
            connect_args=connect_args,
        )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record):  # pragma: no cover
        if "sqlite" in url:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=bind
    )


if os.getenv("GRANTSYNC_NO_ENGINE") != "true":
    engine = create_db_engine()
    SessionLocal = create_session_factory(engine)
else:  # pragma: no cover
    engine = None
    SessionLocal = None


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def import_all_models() -> None:
    """Register every mapped class on Base.metadata."""
    from grantsync.acl import models as _acl_models  # noqa: F401
    from grantsync.acl import schema as _schema_models  # noqa: F401


def init_db(*, create_tables: bool = False, bind_engine: Optional[Engine] = None) -> None:
    """
    Initialize database schema.

    When SCHEMA_MODE=external, tables are owned by another service and this
    only verifies that they exist.
    """
    settings = get_settings()
    target_engine = bind_engine or engine
    if not target_engine:
        raise RuntimeError("Database engine is not initialized")

    import_all_models()

    if settings.SCHEMA_MODE == "external":
        from sqlalchemy import inspect

        existing_tables = set(inspect(target_engine).get_table_names())
        missing = sorted(set(Base.metadata.tables) - existing_tables)
        if missing:
            raise RuntimeError(
                f"SCHEMA_MODE=external: missing tables {', '.join(missing)}"
            )
        return

    if create_tables:
        Base.metadata.create_all(bind=target_engine, checkfirst=True)
