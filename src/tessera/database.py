"""
Database configuration and session management.

- Defaults to SQLite for local dev
- Supports any SQLAlchemy URL via TESSERA_DATABASE_URL
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tessera.config import get_settings
from tessera.models.base import Base


def get_database_url() -> str:
    return get_settings().DATABASE_URL


def create_db_engine(database_url: Optional[str] = None, *, echo: Optional[bool] = None) -> Engine:
    url = database_url or get_database_url()
    if echo is None:
        echo = get_settings().SQL_ECHO

    connect_args: dict = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    if url.startswith("sqlite:///:memory:") or url == "sqlite://":
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

    if url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragma)

    return engine


def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    # LIKE must be case-sensitive to agree with in-memory policy evaluation.
    cursor.execute("PRAGMA case_sensitive_like=ON")
    cursor.close()


def make_sessionmaker(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = create_db_engine()
SessionLocal = make_sessionmaker(engine)


def import_all_models() -> None:
    """Register every mapped table on `Base.metadata`."""
    from tessera.models import post as _post  # noqa: F401
    from tessera.models import user as _user  # noqa: F401
    from tessera.security.rbac import models as _rbac  # noqa: F401


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


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


def init_db(*, create_tables: bool = False, bind_engine: Optional[Engine] = None) -> None:
    """Create all tables (idempotent) when `create_tables` is set."""
    target_engine = bind_engine or engine
    import_all_models()
    if create_tables:
        Base.metadata.create_all(bind=target_engine, checkfirst=True)
