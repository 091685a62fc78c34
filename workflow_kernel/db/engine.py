"""
Engine and session management for the SQL storage adapter.

``init_engine_from_url`` must run before anything else in this module.
SQLite URLs (including ``sqlite:///:memory:``) share one connection through
``StaticPool`` so an in-memory database is visible to every session and
thread; other URLs get a pre-pinged pool.

Sessions handed out here are never committed by the storage adapter: the
caller owns the unit of work, usually through ``session_scope``.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from workflow_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_sessions: sessionmaker[Session] | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """Create the engine and session factory.  A second call replaces the first."""
    global _engine, _sessions

    if _engine is not None:
        _engine.dispose()

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
        )

    _engine = engine
    _sessions = sessionmaker(bind=engine, expire_on_commit=False)
    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "url": engine.url.render_as_string()},
    )
    return engine


def _require_factory() -> sessionmaker[Session]:
    if _sessions is None:
        raise RuntimeError("Database engine not initialized; call init_engine_from_url() first")
    return _sessions


def get_engine() -> Engine:
    _require_factory()
    assert _engine is not None
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    return _require_factory()


def get_session() -> Session:
    """A new session.  The caller closes it (or uses it as a context manager)."""
    return _require_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One unit of work: commit on normal exit, roll back and re-raise on error.

        with session_scope() as session:
            SqlWorkflowStorage(session).save_instance(instance)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the workflow tables on the current engine."""
    from workflow_kernel.db.base import Base
    import workflow_kernel.models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    from workflow_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _sessions

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None


atexit.register(reset_engine)
