"""
Module: points_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management
    and transactional scope utilities.  The single point of database
    connection configuration for the kernel.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py (create_tables imports the models package).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; correctness of concurrent decisions
      comes from conditional UPDATEs, not from isolation level.
    - PostgreSQL connections get ``statement_timeout`` so no store call blocks
      indefinitely.
    - SQLite is accepted for tests and local runs (single file, foreign keys
      switched on per connection).

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker

from points_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_pragmas(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _install_statement_timeout(engine: Engine, timeout_ms: int) -> None:
    @event.listens_for(engine, "connect")
    def _set_statement_timeout(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"SET statement_timeout = {int(timeout_ms)}")
        cursor.close()
        # psycopg2 opens a transaction implicitly; do not leave it dangling
        dbapi_connection.commit()


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    statement_timeout_ms: int | None = None,
) -> Engine:
    """
    Initialize the SQLAlchemy engine.

    Postconditions: module-level engine and session factory are set and the
        ORM immutability listeners are registered.  A second call replaces the
        first.

    Args:
        database_url: PostgreSQL or SQLite URL.
        echo: If True, log all SQL statements.
        pool_size: Connections kept in the pool (PostgreSQL only).
        max_overflow: Connections beyond pool_size (PostgreSQL only).
        pool_pre_ping: Test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        statement_timeout_ms: Per-statement timeout (PostgreSQL only).
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    dialect = url.get_backend_name()

    if dialect == "sqlite":
        _engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _install_sqlite_pragmas(_engine)
    else:
        _engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            isolation_level="READ COMMITTED",
        )
        if statement_timeout_ms:
            _install_statement_timeout(_engine, statement_timeout_ms)

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    from points_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()

    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "echo": echo,
            "statement_timeout_ms": statement_timeout_ms,
        },
    )
    return _engine


def init_engine_from_settings(settings, database_url: str | None = None) -> Engine:
    """
    Initialize from a ``points_kernel.config.KernelSettings``.

    ``database_url`` overrides ``settings.database.url`` (CLI flags).
    """
    db = settings.database
    return init_engine_from_url(
        database_url or db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_pre_ping=db.pool_pre_ping,
        pool_timeout=db.pool_timeout,
        statement_timeout_ms=db.statement_timeout_ms,
    )


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory.

    Each request handler (or test thread) creates its own session from it.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Transactional scope around a series of operations.

    Commits on normal exit, rolls back and re-raises on exception, always
    closes the session.

    Usage:
        with session_scope() as session:
            LedgerService(session).post(...)
    """
    session = get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create all tables defined in points_kernel.models."""
    from points_kernel.db.base import Base
    import points_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from points_kernel.db.base import Base
    import points_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory (test cleanup)."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


def _atexit_dispose():
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)


def is_postgres() -> bool:
    """Check if the current engine is PostgreSQL."""
    if _engine is None:
        return False
    return _engine.dialect.name == "postgresql"
