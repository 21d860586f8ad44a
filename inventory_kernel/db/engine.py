"""
Module: inventory_kernel.db.engine
Responsibility: SQLAlchemy engine construction, session factory creation, and
    transactional scope utilities.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/, domain/, or outer layers (except for
    create_tables/drop_tables which import models).

Invariants enforced:
    - No module-level engine or pool.  Engines and session factories are
      created by the composition root and passed explicitly to every
      component that needs persistence.
    - PostgreSQL sessions run at READ COMMITTED with explicit row-level
      locking (FOR UPDATE) where serialization is needed.
    - SQLite (tests, local tooling) runs with foreign keys enabled and a
      bounded busy timeout.

Failure modes:
    - Connection pool exhaustion if pool_size + max_overflow is exceeded
      (surfaces after pool_timeout seconds).
    - Any exception inside session_scope() rolls the transaction back and
      propagates unchanged.
"""

from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from inventory_kernel.logging_config import get_logger

logger = get_logger("db.engine")

SessionFactory = Callable[[], Session]


def create_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Build a SQLAlchemy engine for the given database URL.

    Args:
        database_url: PostgreSQL or SQLite connection URL.
        echo: If True, log all SQL statements.
        pool_size: Connections kept in the pool (PostgreSQL only).
        max_overflow: Max connections beyond pool_size (PostgreSQL only).
        pool_pre_ping: Test connections before use (PostgreSQL only).
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
        sqlite_busy_timeout: Seconds SQLite waits on a locked database.

    Returns:
        SQLAlchemy Engine instance.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={
                "check_same_thread": False,
                "timeout": sqlite_busy_timeout,
            },
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        dialect = "sqlite"
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
        dialect = engine.dialect.name

    logger.info(
        "engine_created",
        extra={
            "dialect": dialect,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """
    Create the session factory injected into services.

    ``expire_on_commit=False`` so snapshots built inside a transaction stay
    readable after commit.
    """
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: SessionFactory) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  The exception
        is re-raised to the caller.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
    """
    session = session_factory()
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


def create_tables(engine: Engine) -> None:
    """
    Create all inventory tables.

    Imports the models package so Base.metadata contains every table.
    """
    import inventory_kernel.models  # noqa: F401
    from inventory_kernel.db.base import Base

    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def drop_tables(engine: Engine) -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    import inventory_kernel.models  # noqa: F401
    from inventory_kernel.db.base import Base

    Base.metadata.drop_all(engine)


def is_postgres(engine_or_session: Engine | Session) -> bool:
    """Check whether the bound dialect is PostgreSQL."""
    bind = engine_or_session
    if isinstance(engine_or_session, Session):
        bind = engine_or_session.get_bind()
    return bind.dialect.name == "postgresql"
