"""
Module: mfg_kernel.db.engine
Responsibility: Builds engines for PostgreSQL or SQLite, session factories,
    the session_scope transaction helper, and schema create/drop.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers
    (except create_tables, which imports the ORM registry).

Invariants enforced:
    - PostgreSQL sessions run at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) wherever check-then-act is required.
    - SQLite has no row locks, so every SQLite transaction starts with
      BEGIN IMMEDIATE: writers serialize on the database lock, which gives
      the same check-then-act guarantee.
    - Connection pooling with pre-ping on server databases.

Failure modes:
    - sqlite3.OperationalError ("database is locked") if a writer waits
      longer than the configured busy timeout.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from mfg_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")


def _install_sqlite_locking(engine: Engine) -> None:
    """Take over transaction control from pysqlite and begin IMMEDIATE."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: int = 30,
) -> Engine:
    """
    Create an Engine for a PostgreSQL or SQLite URL without touching the
    module-level engine.

    Each call returns an independent engine, which lets tests run against
    isolated databases side by side.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": sqlite_busy_timeout},
        )
        _install_sqlite_locking(engine)
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

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "echo": echo},
    )
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to engine; objects stay usable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    One transaction: commit on normal exit, rollback and re-raise on error.

    Usage:
        with session_scope(factory) as session:
            MasterDataService(session).create_bin(...)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """Create kernel and module tables (module ORMs are imported first)."""
    from mfg_kernel.db.base import Base
    from mfg_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    """Drop every table.  Tests against a shared PostgreSQL database use this."""
    from mfg_kernel.db.base import Base
    from mfg_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.drop_all(engine)
