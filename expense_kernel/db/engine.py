"""
Module: expense_kernel.db.engine
Responsibility: builds SQLAlchemy engines for the supported backends, holds
    the process-wide engine used by ``expense_config.bootstrap`` and provides
    the transactional scope every workflow call runs in.
Architecture position: Kernel > DB.  May import from db/base.py.
    ``create_tables`` / ``drop_tables`` import models so their tables are
    registered; nothing else here knows about models or services.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; the workflow serializes decisions
      on an expense by updating its row first.
    - SQLite connections may be used from worker threads; in-memory databases
      share a single connection (StaticPool) so every session sees one schema.
    - ``session_scope`` commits on success and rolls back on any exception,
      so a refused decision never leaves a partial ledger write.

Failure modes:
    - RuntimeError from get_engine / get_session / get_session_factory before
      init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from expense_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
) -> Engine:
    """Create an engine tuned for the URL's backend, without registering it."""
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        options: dict = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **options)

    return create_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
) -> Engine:
    """
    Build the process-wide engine and its session factory.

    A second call replaces the first engine (disposing it).  Sessions from
    the factory keep loaded attributes after commit, so DTOs built from them
    stay readable once the transaction is over.
    """
    global _engine, _SessionFactory

    reset_engine()
    _engine = build_engine(database_url, echo=echo, pool_size=pool_size, max_overflow=max_overflow)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory handed to ``WorkflowController``: one session per call."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One transaction: commit on normal exit, roll back and re-raise otherwise.

    Args:
        factory: Session factory to use; defaults to the process-wide one.

    Usage:
        with session_scope(factory) as session:
            ExpenseService(session, HierarchyService(session)).submit_expense(...)
    """
    session = factory() if factory is not None else get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create every expense table that does not exist yet."""
    from expense_kernel.db.base import Base
    import expense_kernel.models  # noqa: F401  (registers tables)

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every expense table. Destroys all data; meant for tests and resets."""
    from expense_kernel.db.base import Base
    import expense_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the process-wide engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
