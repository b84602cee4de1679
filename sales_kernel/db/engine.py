"""
Module: sales_kernel.db.engine
Responsibility: Process-wide engine and session factory for the kernel,
    plus ``session_scope`` for callers outside the orchestrator.
Architecture position: Kernel > DB.  ``create_tables`` imports the models
    package so ``Base.metadata`` is complete; nothing else here knows about
    models, services or selectors.

Invariants enforced:
    - PostgreSQL sessions run at READ COMMITTED; sale transitions add
      explicit ``SELECT ... FOR UPDATE`` on the sale row.
    - SQLite (tests, local tooling) ignores FOR UPDATE; the sale's version
      column still rejects stale writes.
    - ``expire_on_commit=False``: DTOs built inside a transaction stay
      readable after it.

Failure modes:
    - RuntimeError from get_engine/get_session/get_session_factory before
      an ``init_engine_*`` call.
"""

import atexit
from contextlib import contextmanager
from typing import TYPE_CHECKING, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from sales_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from sales_kernel.config import SalesKernelConfig

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _build_engine(
    database_url: str,
    *,
    echo: bool,
    pool_size: int,
    max_overflow: int,
    pool_pre_ping: bool,
    pool_timeout: int,
) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        kwargs: dict = {"echo": echo, "connect_args": {"check_same_thread": False}}
        # One shared connection, or every session would see its own empty database.
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
) -> Engine:
    """
    Create the engine and session factory, replacing any previous ones.

    Pool settings apply to PostgreSQL only.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = _build_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return _engine


def init_engine_from_config(config: "SalesKernelConfig") -> Engine:
    """Initialize the engine from a loaded ``SalesKernelConfig``."""
    return init_engine_from_url(
        config.database_url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
    )


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that need one session per worker or request."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on normal exit, roll back and re-raise on error, always close.

        with session_scope() as session:
            session.add(customer)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_scope_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    from sales_kernel.db.base import Base
    import sales_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every kernel table. Tests and local tooling only."""
    from sales_kernel.db.base import Base
    import sales_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
