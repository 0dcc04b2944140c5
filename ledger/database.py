"""
Database engine, session management, unit-of-work helpers and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request
  - atomic(): SAVEPOINT scope for one multi-entity ledger operation
  - run_in_unit_of_work(): runs an operation in its own session, retrying
    serialization conflicts a bounded number of times
  - UnitOfWork: the request-scoped runner mutating endpoints use, so
    their writes get the same retry

Unit of work:
  The AsyncSession handed to a service IS the unit of work. Read-only
  endpoints get it from get_db, which commits when the request succeeds
  and rolls back on any exception. Mutating endpoints go through
  UnitOfWork.run(), which does the same and also re-runs the operation
  when the database reports a serialization conflict. Inside a
  request, every service operation that touches several rows (balance +
  transaction + invoice + limit) wraps its writes in atomic(db): if the
  operation fails halfway, its SAVEPOINT is rolled back and the session is
  left exactly as it was before the call.

SQLite note:
  The sqlite3 driver manages BEGIN itself and breaks SAVEPOINT semantics.
  configure_sqlite_transactions() switches the driver to manual mode and
  emits BEGIN from SQLAlchemy, which makes nested transactions behave the
  same as on PostgreSQL.
"""

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ledger.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def configure_sqlite_transactions(engine: AsyncEngine) -> None:
    """Make pysqlite/aiosqlite honour BEGIN and SAVEPOINT the way SQLAlchemy expects."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


# Create the async engine.
# echo=True in debug mode logs all SQL statements.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)
configure_sqlite_transactions(engine)

# expire_on_commit=False prevents lazy-load errors after commit —
# accessing attributes on a committed object would otherwise trigger
# a synchronous DB call, which fails in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    The session is committed on success and rolled back on any exception,
    so a request either persists all of its ledger writes or none of them.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def atomic(db: AsyncSession):
    """
    Open a SAVEPOINT for one ledger operation.

    Usage:
        async with atomic(db):
            ...  # every write here commits or rolls back together
    """
    return db.begin_nested()


def _is_serialization_failure(exc: DBAPIError) -> bool:
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if code in ("40001", "40P01"):
        return True
    message = str(exc.orig).lower()
    return any(
        marker in message
        for marker in ("could not serialize", "deadlock detected", "database is locked")
    )


async def run_in_unit_of_work(
    operation: Callable[[AsyncSession], Awaitable[T]],
    session_factory: async_sessionmaker = AsyncSessionLocal,
    attempts: int | None = None,
) -> T:
    """
    Run `operation(session)` in a fresh session and commit it.

    Serialization conflicts (concurrent writers on the same rows) roll the
    attempt back and re-run it, up to `attempts` times. Any other error
    rolls back and propagates immediately.
    """
    attempts = attempts or settings.SERIALIZATION_RETRY_ATTEMPTS

    for attempt in range(1, attempts + 1):
        async with session_factory() as session:
            try:
                result = await operation(session)
                await session.commit()
                return result
            except DBAPIError as exc:
                await session.rollback()
                if not _is_serialization_failure(exc) or attempt == attempts:
                    raise
                logger.warning(
                    "Serialization conflict, retrying unit of work",
                    extra={"attempt": attempt, "max_attempts": attempts},
                )
            except Exception:
                await session.rollback()
                raise

    raise RuntimeError("unreachable")  # pragma: no cover


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency naming the factory units of work open sessions from."""
    return AsyncSessionLocal


class UnitOfWork:
    """
    Runs one ledger operation per request through run_in_unit_of_work().

    Usage (in a router):
        return await uow.run(transaction_service.create_transaction, ctx, ...)

    The service function receives a fresh session as its first argument,
    and the session is committed when it returns. A serialization conflict
    re-runs the whole operation in a new session.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def run(self, service: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        return await run_in_unit_of_work(
            lambda session: service(session, *args, **kwargs),
            session_factory=self.session_factory,
        )
