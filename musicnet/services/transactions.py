"""
TransactionCoordinator: runs a unit of work atomically.

    result = await coordinator.run_atomic(fn)            # fn(session) -> result
    result = await coordinator.run_atomic_read_only(fn)

Every exit path releases the session:
  success             → commit
  fn raised Exception → rollback, re-raise the original
                        (rollback failed → TransactionRollbackError, original as __cause__)
  cancellation / interrupt (not an Exception)
                      → rollback attempted, then the fault propagates

Read-only units are guarded on every dialect by session events that reject
INSERT/UPDATE/DELETE statements and pending ORM writes; PostgreSQL also gets
SET TRANSACTION READ ONLY.
"""
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import TextClause

from musicnet.errors import (
    ReadOnlyTransactionError,
    TransactionError,
    TransactionRollbackError,
)
from musicnet.telemetry import TRANSACTIONS_TOTAL

logger = logging.getLogger(__name__)

T = TypeVar("T")

READ_ONLY_KEY = "musicnet.read_only"
# PostgreSQL: read_only_sql_transaction
_PG_READ_ONLY_SQLSTATE = "25006"
_WRITE_KEYWORDS = ("insert", "update", "delete", "merge")


# ── Read-only guards ──────────────────────────────────────────────────────

@event.listens_for(Session, "do_orm_execute")
def _reject_dml_in_read_only(orm_execute_state) -> None:  # noqa: ANN001
    if not orm_execute_state.session.info.get(READ_ONLY_KEY):
        return
    statement = orm_execute_state.statement
    is_write = (
        orm_execute_state.is_insert
        or orm_execute_state.is_update
        or orm_execute_state.is_delete
    )
    if isinstance(statement, TextClause):
        is_write = statement.text.lstrip().lower().startswith(_WRITE_KEYWORDS)
    if is_write:
        raise ReadOnlyTransactionError(
            "Write attempted in a read-only transaction", str(statement)
        )


@event.listens_for(Session, "before_flush")
def _reject_flush_in_read_only(session, _flush_context, _instances) -> None:  # noqa: ANN001
    if not session.info.get(READ_ONLY_KEY):
        return
    if session.new or session.dirty or session.deleted:
        raise ReadOnlyTransactionError(
            "Write attempted in a read-only transaction",
            f"{len(session.new)} new, {len(session.dirty)} dirty, "
            f"{len(session.deleted)} deleted objects pending",
        )


def _is_pg_read_only_violation(exc: BaseException) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == _PG_READ_ONLY_SQLSTATE


# ── Coordinator ───────────────────────────────────────────────────────────

class TransactionCoordinator:
    """Holds only the session factory; safe to share across requests."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def run_atomic(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        return await self._run(fn, read_only=False)

    async def run_atomic_read_only(
        self, fn: Callable[[AsyncSession], Awaitable[T]]
    ) -> T:
        return await self._run(fn, read_only=True)

    async def _run(self, fn, read_only: bool):
        mode = "read_only" if read_only else "read_write"
        session = self._session_factory()
        try:
            try:
                await session.begin()
                if read_only:
                    session.info[READ_ONLY_KEY] = True
                    if session.bind.dialect.name == "postgresql":
                        await session.execute(text("SET TRANSACTION READ ONLY"))
            except SQLAlchemyError as exc:
                TRANSACTIONS_TOTAL.labels(mode=mode, outcome="begin_failed").inc()
                raise TransactionError("Failed to begin transaction", str(exc)) from exc

            try:
                result = await fn(session)
            except Exception as exc:
                await self._rollback_after(session, exc, mode)
                if read_only and _is_pg_read_only_violation(exc):
                    raise ReadOnlyTransactionError(
                        "Write attempted in a read-only transaction", str(exc)
                    ) from exc
                raise
            except BaseException:
                # cancelled or interrupted: still release the row locks
                await self._rollback_quietly(session, mode)
                raise

            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await self._rollback_quietly(session, mode)
                TRANSACTIONS_TOTAL.labels(mode=mode, outcome="commit_failed").inc()
                raise TransactionError("Failed to commit transaction", str(exc)) from exc

            TRANSACTIONS_TOTAL.labels(mode=mode, outcome="committed").inc()
            return result
        finally:
            session.info.pop(READ_ONLY_KEY, None)
            await session.close()

    async def _rollback_after(
        self, session: AsyncSession, original: Exception, mode: str
    ) -> None:
        try:
            await session.rollback()
        except Exception as rollback_exc:
            TRANSACTIONS_TOTAL.labels(mode=mode, outcome="rollback_failed").inc()
            logger.error(
                "Rollback failed: %r (original error: %r)", rollback_exc, original
            )
            raise TransactionRollbackError(original, rollback_exc) from original
        TRANSACTIONS_TOTAL.labels(mode=mode, outcome="rolled_back").inc()
        logger.debug("Transaction rolled back after %r", original)

    async def _rollback_quietly(self, session: AsyncSession, mode: str) -> None:
        try:
            await session.rollback()
        except Exception as rollback_exc:
            TRANSACTIONS_TOTAL.labels(mode=mode, outcome="rollback_failed").inc()
            logger.error("Rollback during abort failed: %r", rollback_exc)
            return
        TRANSACTIONS_TOTAL.labels(mode=mode, outcome="rolled_back").inc()
