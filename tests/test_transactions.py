"""TransactionCoordinator: commit, rollback on every exit path, read-only guard."""
import asyncio

import pytest
from sqlalchemy import insert, select

from musicnet.errors import ReadOnlyTransactionError, TransactionRollbackError
from musicnet.models import Band, BandMember, User
from musicnet.services import bands
from musicnet.services.transactions import TransactionCoordinator


class FailingRollbackSession:
    """Wraps a real session; rollback always fails."""

    def __init__(self, session):
        self._session = session

    def __getattr__(self, name):
        return getattr(self._session, name)

    async def rollback(self):
        raise RuntimeError("connection lost during rollback")


async def test_commit_on_success(session_factory, make_user, count_rows):
    creator = await make_user()
    coordinator = TransactionCoordinator(session_factory)

    band = await coordinator.run_atomic(
        lambda session: bands.create_band(session, creator.id, {"name": "Static"})
    )

    assert band.id
    assert await count_rows(Band) == 1
    assert await count_rows(BandMember) == 1


async def test_failing_step_leaves_no_rows(session_factory, make_user, count_rows):
    creator = await make_user()
    coordinator = TransactionCoordinator(session_factory)

    async def step(session):
        await bands.create_band(session, creator.id, {"name": "Half Written"})
        raise RuntimeError("second write failed")

    with pytest.raises(RuntimeError, match="second write failed"):
        await coordinator.run_atomic(step)

    assert await count_rows(Band) == 0
    assert await count_rows(BandMember) == 0


async def test_rollback_failure_reports_both_errors(session_factory):
    coordinator = TransactionCoordinator(lambda: FailingRollbackSession(session_factory()))

    async def step(session):
        raise ValueError("step failed")

    with pytest.raises(TransactionRollbackError) as info:
        await coordinator.run_atomic(step)

    error = info.value
    assert isinstance(error.original, ValueError)
    assert isinstance(error.rollback_error, RuntimeError)
    assert error.__cause__ is error.original
    assert "step failed" in error.details and "connection lost" in error.details


async def test_cancellation_rolls_back(session_factory, count_rows):
    coordinator = TransactionCoordinator(session_factory)
    written = asyncio.Event()

    async def step(session):
        session.add(Band(name="Never Committed"))
        await session.flush()
        written.set()
        await asyncio.sleep(10)

    task = asyncio.create_task(coordinator.run_atomic(step))
    await written.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert await count_rows(Band) == 0


async def test_read_only_rejects_pending_objects(session_factory, count_rows):
    coordinator = TransactionCoordinator(session_factory)

    async def step(session):
        session.add(Band(name="Sneaky"))
        await session.flush()

    with pytest.raises(ReadOnlyTransactionError):
        await coordinator.run_atomic_read_only(step)
    assert await count_rows(Band) == 0


async def test_read_only_rejects_dml_statements(session_factory, count_rows):
    coordinator = TransactionCoordinator(session_factory)

    async def step(session):
        await session.execute(insert(Band).values(name="Sneaky"))

    with pytest.raises(ReadOnlyTransactionError):
        await coordinator.run_atomic_read_only(step)
    assert await count_rows(Band) == 0


async def test_read_only_allows_queries(session_factory, make_user):
    user = await make_user(username="reader")
    coordinator = TransactionCoordinator(session_factory)

    async def step(session):
        result = await session.execute(select(User.username).where(User.id == user.id))
        return result.scalar_one()

    assert await coordinator.run_atomic_read_only(step) == "reader"


async def test_read_only_flag_does_not_leak(session_factory, count_rows):
    coordinator = TransactionCoordinator(session_factory)

    await coordinator.run_atomic_read_only(lambda session: asyncio.sleep(0))
    await coordinator.run_atomic(
        lambda session: session.execute(insert(Band).values(name="Allowed"))
    )

    assert await count_rows(Band) == 1
