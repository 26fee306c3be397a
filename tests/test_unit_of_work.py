"""Tests for the unit of work."""

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from order_service.db.models import Product
from order_service.db.unit_of_work import UnitOfWork


def recorder(calls, name, fail=False):
    async def action(db):
        calls.append(name)
        if fail:
            raise RuntimeError(f"{name} failed")
    return action


async def test_unknown_mode(db):
    with pytest.raises(ValueError):
        UnitOfWork(db, "eventually")


async def test_transaction_rollback_skips_compensations(db, session_factory):
    calls = []
    with pytest.raises(RuntimeError):
        async with UnitOfWork(db) as uow:
            db.add(Product(name="Kept out", price=1, stock=1))
            await uow.step_completed()
            uow.add_compensation("first", recorder(calls, "first"))
            raise RuntimeError("boom")

    assert calls == []
    async with session_factory() as session:
        assert (await session.execute(select(func.count(Product.id)))).scalar_one() == 0


async def test_saga_compensates_in_reverse(db, session_factory):
    calls = []
    with pytest.raises(RuntimeError):
        async with UnitOfWork(db, "saga") as uow:
            db.add(Product(name="Committed", price=1, stock=1))
            await uow.step_completed()
            uow.add_compensation("first", recorder(calls, "first"))
            uow.add_compensation("second", recorder(calls, "second"))
            raise RuntimeError("boom")

    assert calls == ["second", "first"]
    async with session_factory() as session:
        # saga steps are durable until compensated
        assert (await session.execute(select(func.count(Product.id)))).scalar_one() == 1


async def test_saga_runs_all_compensations_before_reporting_failure(db):
    calls = []
    uow = UnitOfWork(db, "saga")
    uow.add_compensation("first", recorder(calls, "first"))
    uow.add_compensation("second", recorder(calls, "second", fail=True))

    with pytest.raises(RuntimeError, match="second failed"):
        await uow.rollback()
    assert calls == ["second", "first"]


async def test_commit_forgets_compensations(db):
    calls = []
    uow = UnitOfWork(db, "saga")
    uow.add_compensation("first", recorder(calls, "first"))
    await uow.commit()
    await uow.rollback()
    assert calls == []
