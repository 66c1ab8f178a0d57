"""
Unit of work lifecycle: state transitions, commit/rollback exactly once,
read-your-writes inside one transaction and failures of the backend.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from domain_impl import UowState
from domain_models import NewProduct, NewPurchase
from errors import InvalidStateError, StorageError


async def test_begin_commit_transitions(uow_factory):
    uow = uow_factory()
    assert uow.state is UowState.UNINITIALIZED

    handle = await uow.begin()
    assert uow.state is UowState.ACTIVE
    assert handle.is_open

    await uow.commit()
    assert uow.state is UowState.COMMITTED
    assert not handle.is_open


async def test_repositories_require_begin(uow_factory):
    uow = uow_factory()
    with pytest.raises(InvalidStateError):
        uow.product_repo
    with pytest.raises(InvalidStateError):
        await uow.commit()


async def test_terminal_states_are_final(uow_factory):
    uow = uow_factory()
    await uow.begin()
    await uow.rollback()
    assert uow.state is UowState.ROLLED_BACK

    with pytest.raises(InvalidStateError):
        await uow.commit()
    with pytest.raises(InvalidStateError):
        await uow.rollback()
    with pytest.raises(InvalidStateError):
        await uow.begin()
    with pytest.raises(InvalidStateError):
        uow.purchase_repo


async def test_begin_twice_is_rejected(uow_factory):
    uow = uow_factory()
    await uow.begin()
    try:
        with pytest.raises(InvalidStateError):
            await uow.begin()
    finally:
        await uow.rollback()


async def test_rollback_without_changes_keeps_state(uow_factory, make_product, committed_state):
    product = await make_product(stock=6)

    uow = uow_factory()
    await uow.begin()
    await uow.rollback()

    assert await committed_state(product.id) == (6, 0)


async def test_reads_see_earlier_writes_of_same_transaction(uow_factory, make_product, committed_state):
    product = await make_product(stock=10)

    async with uow_factory() as uow:
        await uow.product_repo.update(product.id, replace(product, stock=7))
        assert (await uow.product_repo.find_one(product.id)).stock == 7

        created = await uow.purchase_repo.create(
            NewPurchase(product_id=product.id, quantity=3, date=datetime.now(timezone.utc))
        )
        assert [p.id for p in await uow.purchase_repo.find_all()] == [created.id]
        await uow.rollback()

    assert await committed_state(product.id) == (10, 0)


async def test_context_manager_commits_on_clean_exit(uow_factory):
    async with uow_factory() as uow:
        created = await uow.product_repo.create(NewProduct(name="Mug", price=Decimal("3"), stock=2))
    assert uow.state is UowState.COMMITTED

    async with uow_factory() as uow:
        assert (await uow.product_repo.find_one(created.id)).name == "Mug"


async def test_context_manager_rolls_back_and_reraises(uow_factory):
    boom = ValueError("boom")
    with pytest.raises(ValueError) as info:
        async with uow_factory() as uow:
            await uow.product_repo.create(NewProduct(name="Mug", price=Decimal("3"), stock=2))
            raise boom

    assert info.value is boom
    assert uow.state is UowState.ROLLED_BACK
    async with uow_factory() as uow:
        assert await uow.product_repo.find_all() == []


async def test_failed_commit_is_storage_error_and_stores_nothing(uow_factory, monkeypatch):
    async def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    uow = uow_factory()
    await uow.begin()
    await uow.product_repo.create(NewProduct(name="Mug", price=Decimal("3"), stock=2))

    monkeypatch.setattr(AsyncSession, "commit", failing_commit)
    with pytest.raises(StorageError):
        await uow.commit()
    monkeypatch.undo()

    assert uow.state is UowState.ROLLED_BACK
    with pytest.raises(InvalidStateError):
        await uow.rollback()
    async with uow_factory() as check:
        assert await check.product_repo.find_all() == []


async def test_unreachable_backend_fails_begin(uow_factory, monkeypatch):
    async def refuse_connection(self, *args, **kwargs):
        raise OperationalError("BEGIN", {}, Exception("unable to open database file"))

    monkeypatch.setattr(AsyncSession, "connection", refuse_connection)
    uow = uow_factory()
    with pytest.raises(StorageError):
        await uow.begin()

    assert uow.state is UowState.ROLLED_BACK
    with pytest.raises(InvalidStateError):
        await uow.begin()


async def test_failed_rollback_keeps_original_error(uow_factory, monkeypatch, caplog):
    async def failing_rollback(self):
        raise OperationalError("ROLLBACK", {}, Exception("disk I/O error"))

    boom = ValueError("boom")
    monkeypatch.setattr(AsyncSession, "rollback", failing_rollback)
    with caplog.at_level(logging.ERROR, logger="domain_impl"):
        with pytest.raises(ValueError) as info:
            async with uow_factory() as uow:
                await uow.product_repo.create(NewProduct(name="Mug", price=Decimal("3"), stock=2))
                raise boom
    monkeypatch.undo()

    assert info.value is boom
    assert uow.state is UowState.ROLLED_BACK
    assert any(r.levelno == logging.ERROR and "Rollback failed" in r.getMessage() for r in caplog.records)
    async with uow_factory() as check:
        assert await check.product_repo.find_all() == []


def close_then_fail(original_close):
    async def _close(self):
        await original_close(self)
        raise OperationalError("CLOSE", {}, Exception("connection reset"))

    return _close


async def test_failed_close_does_not_undo_commit(uow_factory, monkeypatch, caplog):
    monkeypatch.setattr(AsyncSession, "close", close_then_fail(AsyncSession.close))
    with caplog.at_level(logging.ERROR, logger="domain_impl"):
        async with uow_factory() as uow:
            created = await uow.product_repo.create(NewProduct(name="Mug", price=Decimal("3"), stock=2))
    monkeypatch.undo()

    assert uow.state is UowState.COMMITTED
    assert any("Closing the session failed" in r.getMessage() for r in caplog.records)
    async with uow_factory() as check:
        assert (await check.product_repo.find_one(created.id)).name == "Mug"


async def test_failed_close_does_not_mask_commit_failure(uow_factory, monkeypatch):
    async def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    uow = uow_factory()
    await uow.begin()
    await uow.product_repo.create(NewProduct(name="Mug", price=Decimal("3"), stock=2))

    monkeypatch.setattr(AsyncSession, "commit", failing_commit)
    monkeypatch.setattr(AsyncSession, "close", close_then_fail(AsyncSession.close))
    with pytest.raises(StorageError, match="commit failed"):
        await uow.commit()
    monkeypatch.undo()

    assert uow.state is UowState.ROLLED_BACK
    async with uow_factory() as check:
        assert await check.product_repo.find_all() == []
