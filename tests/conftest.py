"""
Shared fixtures: every test gets its own SQLite file, so tests never see each
other's rows and concurrent connections behave like they would in production.
"""

import logging
from decimal import Decimal

import pytest

from db import create_engine, init_models, make_session_factory
from domain_impl import make_uow_factory
from services import CatalogService, PurchaseService

# Suppress noisy logs from SQLAlchemy during tests for cleaner output
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'purchases.sqlite'}",
        echo=False,
        busy_timeout=5,
    )
    await init_models(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def uow_factory(engine):
    return make_uow_factory(make_session_factory(engine))


@pytest.fixture
def catalog(uow_factory):
    return CatalogService(uow_factory)


@pytest.fixture
def purchase_service(uow_factory):
    return PurchaseService(uow_factory)


@pytest.fixture
def make_product(catalog):
    async def _make(stock: int, name: str = "Widget", price: str = "9.99"):
        return await catalog.add_product(name, Decimal(price), stock=stock)

    return _make


@pytest.fixture
def committed_state(uow_factory):
    """(stock, purchase count) as committed, read in a separate unit of work."""

    async def _read(product_id):
        async with uow_factory() as uow:
            product = await uow.product_repo.find_one(product_id)
            purchases = await uow.purchase_repo.find_by_product(product_id)
        return product.stock, len(purchases)

    return _read
