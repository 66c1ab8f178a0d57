import asyncio
import logging
import sys
from decimal import Decimal

import config
from db import create_engine, init_models, make_session_factory
from domain_impl import make_uow_factory
from domain_models import PurchaseFailure, PurchaseRequest
from services import CatalogService, PurchaseService

logger = logging.getLogger(__name__)


async def purchase_workflow(catalog: CatalogService, purchases: PurchaseService) -> None:
    product = await catalog.add_product("Desk lamp", Decimal("24.90"), stock=10)

    for quantity in (3, 5, 4):
        result = await purchases.create(PurchaseRequest(product_id=product.id, quantity=quantity))
        if isinstance(result, PurchaseFailure):
            logger.info(f"quantity={quantity} -> {result.kind.value}: {result.message}")
        else:
            logger.info(f"quantity={quantity} -> purchase_id={result.id}")

    remaining = await catalog.get_product(product.id)
    history = await purchases.history(product.id)
    logger.info(f"'{remaining.name}' stock={remaining.stock} purchases={len(history)}")


async def main() -> None:
    engine = create_engine()
    try:
        await init_models(engine)
        uow_factory = make_uow_factory(make_session_factory(engine))
        await purchase_workflow(CatalogService(uow_factory), PurchaseService(uow_factory))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    asyncio.run(main())
