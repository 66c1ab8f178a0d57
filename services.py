import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Sequence

from domain_models import (
    NewProduct,
    NewPurchase,
    Product,
    Purchase,
    PurchaseFailure,
    PurchaseRequest,
    PurchaseResult,
    UowFactory,
)
from errors import (
    EntityNotFound,
    FailureKind,
    InsufficientStock,
    ProductNotFound,
    PurchaseError,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PurchaseService:
    """Records purchases and takes the bought quantity out of stock.

    Each call runs in a fresh unit of work: the stock decrement and the new
    purchase row are committed together or not at all.
    """

    def __init__(self, uow_factory: UowFactory, clock: Callable[[], datetime] = utc_now):
        self.uow_factory = uow_factory
        self.clock = clock

    async def create(self, request: PurchaseRequest) -> PurchaseResult:
        """
        Returns the stored Purchase, or a PurchaseFailure whose kind tells the
        caller why nothing was recorded. InvalidStateError is not a failure
        outcome and propagates.
        """
        try:
            purchase = await self._record_purchase(request)
        except PurchaseError as exc:
            if exc.kind is FailureKind.STORAGE_ERROR:
                logger.error(
                    f"Purchase of product {request.product_id} failed in storage: {exc}",
                    exc_info=True,
                )
            else:
                logger.warning(f"Purchase rejected: {exc}")
            return PurchaseFailure(kind=exc.kind, message=str(exc), error=exc)

        logger.info(
            f"Purchase {purchase.id} recorded: product={purchase.product_id} quantity={purchase.quantity}"
        )
        return purchase

    async def _record_purchase(self, request: PurchaseRequest) -> Purchase:
        # any exception leaving the block rolls the unit of work back
        async with self.uow_factory() as uow:
            try:
                product = await uow.product_repo.find_one(request.product_id, for_update=True)
            except EntityNotFound as exc:
                raise ProductNotFound(request.product_id) from exc

            if product.stock < request.quantity:
                raise InsufficientStock(product.id, request.quantity, product.stock)

            new_stock = product.stock - request.quantity
            if await uow.product_repo.update(product.id, replace(product, stock=new_stock)) == 0:
                # deleted between our read and our write
                raise ProductNotFound(product.id)

            purchase = await uow.purchase_repo.create(
                NewPurchase(product_id=product.id, quantity=request.quantity, date=self.clock())
            )
            await uow.commit()
        return purchase

    async def history(self, product_id: int) -> Sequence[Purchase]:
        async with self.uow_factory() as uow:
            return await uow.purchase_repo.find_by_product(product_id)


class CatalogService:
    def __init__(self, uow_factory: UowFactory):
        self.uow_factory = uow_factory

    async def add_product(self, name: str, price: Decimal, stock: int) -> Product:
        async with self.uow_factory() as uow:
            product = await uow.product_repo.create(NewProduct(name=name, price=price, stock=stock))
        logger.info(f"Product '{product.name}' (ID: {product.id}) created with stock {product.stock}.")
        return product

    async def list_products(self) -> Sequence[Product]:
        async with self.uow_factory() as uow:
            return await uow.product_repo.find_all()

    async def get_product(self, product_id: int) -> Product:
        async with self.uow_factory() as uow:
            try:
                return await uow.product_repo.find_one(product_id)
            except EntityNotFound as exc:
                raise ProductNotFound(product_id) from exc

    async def remove_product(self, product_id: int) -> bool:
        async with self.uow_factory() as uow:
            removed = await uow.product_repo.remove(product_id) > 0
        if removed:
            logger.info(f"Product (ID: {product_id}) deleted.")
        return removed
