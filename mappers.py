from typing import Any

from db_models import DBProductRow, DBPurchaseRow
from domain_models import (
    NewProduct,
    NewPurchase,
    Product,
    Purchase,
)


class DomainEntityMapper:
    @staticmethod
    def new_product_to_row(product: NewProduct) -> DBProductRow:
        return DBProductRow(name=product.name, price=product.price, stock=product.stock)

    @staticmethod
    def product_row_to_domain(row: DBProductRow) -> Product:
        return Product(id=row.id, name=row.name, price=row.price, stock=row.stock)

    @staticmethod
    def product_to_values(product: Product) -> dict[str, Any]:
        # full row minus the key; ids never change
        return {"name": product.name, "price": product.price, "stock": product.stock}

    @staticmethod
    def new_purchase_to_row(purchase: NewPurchase) -> DBPurchaseRow:
        return DBPurchaseRow(
            product_id=purchase.product_id,
            quantity=purchase.quantity,
            date=purchase.date,
        )

    @staticmethod
    def purchase_row_to_domain(row: DBPurchaseRow) -> Purchase:
        return Purchase(
            id=row.id,
            product_id=row.product_id,
            quantity=row.quantity,
            date=row.date,
        )

    @staticmethod
    def purchase_to_values(purchase: Purchase) -> dict[str, Any]:
        return {
            "product_id": purchase.product_id,
            "quantity": purchase.quantity,
            "date": purchase.date,
        }
