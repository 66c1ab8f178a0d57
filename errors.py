from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    PRODUCT_NOT_FOUND = "product_not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    STORAGE_ERROR = "storage_error"


class PurchaseError(Exception):
    """Base for every failure a purchase can end with.

    Each subclass maps to exactly one FailureKind so callers (an HTTP handler,
    a CLI) can translate it without inspecting messages.
    """

    kind: FailureKind


class ProductNotFound(PurchaseError):
    kind = FailureKind.PRODUCT_NOT_FOUND

    def __init__(self, product_id: int):
        super().__init__(f"product {product_id} not found")
        self.product_id = product_id


class InsufficientStock(PurchaseError):
    kind = FailureKind.INSUFFICIENT_STOCK

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"insufficient stock for product {product_id}: "
            f"requested={requested} available={available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class StorageError(PurchaseError):
    kind = FailureKind.STORAGE_ERROR


class EntityNotFound(LookupError):
    def __init__(self, entity: str, entity_id: object):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


# programming error: never turned into a PurchaseFailure
class InvalidStateError(RuntimeError):
    pass
