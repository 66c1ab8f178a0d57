from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Protocol, Sequence, TypeAlias, TypeVar, Union

from errors import FailureKind


@dataclass(frozen=True)
class NewProduct:
    name: str
    price: Decimal
    stock: int


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    price: Decimal
    stock: int


@dataclass(frozen=True)
class NewPurchase:
    product_id: int
    quantity: int
    date: datetime


@dataclass(frozen=True)
class Purchase:
    id: int
    product_id: int
    quantity: int
    date: datetime


# inbound shape, already validated by whoever calls us
@dataclass(frozen=True)
class PurchaseRequest:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PurchaseFailure:
    kind: FailureKind
    message: str
    error: Exception


PurchaseResult: TypeAlias = Union[Purchase, PurchaseFailure]


T = TypeVar("T")
NewT_contra = TypeVar("NewT_contra", contravariant=True)
K_contra = TypeVar("K_contra", contravariant=True)


# INTERFACES FOR REPOS THAT SERVE THE BUSINESS DOMAIN
class IRepository(Protocol[T, NewT_contra, K_contra]):
    async def create(self, entity: NewT_contra) -> T: ...

    async def find_all(self) -> Sequence[T]: ...

    async def find_one(self, entity_id: K_contra) -> T: ...

    async def update(self, entity_id: K_contra, changes: T) -> int: ...

    async def remove(self, entity_id: K_contra) -> int: ...


class IProductRepo(IRepository[Product, NewProduct, int], Protocol):
    async def find_one(self, entity_id: int, *, for_update: bool = False) -> Product: ...


class IPurchaseRepo(IRepository[Purchase, NewPurchase, int], Protocol):
    async def find_by_product(self, product_id: int) -> Sequence[Purchase]: ...


class ITransactionHandle(Protocol):
    @property
    def is_open(self) -> bool: ...


# one uow per business operation; both repos share its transaction
class IUnitOfWork(Protocol):
    @property
    def product_repo(self) -> IProductRepo: ...

    @property
    def purchase_repo(self) -> IPurchaseRepo: ...

    async def begin(self) -> ITransactionHandle: ...
    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...

    async def __aenter__(self) -> "IUnitOfWork": ...
    async def __aexit__(self, exc_type, exc, tb) -> bool: ...


UowFactory: TypeAlias = Callable[[], IUnitOfWork]
