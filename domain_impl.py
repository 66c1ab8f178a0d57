from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Base, DBProductRow, DBPurchaseRow

# DOMAIN MODELS TO IMPLEMENT
from domain_models import (
    IProductRepo,
    IPurchaseRepo,
    IUnitOfWork,
    NewProduct,
    NewPurchase,
    Product,
    Purchase,
    UowFactory,
)
from errors import EntityNotFound, InvalidStateError, StorageError
from mappers import DomainEntityMapper

logger = logging.getLogger(__name__)

# what the backend can throw at us; a driver timeout counts as a storage fault
_STORAGE_FAULTS = (SQLAlchemyError, TimeoutError)


def translate_storage_errors(fn):
    @wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except _STORAGE_FAULTS as exc:
            raise StorageError(f"{fn.__qualname__} failed: {exc}") from exc

    return wrapper


class TransactionHandle:
    """The one open transaction of a unit of work.

    Repositories reach the session only through here, so once the unit of
    work commits or rolls back every repository bound to it stops working.
    """

    def __init__(self, session: AsyncSession):
        self._session = session
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def session(self) -> AsyncSession:
        if not self._open:
            raise InvalidStateError("transaction is already finished")
        return self._session

    def close(self) -> None:
        self._open = False


RowT = TypeVar("RowT", bound=Base)
EntityT = TypeVar("EntityT")
NewEntityT = TypeVar("NewEntityT")


# IMPLEMENTATIONS
class SqlAlchemyRepository(Generic[RowT, EntityT, NewEntityT]):
    row_type: type[RowT]
    entity_name: str

    def __init__(
        self,
        tx: TransactionHandle,
        to_row: Callable[[NewEntityT], RowT],
        to_domain: Callable[[RowT], EntityT],
        to_values: Callable[[EntityT], dict[str, Any]],
    ):
        self._tx = tx
        self._to_row = to_row
        self._to_domain = to_domain
        self._to_values = to_values

    @translate_storage_errors
    async def create(self, entity: NewEntityT) -> EntityT:
        s = self._tx.session
        row = self._to_row(entity)
        s.add(row)
        await s.flush()  # ensures row.id assigned
        return self._to_domain(row)

    @translate_storage_errors
    async def find_all(self) -> Sequence[EntityT]:
        stmt = (
            select(self.row_type)
            .order_by(self.row_type.id)
            .execution_options(populate_existing=True)
        )
        rows = (await self._tx.session.scalars(stmt)).all()
        return [self._to_domain(row) for row in rows]

    async def find_one(self, entity_id: int) -> EntityT:
        return await self._find_one(entity_id)

    @translate_storage_errors
    async def _find_one(self, entity_id: int, for_update: bool = False) -> EntityT:
        # populate_existing: always take what the transaction sees right now,
        # not a stale copy from the identity map
        stmt = (
            select(self.row_type)
            .where(self.row_type.id == entity_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self._tx.session.scalars(stmt)).one_or_none()
        if row is None:
            raise EntityNotFound(self.entity_name, entity_id)
        return self._to_domain(row)

    @translate_storage_errors
    async def update(self, entity_id: int, changes: EntityT) -> int:
        stmt = (
            update(self.row_type)
            .where(self.row_type.id == entity_id)
            .values(**self._to_values(changes))
            .execution_options(synchronize_session=False)
        )
        result = await self._tx.session.execute(stmt)
        return result.rowcount

    @translate_storage_errors
    async def remove(self, entity_id: int) -> int:
        stmt = (
            delete(self.row_type)
            .where(self.row_type.id == entity_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._tx.session.execute(stmt)
        return result.rowcount


class SqlAlchemyProductRepo(SqlAlchemyRepository[DBProductRow, Product, NewProduct], IProductRepo):
    row_type = DBProductRow
    entity_name = "product"

    def __init__(self, tx: TransactionHandle):
        super().__init__(
            tx,
            to_row=DomainEntityMapper.new_product_to_row,
            to_domain=DomainEntityMapper.product_row_to_domain,
            to_values=DomainEntityMapper.product_to_values,
        )

    async def find_one(self, entity_id: int, *, for_update: bool = False) -> Product:
        return await self._find_one(entity_id, for_update=for_update)


class SqlAlchemyPurchaseRepo(SqlAlchemyRepository[DBPurchaseRow, Purchase, NewPurchase], IPurchaseRepo):
    row_type = DBPurchaseRow
    entity_name = "purchase"

    def __init__(self, tx: TransactionHandle):
        super().__init__(
            tx,
            to_row=DomainEntityMapper.new_purchase_to_row,
            to_domain=DomainEntityMapper.purchase_row_to_domain,
            to_values=DomainEntityMapper.purchase_to_values,
        )

    @translate_storage_errors
    async def find_by_product(self, product_id: int) -> Sequence[Purchase]:
        stmt = (
            select(DBPurchaseRow)
            .where(DBPurchaseRow.product_id == product_id)
            .order_by(DBPurchaseRow.id)
            .execution_options(populate_existing=True)
        )
        rows = (await self._tx.session.scalars(stmt)).all()
        return [DomainEntityMapper.purchase_row_to_domain(row) for row in rows]


@dataclass(frozen=True)
class UowDeps:
    product_repo: IProductRepo
    purchase_repo: IPurchaseRepo


class UowState(Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class SqlAlchemyUnitOfWork(IUnitOfWork):
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        deps_factory: Callable[[TransactionHandle], UowDeps],
    ):
        self._sf = session_factory
        self._deps_factory = deps_factory
        self._tx: Optional[TransactionHandle] = None
        self._deps: Optional[UowDeps] = None
        self.state = UowState.UNINITIALIZED

    @property
    def product_repo(self) -> IProductRepo:
        return self._active_deps().product_repo

    @property
    def purchase_repo(self) -> IPurchaseRepo:
        return self._active_deps().purchase_repo

    def _active_deps(self) -> UowDeps:
        self._require(UowState.ACTIVE, "use repositories of")
        assert self._deps is not None
        return self._deps

    def _require(self, state: UowState, action: str) -> None:
        if self.state is not state:
            raise InvalidStateError(
                f"cannot {action} a unit of work that is {self.state.value}"
            )

    async def begin(self) -> TransactionHandle:
        self._require(UowState.UNINITIALIZED, "begin")
        session = self._sf()
        try:
            await session.begin()
            # check out the connection now so an unreachable backend fails here
            await session.connection()
        except _STORAGE_FAULTS as exc:
            self.state = UowState.ROLLED_BACK
            await self._close(session)
            raise StorageError(f"could not begin transaction: {exc}") from exc

        self._tx = TransactionHandle(session)
        self._deps = self._deps_factory(self._tx)
        self.state = UowState.ACTIVE
        logger.debug("Unit of work began.")
        return self._tx

    async def commit(self) -> None:
        self._require(UowState.ACTIVE, "commit")
        assert self._tx is not None
        try:
            await self._tx.session.commit()
        except _STORAGE_FAULTS as exc:
            # the backend refused; nothing of this unit of work is stored
            self.state = UowState.ROLLED_BACK
            raise StorageError(f"commit failed: {exc}") from exc
        else:
            self.state = UowState.COMMITTED
            logger.debug("Unit of work committed.")
        finally:
            await self._release()

    async def rollback(self) -> None:
        self._require(UowState.ACTIVE, "roll back")
        assert self._tx is not None
        try:
            await self._tx.session.rollback()
        except _STORAGE_FAULTS as exc:
            raise StorageError(f"rollback failed: {exc}") from exc
        finally:
            self.state = UowState.ROLLED_BACK
            await self._release()
        logger.debug("Unit of work rolled back.")

    async def _release(self) -> None:
        assert self._tx is not None
        session = self._tx.session
        self._tx.close()
        await self._close(session)

    async def _close(self, session: AsyncSession) -> None:
        # the outcome is already decided by the time we get here; a failed
        # close must not turn a commit into an error or mask the real one
        try:
            await session.close()
        except _STORAGE_FAULTS:
            logger.error("Closing the session failed.", exc_info=True)

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        await self.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        # already committed or rolled back inside the block: nothing left to do
        if self.state is not UowState.ACTIVE:
            return False
        if exc_type is None:
            await self.commit()
        else:
            try:
                await self.rollback()
            except StorageError:
                # keep propagating the original error, not this one
                logger.error("Rollback failed after an error in the unit of work.", exc_info=True)
        return False


def make_uow_factory(session_factory: Callable[[], AsyncSession]) -> UowFactory:
    def deps_factory(tx: TransactionHandle) -> UowDeps:
        return UowDeps(
            product_repo=SqlAlchemyProductRepo(tx),
            purchase_repo=SqlAlchemyPurchaseRepo(tx),
        )

    return lambda: SqlAlchemyUnitOfWork(session_factory, deps_factory)
