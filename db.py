"""
Async engine and session bootstrap.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

import config
from db_models import Base

logger = logging.getLogger(__name__)


def _configure_sqlite(engine: AsyncEngine) -> None:
    # The stdlib driver only starts transactions lazily before DML, which lets
    # two writers read the same stock level. Take the write lock up front.
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine(
    url: Optional[str] = None,
    *,
    echo: Optional[bool] = None,
    busy_timeout: Optional[float] = None,
) -> AsyncEngine:
    url = url or config.DATABASE_URL
    echo = config.DB_ECHO if echo is None else echo
    is_sqlite = make_url(url).get_backend_name() == "sqlite"

    if is_sqlite:
        timeout = config.SQLITE_BUSY_TIMEOUT if busy_timeout is None else busy_timeout
        engine = create_async_engine(url, echo=echo, connect_args={"timeout": timeout})
        _configure_sqlite(engine)
    else:
        # pool_pre_ping=True helps maintain healthy connections in a pool
        engine = create_async_engine(url, echo=echo, pool_pre_ping=True)

    logger.info(f"Database engine created for backend '{engine.dialect.name}'.")
    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: domain objects are mapped before commit anyway,
    # nothing should lazy-load after the transaction is gone
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=True)


async def init_models(engine: AsyncEngine) -> None:
    """Create missing tables. Migrations are someone else's job."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Ensured purchase tables exist.")

