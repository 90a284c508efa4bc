from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from loyalty.config import settings
from loyalty.errors import PersistenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

engine = create_async_engine(settings.database_url, pool_pre_ping=True)
SessionFactory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def ping_database() -> None:
    async with engine.connect() as connection:
        await connection.execute(text("SELECT 1"))


async def dispose_database() -> None:
    await engine.dispose()


async def run_in_transaction(
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    retries: int | None = None,
) -> T:
    """Run ``work`` inside one transaction, retrying transient storage failures.

    Domain errors raised by ``work`` roll the transaction back and propagate
    unchanged. A ``DBAPIError`` is retried ``retries`` times on a fresh session
    before surfacing as ``PersistenceError``.
    """

    factory = session_factory or SessionFactory
    attempts_left = max(settings.persistence_retry_attempts if retries is None else retries, 0)
    attempt = 0
    while True:
        attempt += 1
        try:
            async with factory() as session:
                async with session.begin():
                    return await work(session)
        except DBAPIError as exc:
            if attempts_left <= 0:
                logger.error("Transaction failed after %s attempt(s): %s", attempt, exc)
                raise PersistenceError(details={"attempts": attempt}) from exc
            attempts_left -= 1
            logger.warning("Transaction attempt %s failed, retrying: %s", attempt, exc)
