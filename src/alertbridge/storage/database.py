"""Async engine and session factory owned by one storage backend."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from alertbridge.errors import AlreadyExistsError, NotFoundError, TransientError
from alertbridge.storage.tables import Base

logger = logging.getLogger(__name__)


class Database:
    """Wraps an :class:`AsyncEngine`; one instance per backend, never global."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def init_db(self) -> None:
        """Create all tables.  Schema migrations are managed outside this package."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        """Dispose of the connection pool."""
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction, committing on success.

        Driver errors are translated into the repository error taxonomy.
        """
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except IntegrityError as exc:
                raise classify_integrity_error(exc) from exc
            except (OperationalError, InterfaceError) as exc:
                logger.warning("storage unavailable: %s", exc)
                raise TransientError(f"storage unavailable: {exc.orig}", exc) from exc


def classify_integrity_error(exc: DBAPIError) -> Exception:
    message = str(exc.orig).lower()
    if "foreign key" in message:
        return NotFoundError(f"referenced record does not exist: {exc.orig}")
    return AlreadyExistsError(f"record already exists: {exc.orig}")
