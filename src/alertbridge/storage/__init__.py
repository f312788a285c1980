"""Storage backends and the factory that picks one from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from alertbridge.repositories import AckEventRepository, AlertRepository, SilenceRepository
from alertbridge.storage.database import Database
from alertbridge.storage.memory import (
    MemoryAckEventRepository,
    MemoryAlertRepository,
    MemorySilenceRepository,
    MemoryStore,
)
from alertbridge.storage.postgres import create_postgres_database
from alertbridge.storage.sql import SqlAckEventRepository, SqlAlertRepository, SqlSilenceRepository
from alertbridge.storage.sqlite import create_sqlite_database

if TYPE_CHECKING:
    from alertbridge.config import StorageSettings

logger = logging.getLogger(__name__)


@dataclass
class Storage:
    """The three repositories of one backend plus the handle that owns them."""

    alerts: AlertRepository
    acks: AckEventRepository
    silences: SilenceRepository
    database: Database | None = None

    async def close(self) -> None:
        if self.database is not None:
            await self.database.dispose()


def memory_storage() -> Storage:
    store = MemoryStore()
    return Storage(
        alerts=MemoryAlertRepository(store),
        acks=MemoryAckEventRepository(store),
        silences=MemorySilenceRepository(store),
    )


async def sql_storage(db: Database, *, create_tables: bool = True) -> Storage:
    if create_tables:
        await db.init_db()
    return Storage(
        alerts=SqlAlertRepository(db),
        acks=SqlAckEventRepository(db),
        silences=SqlSilenceRepository(db),
        database=db,
    )


async def open_storage(settings: StorageSettings, *, echo: bool = False) -> Storage:
    """Build the backend named by ``settings.type``."""
    if settings.type == "memory":
        logger.info("using in-memory storage")
        return memory_storage()
    if settings.type == "sqlite":
        db = create_sqlite_database(
            settings.sqlite_path,
            busy_timeout_ms=settings.busy_timeout_ms,
            echo=echo,
        )
        return await sql_storage(db)
    if settings.type == "postgres":
        db = create_postgres_database(settings.postgres_url, pool_size=settings.pool_size, echo=echo)
        return await sql_storage(db, create_tables=settings.create_tables)
    raise ValueError(f"unknown storage type: {settings.type}")


__all__ = [
    "Database",
    "MemoryAckEventRepository",
    "MemoryAlertRepository",
    "MemorySilenceRepository",
    "MemoryStore",
    "SqlAckEventRepository",
    "SqlAlertRepository",
    "SqlSilenceRepository",
    "Storage",
    "create_postgres_database",
    "create_sqlite_database",
    "memory_storage",
    "open_storage",
    "sql_storage",
]
