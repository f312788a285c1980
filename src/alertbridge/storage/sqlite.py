"""Single-writer embedded backend (SQLite through aiosqlite).

The pool holds exactly one connection, so writes from this process are
serialised; other processes are handled by the busy timeout and WAL.
"""

from __future__ import annotations

import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool

from alertbridge.storage.database import Database

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


def create_sqlite_database(
    path: str,
    *,
    busy_timeout_ms: int = 5000,
    echo: bool = False,
) -> Database:
    if path == MEMORY_PATH:
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{path}",
            echo=echo,
            poolclass=AsyncAdaptedQueuePool,
            pool_size=1,
            max_overflow=0,
        )

    @event.listens_for(engine.sync_engine, "connect")
    def _set_pragmas(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        if path != MEMORY_PATH:
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    logger.info("using sqlite storage at %s", path)
    return Database(engine)
