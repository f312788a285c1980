"""Networked multi-writer backend (PostgreSQL through asyncpg).

Several service instances may write concurrently; conflicts are detected
only by the version check in each ``UPDATE``.  There is no distributed lock.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine

from alertbridge.storage.database import Database

logger = logging.getLogger(__name__)


def create_postgres_database(
    url: str,
    *,
    pool_size: int = 5,
    echo: bool = False,
) -> Database:
    parsed = make_url(url)
    if parsed.drivername in ("postgresql", "postgres"):
        parsed = parsed.set(drivername="postgresql+asyncpg")
    engine = create_async_engine(
        parsed,
        echo=echo,
        pool_size=pool_size,
        pool_pre_ping=True,
    )
    logger.info("using postgres storage at %s", parsed.render_as_string(hide_password=True))
    return Database(engine)
