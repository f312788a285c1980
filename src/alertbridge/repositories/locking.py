"""Reload-and-retry-once helper for optimistic-locking updates."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

from alertbridge.errors import ConcurrentUpdateError, NotFoundError

logger = logging.getLogger(__name__)


class _Versioned(Protocol):
    id: str
    version: int


E = TypeVar("E", bound=_Versioned)


class _Store(Protocol[E]):
    async def find_by_id(self, entity_id: str, /) -> E | None: ...

    async def update(self, entity: E, /) -> None: ...


async def update_with_retry(
    store: _Store[E],
    entity: E,
    mutate: Callable[[E], bool | None | Awaitable[bool | None]],
    *,
    not_found: Callable[[str], NotFoundError] = NotFoundError,
) -> tuple[E, bool]:
    """Apply ``mutate`` to ``entity`` and persist it.

    ``mutate`` returns False to signal that nothing changed, in which case
    no write happens.  On :class:`ConcurrentUpdateError` the entity is
    reloaded, ``mutate`` is applied again to the fresh copy, and the update
    is retried once.  A second conflict propagates to the caller.

    Returns the persisted entity and whether a write took place.
    """
    current = entity
    for attempt in range(2):
        changed = mutate(current)
        if inspect.isawaitable(changed):
            changed = await changed
        if changed is False:
            return current, False
        try:
            await store.update(current)
            return current, True
        except ConcurrentUpdateError:
            if attempt:
                raise
            logger.info(
                "version conflict on %s %s, reloading and retrying",
                type(current).__name__,
                current.id,
            )
            reloaded = await store.find_by_id(current.id)
            if reloaded is None:
                raise not_found(current.id) from None
            current = reloaded
    raise AssertionError("unreachable")
