"""Translate httpx outcomes into the transient/permanent error split."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import httpx

from alertbridge.errors import PermanentError, TransientError


def raise_for_status(response: httpx.Response, destination: str) -> None:
    """Raise the classified error for a non-2xx response."""
    if response.is_success:
        return
    status = response.status_code
    body = response.text[:200]
    message = f"{destination} returned HTTP {status}: {body}"
    if status >= 500 or status == 429:
        raise TransientError(message, status_code=status)
    raise PermanentError(message, status_code=status)


async def send(
    request: Callable[[], Awaitable[httpx.Response]],
    destination: str,
) -> httpx.Response:
    """Run ``request``, mapping transport failures and bad statuses."""
    try:
        response = await request()
    except httpx.TransportError as exc:
        raise TransientError(f"{destination} request failed: {exc}", exc) from exc
    raise_for_status(response, destination)
    return response
