"""Destination contract used for alert fan-out and ack fan-out."""

from __future__ import annotations

from abc import ABC, abstractmethod

from alertbridge.models import AckEvent, Alert


class Notifier(ABC):
    """A notification destination such as a chat channel or paging service.

    ``notify`` returns the destination's reference for the new message or
    incident; it is stored under :attr:`name` in the alert's external
    references and handed back to :meth:`update_message` later.

    Destinations that can mirror acknowledgments set ``supports_ack`` and
    override :meth:`acknowledge` and :meth:`resolve`.  The others still
    receive alerts but are left out of ack fan-out.
    """

    name: str = ""
    supports_ack: bool = False

    @abstractmethod
    async def notify(self, alert: Alert) -> str: ...

    @abstractmethod
    async def update_message(self, reference: str, alert: Alert) -> None: ...

    async def acknowledge(self, alert: Alert, event: AckEvent) -> None:
        raise NotImplementedError(f"{self.name} does not support acknowledgment")

    async def resolve(self, alert: Alert) -> None:
        raise NotImplementedError(f"{self.name} does not support resolution")

    async def aclose(self) -> None:
        """Release network resources."""
