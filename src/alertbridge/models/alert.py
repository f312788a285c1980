"""Alert entity and its lifecycle state machine.

States move one way only::

    active -> acked -> resolved
    active ---------> resolved

``resolved`` is terminal; there is no reopen.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field

from alertbridge.errors import InvalidTransitionError

if TYPE_CHECKING:
    from alertbridge.models.report import AlertReport

Severity = Literal["critical", "warning", "info"]
AlertState = Literal["active", "acked", "resolved"]

SEVERITIES: tuple[str, ...] = ("critical", "warning", "info")
FIRING_STATES: frozenset[str] = frozenset({"active", "acked"})


def utc_now() -> datetime:
    return datetime.now(UTC)


class Alert(BaseModel):
    """One observed condition reported by a monitoring source.

    ``fingerprint`` is the source's correlation key and is not unique:
    re-fires of the same condition over time produce separate records.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    fingerprint: str
    name: str
    instance: str = ""
    target: str = ""
    summary: str = ""
    description: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)

    severity: Severity = "warning"
    state: AlertState = "active"
    fired_at: datetime = Field(default_factory=utc_now)
    acked_at: datetime | None = None
    acked_by: str | None = None
    resolved_at: datetime | None = None
    last_notified_at: datetime | None = None

    # destination name -> message / incident identifier
    external_references: dict[str, str] = Field(default_factory=dict)

    version: int = 1
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.state == "active"

    @property
    def is_acked(self) -> bool:
        return self.state == "acked"

    @property
    def is_resolved(self) -> bool:
        return self.state == "resolved"

    @property
    def is_firing(self) -> bool:
        """Active or acknowledged — anything not yet resolved."""
        return self.state in FIRING_STATES

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def acknowledge(self, by: str, at: datetime | None = None) -> bool:
        """Move ``active`` to ``acked``.

        Returns False without changing anything when the alert is already
        acknowledged (the first acknowledgment wins).  Raises
        :class:`InvalidTransitionError` once the alert is resolved.
        """
        if self.is_resolved:
            raise InvalidTransitionError(self.id, self.state, "acked")
        if self.is_acked:
            return False
        at = at or utc_now()
        self.state = "acked"
        self.acked_at = at
        self.acked_by = by
        self.updated_at = at
        return True

    def resolve(self, at: datetime | None = None) -> None:
        """Move to ``resolved``.  Always legal; the last resolve time wins."""
        at = at or utc_now()
        self.state = "resolved"
        self.resolved_at = at
        self.updated_at = at

    # ------------------------------------------------------------------
    # Details
    # ------------------------------------------------------------------

    def refresh_from(
        self, report: AlertReport, fired_at: datetime, at: datetime | None = None
    ) -> None:
        """Update descriptive fields in place from a repeated report."""
        self.fired_at = fired_at
        self.name = report.name or self.name
        self.summary = report.summary or self.summary
        self.description = report.description or self.description
        self.severity = report.severity
        self.labels = dict(report.labels)
        self.annotations = dict(report.annotations)
        self.updated_at = at or fired_at

    def get_external_reference(self, system: str) -> str:
        return self.external_references.get(system, "")

    def set_external_reference(self, system: str, reference: str) -> None:
        self.external_references[system] = reference

    def get_label(self, key: str) -> str:
        return self.labels.get(key, "")

    def copy_detached(self) -> Alert:
        """Deep copy so callers never share mutable state with a store."""
        return self.model_copy(deep=True)
