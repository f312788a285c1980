"""Domain entities: pure data plus lifecycle invariants, no I/O."""

from alertbridge.models.ack_event import ACK_SOURCES, AckAction, AckEvent, AckSource
from alertbridge.models.alert import (
    FIRING_STATES,
    SEVERITIES,
    Alert,
    AlertState,
    Severity,
    utc_now,
)
from alertbridge.models.report import AlertReport
from alertbridge.models.silence import SilenceMark, labels_subset_match
from alertbridge.models.summary import AlertSummary, UserAckCount

__all__ = [
    "ACK_SOURCES",
    "FIRING_STATES",
    "SEVERITIES",
    "AckAction",
    "AckEvent",
    "AckSource",
    "Alert",
    "AlertReport",
    "AlertState",
    "AlertSummary",
    "Severity",
    "SilenceMark",
    "UserAckCount",
    "labels_subset_match",
    "utc_now",
]
