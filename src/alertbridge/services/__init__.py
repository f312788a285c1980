from alertbridge.services.ack_sync import AckSynchronizer, SyncResult
from alertbridge.services.fanout import FanOutResult, broadcast
from alertbridge.services.ingest import AlertIngestor, IngestResult
from alertbridge.services.pagerduty_webhook import PagerDutyWebhookProcessor, WebhookResult
from alertbridge.services.silences import SilenceService
from alertbridge.services.slack_interaction import InteractionResult, SlackInteractionProcessor
from alertbridge.services.summary import parse_severity, query_alert_status, summarize_alerts

__all__ = [
    "AckSynchronizer",
    "AlertIngestor",
    "FanOutResult",
    "IngestResult",
    "InteractionResult",
    "PagerDutyWebhookProcessor",
    "SilenceService",
    "SlackInteractionProcessor",
    "SyncResult",
    "WebhookResult",
    "broadcast",
    "parse_severity",
    "query_alert_status",
    "summarize_alerts",
]
