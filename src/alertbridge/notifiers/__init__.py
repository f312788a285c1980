from alertbridge.notifiers.base import Notifier
from alertbridge.notifiers.pagerduty import PagerDutyNotifier
from alertbridge.notifiers.resilient import ResilientNotifier
from alertbridge.notifiers.slack import SlackNotifier

__all__ = ["Notifier", "PagerDutyNotifier", "ResilientNotifier", "SlackNotifier"]
