"""Alert Bridge — route monitoring alerts to chat and paging destinations.

Usage::

    from alertbridge import AlertBridge, load_settings

    settings = load_settings("config.yaml")
    bridge = await AlertBridge.create(settings)
    result = await bridge.ingestor.ingest(report)
"""

__version__ = "0.3.0"

from alertbridge.app import AlertBridge, configure_logging
from alertbridge.config import Settings, load_settings
from alertbridge.models import AckEvent, Alert, SilenceMark

__all__ = [
    "AckEvent",
    "Alert",
    "AlertBridge",
    "Settings",
    "SilenceMark",
    "configure_logging",
    "load_settings",
]
