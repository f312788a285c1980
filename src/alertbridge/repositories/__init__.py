from alertbridge.repositories.base import AckEventRepository, AlertRepository, SilenceRepository
from alertbridge.repositories.locking import update_with_retry

__all__ = [
    "AckEventRepository",
    "AlertRepository",
    "SilenceRepository",
    "update_with_retry",
]
