"""Application use cases."""

from mailpush.application.use_cases.lifecycle import DeviceLifecycleService
from mailpush.application.use_cases.notifications import NotificationPipeline

__all__ = [
    "DeviceLifecycleService",
    "NotificationPipeline",
]
