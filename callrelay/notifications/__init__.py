"""Transcript email notifications sent at call end."""

from callrelay.notifications.manager import NotificationManager, format_duration
from callrelay.notifications.models import EmailConfig, NotificationConfig, NotifyRequest

__all__ = [
    "NotificationManager",
    "NotificationConfig",
    "EmailConfig",
    "NotifyRequest",
    "format_duration",
]
