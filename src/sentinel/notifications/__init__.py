"""Multi-channel notification delivery."""

from .models import EventType, NotificationItem, NotificationContent, ChannelResult
from .channels import NotificationChannel, WebhookChannel, SlackChannel, DiscordChannel
from .dispatcher import NotificationDispatcher

__all__ = [
    "EventType",
    "NotificationItem",
    "NotificationContent",
    "ChannelResult",
    "NotificationChannel",
    "WebhookChannel",
    "SlackChannel",
    "DiscordChannel",
    "NotificationDispatcher",
]
