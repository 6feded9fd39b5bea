"""Outbound notification channels: generic webhook, Slack and Discord."""
from abc import abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from src.sentinel.core.config import Settings
from src.sentinel.core.errors import SentinelError
from src.sentinel.notifications.models import ChannelResult, Color, NotificationContent
from src.sentinel.services.base import OutboundService

SLACK_ICONS = {
    Color.GOOD: ":white_check_mark:",
    Color.DANGER: ":x:",
    Color.WARNING: ":warning:",
    Color.NEUTRAL: ":information_source:",
}

DISCORD_COLORS = {
    Color.GOOD: 0x00FF00,
    Color.DANGER: 0xFF0000,
    Color.WARNING: 0xFFFF00,
    Color.NEUTRAL: 0x0099FF,
}


class NotificationChannel(OutboundService):
    """One webhook-style destination. ``send`` never raises."""

    def __init__(self, url: Optional[str], settings: Settings, client: Optional[httpx.Client] = None):
        super().__init__(settings.NOTIFICATION_TIMEOUT_SECONDS, client=client)
        self.url = url
        self.settings = settings

    @property
    def configured(self) -> bool:
        return bool(self.url)

    @abstractmethod
    def build_payload(self, content: NotificationContent) -> Dict[str, Any]:
        pass

    async def send(self, content: NotificationContent) -> ChannelResult:
        if not self.configured:
            return ChannelResult(channel=self.name, success=False, error=f"{self.name} not configured")
        try:
            response = await self.request("POST", self.url, json=self.build_payload(content))
        except SentinelError as e:
            logger.warning(f"Notification via {self.name} failed: {e.message}")
            return ChannelResult(
                channel=self.name,
                success=False,
                status_code=e.details.get("status_code"),
                error=e.message,
            )
        return ChannelResult(channel=self.name, success=True, status_code=response.status_code)


class WebhookChannel(NotificationChannel):
    name = "webhook"

    def build_payload(self, content: NotificationContent) -> Dict[str, Any]:
        payload = content.to_dict()
        payload["footer"] = self.settings.NOTIFICATION_FOOTER
        return payload


class SlackChannel(NotificationChannel):
    name = "slack"

    def build_payload(self, content: NotificationContent) -> Dict[str, Any]:
        return {
            "channel": self.settings.SLACK_CHANNEL,
            "username": self.settings.SLACK_USERNAME,
            "icon_emoji": SLACK_ICONS[content.color],
            "attachments": [
                {
                    "color": content.color.value,
                    "title": content.title,
                    "text": content.message,
                    "fields": [
                        {"title": f.name, "value": f.value, "short": f.inline}
                        for f in content.fields
                    ],
                    "ts": int(content.timestamp.timestamp()),
                }
            ],
        }


class DiscordChannel(NotificationChannel):
    name = "discord"

    def build_payload(self, content: NotificationContent) -> Dict[str, Any]:
        return {
            "embeds": [
                {
                    "title": content.title,
                    "description": content.message,
                    "color": DISCORD_COLORS[content.color],
                    "fields": [f.to_dict() for f in content.fields],
                    "timestamp": content.to_dict()["timestamp"],
                    "footer": {"text": self.settings.NOTIFICATION_FOOTER},
                }
            ]
        }


def build_channels(settings: Settings) -> List[NotificationChannel]:
    return [
        WebhookChannel(settings.NOTIFICATION_WEBHOOK_URL, settings),
        SlackChannel(settings.SLACK_WEBHOOK_URL, settings),
        DiscordChannel(settings.DISCORD_WEBHOOK_URL, settings),
    ]
