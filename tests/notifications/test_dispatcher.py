"""Unit tests for notification queueing, delivery and rendering."""
import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest
from loguru import logger

from src.sentinel.core.persistence import JsonStateStore
from src.sentinel.notifications.channels import DiscordChannel, SlackChannel, WebhookChannel
from src.sentinel.notifications.content import render_content
from src.sentinel.notifications.dispatcher import NotificationDispatcher
from src.sentinel.notifications.models import ChannelResult, Color, EventType
from tests.helpers import always, mock_client

HOOK_URL = "http://hooks.test/notify"
NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return JsonStateStore(str(tmp_path / "notification-queue.json"))


@pytest.fixture
def error_logs():
    """Capture ERROR-level loguru messages."""
    messages = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="ERROR")
    yield messages
    logger.remove(handler_id)


def webhook(settings, handler):
    return WebhookChannel(HOOK_URL, settings, client=mock_client(handler))


class TestNotificationQueue:
    """Test retry, drop and persistence behaviour."""

    @pytest.mark.asyncio
    async def test_no_channels_dropped_after_retries(self, settings, clock, store, error_logs):
        """Test that an undeliverable item is retried three times, then dropped and logged."""
        dispatcher = NotificationDispatcher(settings, store=store, clock=clock, channels=[], auto_process=False)

        item_id = await dispatcher.notify_deployment_success({"deployment_id": "deploy-1"})
        await dispatcher.process_queue()

        assert dispatcher.queue_length == 0
        assert dispatcher.delivered == 0
        assert dispatcher.dropped == 1
        dropped = dispatcher.recent_dropped[0]
        assert dropped["id"] == item_id
        assert dropped["retry_count"] == 3
        assert any(item_id in m and "dropped after 3 retries" in m for m in error_logs)
        # Three retry delays elapsed on the injected clock
        assert clock.slept >= 3 * settings.NOTIFICATION_RETRY_DELAY_SECONDS

    @pytest.mark.asyncio
    async def test_delivered_to_webhook(self, settings, clock, store):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.read()))
            return httpx.Response(200)

        dispatcher = NotificationDispatcher(
            settings, store=store, clock=clock, channels=[webhook(settings, handler)], auto_process=False
        )
        await dispatcher.notify_rollback_triggered({"id": "rollback-1", "reason": "Health checks failing"})
        await dispatcher.process_queue()

        assert dispatcher.delivered == 1
        assert dispatcher.queue_length == 0
        assert bodies[0]["title"] == "🔄 Rollback Triggered - staging"
        assert bodies[0]["footer"] == settings.NOTIFICATION_FOOTER

    @pytest.mark.asyncio
    async def test_retry_then_success(self, settings, clock, store):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500 if len(calls) == 1 else 200)

        dispatcher = NotificationDispatcher(
            settings, store=store, clock=clock, channels=[webhook(settings, handler)], auto_process=False
        )
        await dispatcher.notify_health_check_failure({"endpoint": "/health", "error": "HTTP 503"})
        await dispatcher.process_queue()

        assert len(calls) == 2
        assert dispatcher.delivered == 1
        assert dispatcher.dropped == 0

    @pytest.mark.asyncio
    async def test_one_successful_channel_is_enough(self, settings, clock, store):
        """Test that delivery succeeds when any enabled channel accepts the item."""
        failing = SlackChannel("http://slack.test/hook", settings, client=mock_client(always(500)))
        working = webhook(settings, always(200))
        dispatcher = NotificationDispatcher(
            settings, store=store, clock=clock, channels=[failing, working], auto_process=False
        )

        await dispatcher.notify_service_recovery({"recovery_time_ms": 120000})
        await dispatcher.process_queue()

        assert dispatcher.delivered == 1

    @pytest.mark.asyncio
    async def test_queue_persisted_and_reloaded(self, settings, clock, store):
        dispatcher = NotificationDispatcher(settings, store=store, clock=clock, channels=[], auto_process=False)
        first = await dispatcher.notify_deployment_failure({"deployment_id": "deploy-1", "reason": "smoke tests"})
        second = await dispatcher.notify_custom("maintenance", {"message": "Planned maintenance"})

        restored = NotificationDispatcher(settings, store=store, clock=clock, channels=[], auto_process=False)
        assert await restored.load() == 2
        assert [i.id for i in restored.pending()] == [first, second]
        assert restored.pending()[1].event_type == "maintenance"

    @pytest.mark.asyncio
    async def test_auto_process_delivers_in_background(self, settings, clock, store):
        dispatcher = NotificationDispatcher(
            settings, store=store, clock=clock, channels=[webhook(settings, always(200))], auto_process=True
        )

        await dispatcher.notify_deployment_success({"deployment_id": "deploy-1"})
        await dispatcher.drain()

        assert dispatcher.delivered == 1
        assert dispatcher.queue_length == 0

    def test_stats(self, settings, clock):
        dispatcher = NotificationDispatcher(settings, clock=clock, auto_process=False)

        stats = dispatcher.get_notification_stats()

        assert stats["configured"] == {"webhook": False, "slack": False, "discord": False}
        assert stats["max_retries"] == 3
        assert stats["queue_length"] == 0


class BlockingChannel:
    """Channel whose sends wait until released."""

    name = "blocking"

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.sent = []

    @property
    def configured(self) -> bool:
        return True

    async def send(self, content):
        self.started.set()
        await self.release.wait()
        self.sent.append(content)
        return ChannelResult(channel=self.name, success=True, status_code=200)

    def close(self):
        pass


class TestDeliveryDurability:
    """Test that queued items survive interruption mid-delivery."""

    @pytest.mark.asyncio
    async def test_item_stays_persisted_while_sending(self, settings, clock, store):
        """Test that the persisted queue keeps an item until its send completes."""
        channel = BlockingChannel()
        dispatcher = NotificationDispatcher(settings, store=store, clock=clock, channels=[channel], auto_process=False)
        first = await dispatcher.notify_deployment_success({"deployment_id": "deploy-1"})

        task = asyncio.create_task(dispatcher.process_queue())
        await channel.started.wait()
        second = await dispatcher.notify_deployment_success({"deployment_id": "deploy-2"})

        document = await store.load()
        assert [i["id"] for i in document["queue"]] == [first, second]

        channel.release.set()
        await task

        assert dispatcher.delivered == 2
        assert (await store.load())["queue"] == []

    @pytest.mark.asyncio
    async def test_item_survives_stop_mid_delivery(self, settings, clock, store):
        """Test that stopping during a send leaves the item pending for the next process."""
        channel = BlockingChannel()
        dispatcher = NotificationDispatcher(settings, store=store, clock=clock, channels=[channel], auto_process=True)
        item_id = await dispatcher.notify_rollback_triggered({"id": "rollback-1", "reason": "error rate"})

        await channel.started.wait()
        await dispatcher.stop()

        assert dispatcher.delivered == 0
        restored = NotificationDispatcher(settings, store=store, clock=clock, channels=[], auto_process=False)
        assert await restored.load() == 1
        pending = restored.pending()[0]
        assert pending.id == item_id
        assert pending.retry_count == 0


class TestContentRendering:
    """Test event rendering and channel payloads."""

    def test_deployment_success(self):
        content = render_content(
            {"type": "deployment_success", "id": "deploy-1", "version": "1.4.0", "duration_ms": 95000},
            "staging",
            NOW,
        )

        assert content.title == "✅ Deployment Successful - staging"
        assert content.color == Color.GOOD
        fields = {f.name: f.value for f in content.fields}
        assert fields["Version"] == "1.4.0"
        assert fields["Duration"] == "95s"
        assert fields["Branch"] == "unknown"

    def test_event_environment_wins(self):
        content = render_content({"type": "deployment_failure", "environment": "prod", "reason": "x"}, "staging", NOW)
        assert content.title == "❌ Deployment Failed - prod"
        assert content.color == Color.DANGER

    def test_failed_rollback_completion(self):
        content = render_content(
            {"type": EventType.ROLLBACK_COMPLETED.value, "status": "failed", "errors": ["Rollback validation timeout"]},
            "prod",
            NOW,
        )
        assert content.title.startswith("❌ Rollback Failed")
        assert {f.name: f.value for f in content.fields}["Errors"] == "Rollback validation timeout"

    def test_unknown_event_type(self):
        content = render_content({"type": "maintenance", "message": "Planned maintenance"}, "dev", NOW)
        assert content.color == Color.NEUTRAL
        assert content.message == "Planned maintenance"

    def test_slack_payload(self, settings):
        content = render_content({"type": "health_check_failure", "endpoint": "/health"}, "prod", NOW)
        payload = SlackChannel("http://slack.test/hook", settings).build_payload(content)

        assert payload["channel"] == settings.SLACK_CHANNEL
        assert payload["icon_emoji"] == ":x:"
        attachment = payload["attachments"][0]
        assert attachment["color"] == "danger"
        assert attachment["ts"] == int(NOW.timestamp())
        assert {"title": "Endpoint", "value": "/health", "short": True} in attachment["fields"]

    def test_discord_payload(self, settings):
        content = render_content({"type": "performance_degradation", "metric": "cpu"}, "prod", NOW)
        embed = DiscordChannel("http://discord.test/hook", settings).build_payload(content)["embeds"][0]

        assert embed["color"] == 0xFFFF00
        assert embed["footer"] == {"text": settings.NOTIFICATION_FOOTER}
        assert {"name": "Metric", "value": "cpu", "inline": True} in embed["fields"]
