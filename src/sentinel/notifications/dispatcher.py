"""Durable notification queue with multi-channel fan-out.

Items leave the queue only after one channel accepted them or after the
retry budget is spent; exhausted items are logged as errors and kept in a
short dropped list so the loss is observable. The queue is persisted on
enqueue and after every delivery attempt, and an item being sent stays in
the persisted queue until its attempt is decided, which gives at-least-once
delivery across restarts.
"""
import asyncio
from collections import deque
from datetime import timedelta
from typing import Any, Deque, Dict, List, Optional, Set

from loguru import logger

from src.sentinel.core.clock import Clock, SystemClock, to_iso
from src.sentinel.core.config import Settings
from src.sentinel.core.persistence import JsonStateStore
from src.sentinel.monitoring.metrics import (
    NOTIFICATION_QUEUE_LENGTH,
    NOTIFICATIONS_DROPPED_TOTAL,
    NOTIFICATIONS_TOTAL,
)
from src.sentinel.notifications.channels import NotificationChannel, build_channels
from src.sentinel.notifications.content import render_content
from src.sentinel.notifications.models import ChannelResult, EventType, NotificationItem

DROPPED_KEEP = 20


class NotificationDispatcher:
    """Queues typed events and delivers them to every enabled channel."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[JsonStateStore] = None,
        clock: Optional[Clock] = None,
        channels: Optional[List[NotificationChannel]] = None,
        auto_process: bool = True,
    ):
        self.settings = settings
        self.store = store
        self.clock = clock or SystemClock()
        self.channels = channels if channels is not None else build_channels(settings)
        self.auto_process = auto_process
        self.max_retries = settings.NOTIFICATION_MAX_RETRIES
        self.retry_delay = settings.NOTIFICATION_RETRY_DELAY_SECONDS
        self.item_delay = settings.NOTIFICATION_ITEM_DELAY_SECONDS

        self._queue: List[NotificationItem] = []
        self._processing = False
        self._tasks: Set[asyncio.Task] = set()
        self.delivered = 0
        self.dropped = 0
        self.recent_dropped: Deque[Dict[str, Any]] = deque(maxlen=DROPPED_KEEP)

    @property
    def enabled_channels(self) -> List[NotificationChannel]:
        return [c for c in self.channels if c.configured]

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def pending(self) -> List[NotificationItem]:
        return list(self._queue)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> int:
        if self.store is None:
            return 0
        document = await self.store.load()
        if not document:
            return 0
        items = []
        for raw in document.get("queue", []):
            try:
                items.append(NotificationItem.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed queued notification: {e}")
        self._queue = items
        self._update_gauge()
        logger.info(f"Loaded {len(items)} pending notifications from queue")
        return len(items)

    async def _persist(self) -> None:
        self._update_gauge()
        if self.store is not None:
            await self.store.save({
                "queue": [i.to_dict() for i in self._queue],
                "saved_at": to_iso(self.clock.now()),
            })

    def _update_gauge(self) -> None:
        NOTIFICATION_QUEUE_LENGTH.set(len(self._queue))

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    async def queue(self, event: Dict[str, Any]) -> str:
        """Enqueue an event and schedule a processing pass."""
        item = NotificationItem.create(event, self.clock.now())
        self._queue.append(item)
        logger.info(f"Queued notification {item.id}: {item.event_type}")
        await self._persist()
        if self.auto_process:
            self._schedule_processing()
        return item.id

    def _schedule_processing(self) -> None:
        task = asyncio.create_task(self.process_queue(), name="notifications:process")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for scheduled processing passes to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel in-flight passes and flush the queue to disk."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._processing = False
        await self._persist()

    async def process_queue(self) -> None:
        """Deliver queued items in FIFO order. One pass runs at a time.

        An item stays queued, and persisted, until its delivery attempt has
        been decided, so a crash or cancellation mid-send keeps it pending.
        """
        if self._processing or not self._queue:
            return
        self._processing = True
        try:
            while self._queue:
                now = self.clock.now()
                item = next((i for i in self._queue if i.is_due(now)), None)
                if item is None:
                    wake_at = min(i.next_retry_at for i in self._queue if i.next_retry_at is not None)
                    await self.clock.sleep(max(0.0, (wake_at - now).total_seconds()))
                    continue
                retry = await self._deliver(item)
                self._queue.remove(item)
                if retry:
                    self._queue.append(item)
                await self._persist()
                await self.clock.sleep(self.item_delay)
        finally:
            self._processing = False
            await self._persist()

    async def _deliver(self, item: NotificationItem) -> bool:
        """Send one item to every enabled channel. Returns True when it should be retried."""
        try:
            content = render_content(item.event, self.settings.ENV, self.clock.now())
            results = await self._send_all(content)
        except Exception as e:
            logger.exception(f"Error rendering notification {item.id}: {e}")
            results = []

        if any(r.success for r in results):
            self.delivered += 1
            logger.info(f"Notification sent successfully: {item.event_type} ({item.id})")
            return False

        if item.retry_count < self.max_retries:
            item.retry_count += 1
            item.next_retry_at = self.clock.now() + timedelta(seconds=self.retry_delay)
            logger.warning(
                f"Notification {item.id} failed, will retry "
                f"(attempt {item.retry_count}/{self.max_retries})"
            )
            return True

        self.dropped += 1
        NOTIFICATIONS_DROPPED_TOTAL.labels(event_type=item.event_type).inc()
        self.recent_dropped.appendleft({
            **item.to_dict(),
            "dropped_at": to_iso(self.clock.now()),
            "errors": [r.error for r in results if r.error],
        })
        logger.error(
            f"Notification {item.id} ({item.event_type}) dropped after {item.retry_count} retries: "
            f"{[r.to_dict() for r in results] or 'no channels enabled'}"
        )
        return False

    async def _send_all(self, content) -> List[ChannelResult]:
        channels = self.enabled_channels
        if not channels:
            return []
        results = await asyncio.gather(*(c.send(content) for c in channels), return_exceptions=True)
        outcomes: List[ChannelResult] = []
        for channel, result in zip(channels, results):
            if isinstance(result, BaseException):
                logger.error(f"Channel {channel.name} raised: {result}")
                result = ChannelResult(channel=channel.name, success=False, error=str(result))
            NOTIFICATIONS_TOTAL.labels(
                channel=channel.name,
                outcome="success" if result.success else "failure",
            ).inc()
            outcomes.append(result)
        return outcomes

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def notify_deployment_success(self, data: Dict[str, Any]) -> str:
        return await self.queue({**data, "type": EventType.DEPLOYMENT_SUCCESS.value})

    async def notify_deployment_failure(self, data: Dict[str, Any]) -> str:
        return await self.queue({**data, "type": EventType.DEPLOYMENT_FAILURE.value})

    async def notify_rollback_triggered(self, data: Dict[str, Any]) -> str:
        return await self.queue({**data, "type": EventType.ROLLBACK_TRIGGERED.value})

    async def notify_rollback_completed(self, data: Dict[str, Any]) -> str:
        return await self.queue({**data, "type": EventType.ROLLBACK_COMPLETED.value})

    async def notify_health_check_failure(self, data: Dict[str, Any]) -> str:
        return await self.queue({**data, "type": EventType.HEALTH_CHECK_FAILURE.value})

    async def notify_performance_degradation(self, data: Dict[str, Any]) -> str:
        return await self.queue({**data, "type": EventType.PERFORMANCE_DEGRADATION.value})

    async def notify_service_recovery(self, data: Dict[str, Any]) -> str:
        return await self.queue({**data, "type": EventType.SERVICE_RECOVERY.value})

    async def notify_custom(self, event_type: str, data: Dict[str, Any]) -> str:
        return await self.queue({**data, "type": event_type})

    # ------------------------------------------------------------------

    def get_notification_stats(self) -> Dict[str, Any]:
        return {
            "queue_length": len(self._queue),
            "is_processing": self._processing,
            "configured": {c.name: c.configured for c in self.channels},
            "delivered": self.delivered,
            "dropped": self.dropped,
            "recent_dropped": list(self.recent_dropped),
            "max_retries": self.max_retries,
        }

    def close(self) -> None:
        for channel in self.channels:
            channel.close()
