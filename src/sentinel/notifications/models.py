"""Notification queue items, rendered content and per-channel results."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from src.sentinel.core.clock import from_iso, to_iso


class EventType(str, Enum):
    DEPLOYMENT_SUCCESS = "deployment_success"
    DEPLOYMENT_FAILURE = "deployment_failure"
    ROLLBACK_TRIGGERED = "rollback_triggered"
    ROLLBACK_COMPLETED = "rollback_completed"
    HEALTH_CHECK_FAILURE = "health_check_failure"
    PERFORMANCE_DEGRADATION = "performance_degradation"
    SERVICE_RECOVERY = "service_recovery"


class Color(str, Enum):
    GOOD = "good"
    DANGER = "danger"
    WARNING = "warning"
    NEUTRAL = "neutral"


@dataclass
class NotificationField:
    name: str
    value: str
    inline: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value, "inline": self.inline}


@dataclass
class NotificationContent:
    """Channel-independent rendering of an event."""
    title: str
    message: str
    color: Color
    timestamp: datetime
    fields: List[NotificationField] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "color": self.color.value,
            "fields": [f.to_dict() for f in self.fields],
            "timestamp": to_iso(self.timestamp),
        }


@dataclass
class NotificationItem:
    """A queued event. ``event`` always carries a ``type`` key."""
    id: str
    timestamp: datetime
    event: Dict[str, Any]
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None

    @classmethod
    def create(cls, event: Dict[str, Any], timestamp: datetime) -> "NotificationItem":
        return cls(id=f"notif-{uuid.uuid4().hex[:12]}", timestamp=timestamp, event=dict(event))

    @property
    def event_type(self) -> str:
        return str(self.event.get("type", "custom"))

    def is_due(self, now: datetime) -> bool:
        return self.next_retry_at is None or self.next_retry_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "event": self.event,
            "retry_count": self.retry_count,
            "next_retry_at": to_iso(self.next_retry_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationItem":
        return cls(
            id=data["id"],
            timestamp=from_iso(data["timestamp"]),
            event=dict(data.get("event") or {}),
            retry_count=int(data.get("retry_count", 0)),
            next_retry_at=from_iso(data.get("next_retry_at")),
        )


@dataclass
class ChannelResult:
    channel: str
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "success": self.success,
            "status_code": self.status_code,
            "error": self.error,
        }
