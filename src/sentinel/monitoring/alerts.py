"""Bounded, append-only alert log with acknowledgement."""
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, List, Optional

from loguru import logger

from src.sentinel.core.clock import from_iso, to_iso


@dataclass
class Alert:
    """Lightweight alert record."""
    id: str
    type: str
    timestamp: datetime
    severity: str = "info"
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "timestamp": to_iso(self.timestamp),
            "severity": self.severity,
            "message": self.message,
            "data": self.data,
            "acknowledged": self.acknowledged,
            "acknowledged_at": to_iso(self.acknowledged_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        return cls(
            id=data["id"],
            type=data.get("type", "unknown"),
            timestamp=from_iso(data["timestamp"]),
            severity=data.get("severity", "info"),
            message=data.get("message", ""),
            data=data.get("data") or {},
            acknowledged=bool(data.get("acknowledged", False)),
            acknowledged_at=from_iso(data.get("acknowledged_at")),
        )


class AlertLog:
    """Newest-first alert buffer; the oldest alert is evicted when full."""

    def __init__(self, capacity: int = 50, prefix: str = "alert"):
        self.capacity = capacity
        self.prefix = prefix
        self._alerts: Deque[Alert] = deque(maxlen=capacity)

    def add(
        self,
        alert_type: str,
        timestamp: datetime,
        severity: str = "info",
        message: str = "",
        data: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        alert = Alert(
            id=f"{self.prefix}-{uuid.uuid4().hex[:12]}",
            type=alert_type,
            timestamp=timestamp,
            severity=severity,
            message=message,
            data=dict(data or {}),
        )
        self._alerts.appendleft(alert)
        log = logger.warning if severity in ("warning", "critical") else logger.info
        log(f"Alert [{severity}] {alert_type}: {message or alert.data}")
        return alert

    def acknowledge(self, alert_id: str, timestamp: datetime) -> bool:
        for alert in self._alerts:
            if alert.id == alert_id:
                if not alert.acknowledged:
                    alert.acknowledged = True
                    alert.acknowledged_at = timestamp
                return True
        return False

    def active(self, limit: Optional[int] = None) -> List[Alert]:
        alerts = [a for a in self._alerts if not a.acknowledged]
        return alerts[:limit] if limit is not None else alerts

    def __len__(self) -> int:
        return len(self._alerts)

    def __iter__(self):
        return iter(self._alerts)

    def to_list(self) -> List[Dict[str, Any]]:
        return [a.to_dict() for a in self._alerts]

    def load(self, items: Iterable[Dict[str, Any]]) -> None:
        self._alerts.clear()
        for item in list(items)[: self.capacity]:
            try:
                self._alerts.append(Alert.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed alert record: {e}")
