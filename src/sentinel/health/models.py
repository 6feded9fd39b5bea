"""Health snapshot types."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class DependencyCheckResult:
    """Outcome of one dependency check.

    Recomputed on every health tick; only the latest snapshot is kept.
    """
    name: str
    status: bool
    critical: bool
    latency_ms: Optional[float] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "critical": self.critical,
            "latency_ms": self.latency_ms,
            "error": self.error,
            **self.details,
        }


@dataclass
class ReadinessStatus:
    ready: bool
    score: float
    critical_healthy: bool
    total: int
    healthy: int

    @property
    def unhealthy(self) -> int:
        return self.total - self.healthy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ready": self.ready,
            "score": self.score,
            "critical_healthy": self.critical_healthy,
            "summary": {
                "total": self.total,
                "healthy": self.healthy,
                "unhealthy": self.unhealthy,
            },
        }
