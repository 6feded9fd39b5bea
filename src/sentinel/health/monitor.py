"""Dependency health monitoring.

Checks run concurrently with independent timeouts; a slow or failing
check only degrades its own entry and never hangs the tick. Overall
health and readiness are pure functions over the resulting snapshot.
"""
import asyncio
import os
import platform
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import psutil
from loguru import logger

from src.sentinel.core.clock import Clock, SystemClock, to_iso
from src.sentinel.core.config import Settings
from src.sentinel.health.checks import DependencyCheck, ThresholdExceeded, build_default_checks
from src.sentinel.health.models import DependencyCheckResult, HealthStatus, ReadinessStatus
from src.sentinel.monitoring.metrics import DEPENDENCY_UP, HEALTH_STATUS, SERVICE_READY
from src.sentinel.monitoring.tracing import tracer, set_span_attributes

READINESS_CRITICAL = ("filesystem", "memory", "network")

_STATUS_GAUGE = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


def calculate_overall_health(results: Dict[str, DependencyCheckResult]) -> HealthStatus:
    """Unhealthy if any critical dependency fails, degraded if any other fails."""
    if any(r.critical and not r.status for r in results.values()):
        return HealthStatus.UNHEALTHY
    if any(not r.status for r in results.values()):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def calculate_readiness_status(
    results: Dict[str, DependencyCheckResult],
    min_healthy_percent: float = 75.0,
    critical: Iterable[str] = READINESS_CRITICAL,
) -> ReadinessStatus:
    """Ready when the critical subset passes and enough dependencies are healthy."""
    critical_healthy = all(name in results and results[name].status for name in critical)
    total = len(results)
    healthy = sum(1 for r in results.values() if r.status)
    score = (healthy / total) * 100 if total else 0.0
    return ReadinessStatus(
        ready=critical_healthy and score >= min_healthy_percent,
        score=score,
        critical_healthy=critical_healthy,
        total=total,
        healthy=healthy,
    )


def process_memory() -> Dict[str, Any]:
    info = psutil.Process().memory_info()
    return {
        "rss": round(info.rss / 1024 / 1024, 1),
        "vms": round(info.vms / 1024 / 1024, 1),
        "unit": "MB",
    }


class HealthMonitor:
    """Owns the dependency checks and the latest health snapshot."""

    def __init__(
        self,
        settings: Settings,
        clock: Optional[Clock] = None,
        checks: Optional[List[DependencyCheck]] = None,
    ):
        self.settings = settings
        self.clock = clock or SystemClock()
        self.checks = checks if checks is not None else build_default_checks(settings)
        self.started_at: datetime = self.clock.now()
        self.ready_at: Optional[datetime] = None
        self.last_check: Optional[datetime] = None
        self._snapshot: Dict[str, DependencyCheckResult] = {}

    @property
    def is_ready(self) -> bool:
        """True once the first health tick has completed."""
        return self.ready_at is not None

    @property
    def snapshot(self) -> Dict[str, DependencyCheckResult]:
        return dict(self._snapshot)

    @property
    def last_status(self) -> Optional[HealthStatus]:
        if not self._snapshot:
            return None
        return calculate_overall_health(self._snapshot)

    async def check_dependencies(self) -> Dict[str, DependencyCheckResult]:
        """Run every check concurrently; always returns a complete snapshot."""
        with tracer.start_as_current_span("health.check_dependencies") as span:
            results = await asyncio.gather(*(self._run_check(c) for c in self.checks))
            snapshot = {r.name: r for r in results}
            set_span_attributes(
                span,
                dependencies=len(snapshot),
                failing=sum(1 for r in results if not r.status),
            )
            return snapshot

    async def _run_check(self, check: DependencyCheck) -> DependencyCheckResult:
        start = time.perf_counter()
        try:
            status, details = await asyncio.wait_for(check.run(), timeout=check.timeout)
            return DependencyCheckResult(
                name=check.name,
                status=bool(status),
                critical=check.critical,
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
                details=details,
            )
        except asyncio.TimeoutError:
            error = f"Check timed out after {check.timeout}s"
            details: Dict[str, Any] = {}
        except ThresholdExceeded as e:
            error = str(e)
            details = e.details
        except Exception as e:
            error = str(e) or e.__class__.__name__
            details = {}

        logger.warning(f"Health check {check.name} failed: {error}")
        return DependencyCheckResult(
            name=check.name,
            status=False,
            critical=check.critical,
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
            error=error,
            details=details,
        )

    async def run_tick(self) -> Dict[str, DependencyCheckResult]:
        """Periodic tick: refresh the stored snapshot and gauges."""
        snapshot = await self.check_dependencies()
        self._snapshot = snapshot
        self.last_check = self.clock.now()
        if self.ready_at is None:
            self.ready_at = self.last_check
            logger.info("Health monitoring initialized - service ready")

        status = calculate_overall_health(snapshot)
        HEALTH_STATUS.set(_STATUS_GAUGE[status])
        for result in snapshot.values():
            DEPENDENCY_UP.labels(dependency=result.name, critical=str(result.critical).lower()).set(
                1 if result.status else 0
            )
        return snapshot

    def readiness(self, results: Dict[str, DependencyCheckResult]) -> ReadinessStatus:
        return calculate_readiness_status(results, self.settings.READINESS_MIN_HEALTHY_PERCENT)

    def uptime_seconds(self) -> float:
        return (self.clock.now() - self.started_at).total_seconds()

    def deployment_metadata(self) -> Dict[str, Any]:
        s = self.settings
        return {
            "environment": s.ENV,
            "version": s.APP_VERSION,
            "image_tag": s.IMAGE_TAG,
            "build_timestamp": s.BUILD_TIMESTAMP,
            "slot": s.DEPLOYMENT_SLOT,
            "deployed_at": s.DEPLOYED_AT,
        }

    async def generate_health_report(self) -> Dict[str, Any]:
        """Full health report. Runs fresh checks but mutates no stored state."""
        dependencies = await self.check_dependencies()
        status = calculate_overall_health(dependencies)
        readiness = self.readiness(dependencies)
        now = self.clock.now()
        passing = sum(1 for d in dependencies.values() if d.status)

        return {
            "status": status.value,
            "timestamp": to_iso(now),
            "deployment": self.deployment_metadata(),
            "application": {
                "uptime": round(self.uptime_seconds()),
                "pid": os.getpid(),
                "python_version": platform.python_version(),
                "platform": platform.system().lower(),
                "arch": platform.machine(),
                "ready": self.is_ready,
                "initialization_time": (
                    round((self.ready_at - self.started_at).total_seconds())
                    if self.ready_at else None
                ),
            },
            "performance": {
                "memory": process_memory(),
                "uptime": self.uptime_seconds(),
            },
            "dependencies": {name: d.to_dict() for name, d in dependencies.items()},
            "readiness": readiness.to_dict(),
            "checks": {
                "last_run": to_iso(now),
                "critical_passing": status != HealthStatus.UNHEALTHY,
                "all_passing": status == HealthStatus.HEALTHY,
                "total": len(dependencies),
                "passing": passing,
            },
        }

    async def generate_readiness_report(self) -> Dict[str, Any]:
        """Readiness report; ``status`` is ready, degraded or not_ready."""
        now = self.clock.now()
        if not self.is_ready:
            SERVICE_READY.set(0)
            return {
                "status": "not_ready",
                "message": "Service is still initializing",
                "timestamp": to_iso(now),
                "initialization_time": round(self.uptime_seconds()),
            }

        dependencies = await self.check_dependencies()
        readiness = self.readiness(dependencies)
        critical = [
            {
                "name": name,
                "status": dependencies[name].status if name in dependencies else False,
                "error": dependencies[name].error if name in dependencies else "Dependency not found",
            }
            for name in READINESS_CRITICAL
        ]
        SERVICE_READY.set(1 if readiness.ready else 0)

        if readiness.ready:
            return {
                "status": "ready",
                "timestamp": to_iso(now),
                "readiness_score": round(readiness.score),
                "critical_dependencies": [{"name": c["name"], "status": c["status"]} for c in critical],
                "summary": readiness.to_dict()["summary"],
            }

        logger.warning(f"Service NOT READY: score={readiness.score:.0f}")
        return {
            "status": "degraded" if readiness.critical_healthy else "not_ready",
            "timestamp": to_iso(now),
            "readiness_score": round(readiness.score),
            "message": (
                "Non-critical dependencies unhealthy"
                if readiness.critical_healthy
                else "Critical dependencies failed"
            ),
            "failed_dependencies": [
                {"name": name, "error": d.error} for name, d in dependencies.items() if not d.status
            ],
            "critical_dependencies": critical,
        }

    def liveness(self) -> Dict[str, Any]:
        return {
            "status": "alive",
            "pid": os.getpid(),
            "uptime": round(self.uptime_seconds()),
            "timestamp": to_iso(self.clock.now()),
            "memory": process_memory(),
        }
