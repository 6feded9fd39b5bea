"""Process wiring and the integration loop.

The Runtime owns the clock, the scheduler, one state store per component
and the five components themselves. It holds no primary state of its own
beyond what the periodic jobs need to detect transitions: the previous
health status, the open unhealthy episode and the alerts already
forwarded.
"""
import asyncio
import os
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from loguru import logger

from src.sentinel.core.clock import Clock, SystemClock, elapsed_ms, to_iso
from src.sentinel.core.config import Settings
from src.sentinel.core.errors import InvariantViolationError
from src.sentinel.core.persistence import JsonStateStore
from src.sentinel.core.scheduler import Scheduler
from src.sentinel.deployment.ci_dispatch import CIDispatcher
from src.sentinel.deployment.models import Deployment, DeploymentMetadata, RollbackRequest, parse_environment
from src.sentinel.deployment.rollback_controller import RollbackController, RollbackOutcome
from src.sentinel.deployment.tracker import DeploymentTracker
from src.sentinel.deployment.traffic import TrafficRouter
from src.sentinel.deployment.validation import HealthValidator
from src.sentinel.health.checks import DependencyCheck
from src.sentinel.health.models import HealthStatus
from src.sentinel.health.monitor import HealthMonitor, calculate_overall_health
from src.sentinel.monitoring.metrics import PERFORMANCE_SCORE
from src.sentinel.monitoring.performance import PerformanceTracker
from src.sentinel.monitoring.tracing import set_span_attributes, tracer
from src.sentinel.notifications.channels import NotificationChannel
from src.sentinel.notifications.dispatcher import NotificationDispatcher

STATE_FILES = {
    "deployment": "deployment-state.json",
    "rollback": "rollback-tracking.json",
    "notifications": "notification-queue.json",
    "performance": "performance-metrics.json",
}

CORRELATION_WINDOW = 5
CORRELATION_FAILURE_THRESHOLD = 3
DEPLOYMENT_TIME_TARGET_MS = 600_000
SHUTDOWN_DRAIN_SECONDS = 5.0


def calculate_performance_score(performance: Dict[str, Any]) -> int:
    """Score 0-100 from a performance dashboard.

    Penalties: deployment failure rate (up to 30), average cpu/memory above
    80% (0.25 per point), active alerts (5 each, up to 25) and average
    deployment time over ten minutes (up to 20).
    """
    score = 100.0
    deployments = performance.get("deployments", {})
    if deployments.get("recent"):
        score -= (100 - deployments.get("success_rate", 0.0)) * 0.3

    current = performance.get("resources", {}).get("current", {})
    usage = [(current.get(name) or {}).get("value", 0.0) for name in ("cpu", "memory")]
    average_usage = sum(usage) / len(usage)
    if average_usage > 80:
        score -= (average_usage - 80) * 0.25

    score -= min(len(performance.get("alerts", [])) * 5, 25)

    average_duration = deployments.get("average_duration_ms", 0.0)
    if average_duration > DEPLOYMENT_TIME_TARGET_MS:
        overtime = (average_duration - DEPLOYMENT_TIME_TARGET_MS) / DEPLOYMENT_TIME_TARGET_MS
        score -= min(overtime * 20, 20)

    return max(0, round(score))


def generate_dashboard_summary(
    health_status: Optional[str],
    deployment: Dict[str, Any],
    rollback: Dict[str, Any],
    performance: Dict[str, Any],
    systems_operational: bool,
) -> Dict[str, Any]:
    critical = 0
    warnings = 0
    overall = "healthy"
    if health_status == HealthStatus.UNHEALTHY.value:
        overall = "critical"
        critical += 1
    elif health_status == HealthStatus.DEGRADED.value:
        overall = "warning"
        warnings += 1

    alerts = list(deployment.get("active_alerts", [])) + list(performance.get("alerts", []))
    critical += sum(1 for a in alerts if a.get("severity") == "critical")
    warnings += sum(1 for a in alerts if a.get("severity") == "warning")
    if critical > 0:
        overall = "critical"
    elif warnings > 0 and overall == "healthy":
        overall = "warning"

    history = deployment.get("recent_history", [])
    return {
        "overall_status": overall,
        "critical_issues": critical,
        "warnings": warnings,
        "active_deployment": deployment.get("current") is not None,
        "rollback_ready": not rollback.get("in_cooldown", False),
        "systems_operational": systems_operational,
        "last_deployment": history[0] if history else None,
        "performance_score": calculate_performance_score(performance),
    }


class Runtime:
    """Top-level wiring of the orchestrator components."""

    def __init__(
        self,
        settings: Settings,
        clock: Optional[Clock] = None,
        health_checks: Optional[List[DependencyCheck]] = None,
        channels: Optional[List[NotificationChannel]] = None,
        ci: Optional[CIDispatcher] = None,
        router: Optional[TrafficRouter] = None,
        validator: Optional[HealthValidator] = None,
        resource_sampler: Optional[Callable[[], Dict[str, float]]] = None,
        auto_process_notifications: bool = True,
    ):
        self.settings = settings
        self.clock = clock or SystemClock()
        self.stores = {
            name: JsonStateStore(os.path.join(settings.STATE_DIR, filename))
            for name, filename in STATE_FILES.items()
        }

        self.health = HealthMonitor(settings, self.clock, checks=health_checks)
        self.notifications = NotificationDispatcher(
            settings,
            store=self.stores["notifications"],
            clock=self.clock,
            channels=channels,
            auto_process=auto_process_notifications,
        )
        self.rollback = RollbackController(
            settings,
            store=self.stores["rollback"],
            clock=self.clock,
            ci=ci or CIDispatcher(settings, clock=self.clock),
            router=router or TrafficRouter(settings),
            validator=validator or HealthValidator(settings, clock=self.clock),
            notifications=self.notifications,
        )
        self.deployments = DeploymentTracker(
            settings,
            store=self.stores["deployment"],
            clock=self.clock,
            on_rollback_required=self._on_rollback_required,
        )
        self.performance = PerformanceTracker(
            settings,
            store=self.stores["performance"],
            clock=self.clock,
            sampler=resource_sampler,
        )
        self.scheduler = Scheduler(self.clock)

        self.systems: Dict[str, bool] = {
            "health": False,
            "deployment": False,
            "notification": False,
            "rollback": False,
            "performance": False,
        }
        self.initialized = False
        self.started_at: datetime = self.clock.now()
        self.dashboard: Optional[Dict[str, Any]] = None
        self.last_update: Optional[datetime] = None

        self.last_health_status: Optional[str] = None
        self.unhealthy_since: Optional[datetime] = None
        self.unhealthy_issue: Optional[str] = None
        self._forwarded_alerts: Set[str] = set()
        self._correlated: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Rehydrate persisted state, register self, start the tickers."""
        logger.info("🚀 Initializing monitoring systems...")
        await self.deployments.load()
        self.systems["deployment"] = True
        await self.rollback.load()
        self.systems["rollback"] = True
        pending = await self.notifications.load()
        self.systems["notification"] = True
        await self.performance.load()
        self.systems["performance"] = True
        self.systems["health"] = True

        if self.settings.TRACK_SELF_DEPLOYMENT:
            deployment = await self.deployments.register_self()
            if deployment is not None:
                await self.performance.start_tracking(
                    deployment.id,
                    deployment.environment.value,
                    {
                        "version": deployment.metadata.version,
                        "image_tag": deployment.metadata.image_tag,
                        "branch": deployment.metadata.branch,
                        "actor": deployment.metadata.actor,
                    },
                )

        self._register_jobs()
        if self.settings.SCHEDULER_ENABLED:
            self.scheduler.start()
            if pending and self.notifications.auto_process:
                self._spawn(self.notifications.process_queue(), "notifications:resume")
        self.initialized = True
        logger.info("🎉 All monitoring systems initialized")

    def _register_jobs(self) -> None:
        s = self.settings
        self.scheduler.every("health", s.HEALTH_TICK_SECONDS, self.health_tick)
        self.scheduler.every("dashboard", s.DASHBOARD_TICK_SECONDS, self.update_dashboard, initial_delay=1.0)
        self.scheduler.every(
            "correlation", s.CORRELATION_TICK_SECONDS, self.process_cross_system_alerts,
            initial_delay=s.CORRELATION_TICK_SECONDS,
        )
        self.scheduler.every(
            "integrated_health", s.INTEGRATED_HEALTH_TICK_SECONDS, self.integrated_health_check,
            initial_delay=s.INTEGRATED_HEALTH_TICK_SECONDS,
        )
        self.scheduler.every(
            "notification_sweep", s.NOTIFICATION_SWEEP_SECONDS, self.notifications.process_queue,
            initial_delay=s.NOTIFICATION_SWEEP_SECONDS,
        )
        self.scheduler.every("resources", s.RESOURCE_SAMPLE_INTERVAL_SECONDS, self.sample_resources)

    async def shutdown(self, reason: str = "shutdown") -> None:
        """Stop tickers, close out the tracked deployment, flush queues and state."""
        logger.info(f"🛑 Shutting down monitoring systems ({reason})")
        await self.scheduler.stop()

        if self.performance.current is not None:
            await self.performance.complete_tracking(reason, {"reason": "Server shutdown"})

        current = self.deployments.current
        if current is not None and not current.rollback_triggered:
            await self.notify_deployment_complete(current.id)

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        try:
            await asyncio.wait_for(self.notifications.drain(), timeout=SHUTDOWN_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Notification queue not drained before shutdown, pending items stay persisted")
        await self.notifications.stop()

        self.rollback.close()
        self.notifications.close()
        logger.info("✅ Monitoring systems shut down")

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for background rollbacks and notification passes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.notifications.drain()

    # ------------------------------------------------------------------
    # Rollback wiring
    # ------------------------------------------------------------------

    async def _on_rollback_required(self, request: RollbackRequest) -> None:
        self._spawn(self._rollback_deployment(request), f"rollback:{request.deployment_id}")

    async def _rollback_deployment(self, request: RollbackRequest) -> Optional[RollbackOutcome]:
        """Run the controller for a tracker trigger, then fail the deployment."""
        outcome: Optional[RollbackOutcome] = None
        try:
            outcome = await self.rollback.execute_rollback(
                request.reason,
                severity=request.severity,
                environment=request.environment.value,
            )
        except InvariantViolationError as e:
            logger.warning(f"Rollback for deployment {request.deployment_id} not started: {e.message}")

        await self.deployments.mark_failed(
            f"Rollback triggered: {request.reason}",
            error=outcome.reason if outcome is not None and not outcome.success else None,
            deployment_id=request.deployment_id,
        )
        await self._complete_performance_tracking(request.deployment_id, "failed")
        return outcome

    async def trigger_manual_rollback(
        self,
        reason: str,
        environment: Optional[str] = None,
        actor: str = "api",
    ) -> RollbackOutcome:
        """Operator-initiated rollback through the same gate as automatic ones.

        Raises:
            ValueError: unknown environment
            InvariantViolationError: a rollback is already running for the environment
        """
        env = parse_environment(environment or self.settings.ENV)
        logger.warning(f"Manual rollback triggered by {actor}: {reason}")
        return await self.rollback.execute_rollback(
            f"Manual rollback: {reason}",
            severity="normal",
            environment=env.value,
            actor=actor,
        )

    # ------------------------------------------------------------------
    # Deployment lifecycle helpers
    # ------------------------------------------------------------------

    async def start_deployment(
        self,
        metadata: DeploymentMetadata,
        grace_period_seconds: Optional[float] = None,
    ) -> Deployment:
        deployment = await self.deployments.start_deployment(metadata, grace_period_seconds)
        await self.performance.start_tracking(
            deployment.id,
            metadata.environment.value,
            {
                "version": metadata.version,
                "image_tag": metadata.image_tag,
                "branch": metadata.branch,
                "actor": metadata.actor,
            },
        )
        return deployment

    async def notify_deployment_complete(self, deployment_id: Optional[str] = None) -> Optional[Deployment]:
        deployment = await self.deployments.mark_successful(deployment_id)
        if deployment is None:
            return None
        await self._complete_performance_tracking(deployment.id, "completed")
        await self.notifications.notify_deployment_success(deployment.to_dict())
        return deployment

    async def notify_deployment_failed(
        self,
        reason: str,
        error: Optional[str] = None,
        deployment_id: Optional[str] = None,
    ) -> Optional[Deployment]:
        deployment = await self.deployments.mark_failed(reason, error=error, deployment_id=deployment_id)
        if deployment is None:
            return None
        await self._complete_performance_tracking(deployment.id, "failed")
        await self.notifications.notify_deployment_failure(deployment.to_dict())
        return deployment

    async def _complete_performance_tracking(self, deployment_id: str, status: str) -> None:
        current = self.performance.current
        if current is not None and current.id == deployment_id:
            await self.performance.complete_tracking(status)

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    async def health_tick(self) -> None:
        with tracer.start_as_current_span("health.tick") as span:
            snapshot = await self.health.run_tick()
            set_span_attributes(span, status=calculate_overall_health(snapshot).value)
        deployment = await self.deployments.finalize_if_grace_elapsed()
        if deployment is not None:
            await self._complete_performance_tracking(deployment.id, "completed")
            await self.notifications.notify_deployment_success(deployment.to_dict())

    async def sample_resources(self) -> None:
        await self.performance.sample_resources()

    async def update_dashboard(self) -> Dict[str, Any]:
        self.dashboard = self.build_dashboard()
        self.last_update = self.clock.now()
        PERFORMANCE_SCORE.set(self.dashboard["summary"]["performance_score"])
        return self.dashboard

    async def process_cross_system_alerts(self) -> None:
        """Direct rollback on repeated health failures; forward critical performance alerts once."""
        current = self.deployments.current_snapshot()
        if current is not None and not current.rollback_triggered and current.id not in self._correlated:
            failures = self.deployments.recent_failure_count(CORRELATION_WINDOW)
            if failures >= CORRELATION_FAILURE_THRESHOLD:
                self._correlated.add(current.id)
                logger.warning(f"🚨 Triggering rollback due to health check failures ({failures}/{CORRELATION_WINDOW})")
                await self.notifications.notify_rollback_triggered({
                    "deployment_id": current.id,
                    "reason": "health_check_failures",
                    "details": f"{failures} health check failures in last {CORRELATION_WINDOW} checks",
                    "environment": current.environment.value,
                })
                self._spawn(
                    self._rollback_deployment(
                        RollbackRequest(
                            deployment_id=current.id,
                            environment=current.environment,
                            reason=f"Health check failures: {failures}/{CORRELATION_WINDOW}",
                            details=f"{failures} health check failures",
                            severity="critical",
                        )
                    ),
                    f"rollback:correlation:{current.id}",
                )

        live_ids = {a.id for a in self.performance.alerts}
        self._forwarded_alerts &= live_ids
        for alert in self.performance.alerts.active():
            if alert.severity != "critical" or alert.id in self._forwarded_alerts:
                continue
            self._forwarded_alerts.add(alert.id)
            await self.notifications.notify_performance_degradation({
                "metric": alert.data.get("resource", alert.type),
                "current_value": alert.data.get("value"),
                "threshold": alert.data.get("threshold"),
                "message": alert.message,
                "deployment_id": current.id if current else None,
            })

    async def integrated_health_check(self) -> Dict[str, Any]:
        """Record the local health result on the active deployment and detect recovery."""
        start = time.perf_counter()
        report = await self.health.generate_health_report()
        response_time_ms = round((time.perf_counter() - start) * 1000, 2)
        status = report["status"]
        failing = sorted(name for name, d in report["dependencies"].items() if not d["status"])

        if self.deployments.current is not None:
            await self.deployments.record_health_check(
                "/health",
                status != HealthStatus.UNHEALTHY.value,
                response_time_ms,
                error=f"Failing dependencies: {', '.join(failing)}" if status == HealthStatus.UNHEALTHY.value else None,
            )

        now = self.clock.now()
        if status == HealthStatus.UNHEALTHY.value:
            if self.unhealthy_since is None:
                self.unhealthy_since = now
                self.unhealthy_issue = f"Failing dependencies: {', '.join(failing)}"
                await self.notifications.notify_health_check_failure({
                    "endpoint": "/health",
                    "error": self.unhealthy_issue,
                    "response_time_ms": response_time_ms,
                })
        elif status == HealthStatus.HEALTHY.value and self.unhealthy_since is not None:
            await self.notifications.notify_service_recovery({
                "recovery_time_ms": elapsed_ms(self.unhealthy_since, now),
                "previous_issue": self.unhealthy_issue or "System health issues",
            })
            logger.info(f"✅ Service recovered after {elapsed_ms(self.unhealthy_since, now)}ms")
            self.unhealthy_since = None
            self.unhealthy_issue = None

        self.last_health_status = status
        return report

    # ------------------------------------------------------------------
    # Read snapshots
    # ------------------------------------------------------------------

    @property
    def systems_operational(self) -> bool:
        return all(self.systems.values())

    def current_health_status(self) -> Optional[str]:
        status = self.health.last_status
        return status.value if status else None

    def build_dashboard(self) -> Dict[str, Any]:
        """Assemble the unified dashboard from component snapshots. Runs no checks."""
        snapshot = self.health.snapshot
        health_status = self.current_health_status()
        deployment = self.deployments.get_deployment_status()
        rollback = self.rollback.get_rollback_status()
        performance = self.performance.get_performance_dashboard()
        readiness = self.health.readiness(snapshot) if snapshot else None

        return {
            "timestamp": to_iso(self.clock.now()),
            "systems": dict(self.systems),
            "health": {
                "overall": health_status or "unknown",
                "dependencies": {name: d.to_dict() for name, d in snapshot.items()},
                "readiness": readiness.to_dict() if readiness else None,
                "last_check": to_iso(self.health.last_check),
            },
            "deployment": {
                "current": deployment["current"],
                "metrics": deployment["metrics"],
                "recent_history": deployment["recent_history"][:5],
                "active_alerts": deployment["active_alerts"][:5],
            },
            "rollback": {
                "status": "cooldown" if rollback["in_cooldown"] else "ready",
                "last_rollback": rollback["last_rollback"],
                "metrics": rollback["metrics"],
                "active_rollbacks": rollback["active_rollbacks"],
                "integrations": rollback["integrations"],
            },
            "performance": {
                "summary": performance["summary"],
                "deployments": performance["deployments"],
                "resources": performance["resources"],
                "alerts": performance["alerts"][:5],
            },
            "notifications": self.notifications.get_notification_stats(),
            "summary": generate_dashboard_summary(
                health_status, deployment, rollback, performance, self.systems_operational
            ),
        }

    def get_monitoring_status(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "systems": dict(self.systems),
            "dashboard": self.dashboard or self.build_dashboard(),
            "last_update": to_iso(self.last_update),
            "uptime": round((self.clock.now() - self.started_at).total_seconds()),
            "version": self.settings.APP_VERSION,
            "scheduler": self.scheduler.describe(),
        }

    def get_health_summary(self) -> Dict[str, Any]:
        """Compact status for external monitoring."""
        status = self.current_health_status() or "unknown"
        deployment = self.deployments.get_deployment_status()
        rollback = self.rollback.get_rollback_status()
        current = deployment["current"]
        history = deployment["recent_history"]
        return {
            "status": status,
            "timestamp": to_iso(self.clock.now()),
            "checks": {
                "health": status != HealthStatus.UNHEALTHY.value,
                "deployment": current is None or current["status"] != "failed",
                "rollback": not rollback["in_cooldown"],
                "systems": self.systems_operational,
            },
            "metrics": {
                "uptime": round((self.clock.now() - self.started_at).total_seconds()),
                "deployment_success_rate": deployment["metrics"]["success_rate"],
                "rollback_count": rollback["metrics"]["total_rollbacks"],
                "last_deployment": history[0]["start_time"] if history else None,
            },
        }
