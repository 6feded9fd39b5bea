"""Deployment lifecycle tracking.

One deployment is current at a time. It moves ``deploying -> successful``
once its grace period passes without a rollback trigger, or
``deploying -> failed`` on an explicit failure signal. Completed
deployments move into a bounded, newest-first history. The whole tracker
document is persisted as the last step of every transition.
"""
import asyncio
import copy
from collections import deque
from datetime import timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from loguru import logger

from src.sentinel.core.clock import Clock, SystemClock, to_iso
from src.sentinel.core.config import Settings
from src.sentinel.core.errors import InvariantViolationError
from src.sentinel.core.persistence import JsonStateStore
from src.sentinel.deployment.models import (
    Deployment,
    DeploymentMetadata,
    DeploymentMetrics,
    DeploymentStatus,
    HealthCheckRecord,
    RollbackRequest,
    new_deployment_id,
    parse_environment,
)
from src.sentinel.deployment.rollback_policy import (
    RollbackThresholds,
    TriggerDecision,
    evaluate_rollback_triggers,
)
from src.sentinel.monitoring.alerts import Alert, AlertLog
from src.sentinel.monitoring.metrics import DEPLOYMENTS_TOTAL, ROLLBACK_TRIGGERS_TOTAL

RollbackRequester = Callable[[RollbackRequest], Awaitable[None]]

ROLLBACK_TRIGGER_LOG_MAX = 50
ALERTS_MAX = 50


def metadata_from_settings(settings: Settings) -> DeploymentMetadata:
    """Describe the running process from its CI-injected environment."""
    try:
        environment = parse_environment(settings.ENV)
    except ValueError:
        environment = parse_environment("dev")
    return DeploymentMetadata(
        environment=environment,
        version=settings.APP_VERSION,
        image_tag=settings.IMAGE_TAG,
        commit_sha=settings.COMMIT_SHA,
        branch=settings.BRANCH,
        actor=settings.ACTOR,
        trigger_id=settings.WORKFLOW_RUN_ID,
        build_timestamp=settings.BUILD_TIMESTAMP,
    )


class DeploymentTracker:
    """Owns the current deployment, its history and the deployment metrics."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[JsonStateStore] = None,
        clock: Optional[Clock] = None,
        on_rollback_required: Optional[RollbackRequester] = None,
        thresholds: Optional[RollbackThresholds] = None,
    ):
        self.settings = settings
        self.store = store
        self.clock = clock or SystemClock()
        self.on_rollback_required = on_rollback_required
        self.thresholds = thresholds or RollbackThresholds(
            health_check_failures=settings.ROLLBACK_HEALTH_FAILURE_THRESHOLD,
            response_time_ms=settings.ROLLBACK_RESPONSE_TIME_THRESHOLD_MS,
            window=settings.ROLLBACK_TRIGGER_WINDOW,
        )
        self.current: Optional[Deployment] = None
        self.history: Deque[Deployment] = deque(maxlen=settings.DEPLOYMENT_HISTORY_MAX)
        self.metrics = DeploymentMetrics()
        self.rollback_triggers: Deque[Dict[str, Any]] = deque(maxlen=ROLLBACK_TRIGGER_LOG_MAX)
        self.alerts = AlertLog(capacity=ALERTS_MAX, prefix="alert")
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current.to_dict() if self.current else None,
            "history": [d.to_dict() for d in self.history],
            "metrics": self.metrics.to_dict(),
            "rollback_triggers": list(self.rollback_triggers),
            "alerts": self.alerts.to_list(),
        }

    async def load(self) -> bool:
        """Rehydrate from disk. Returns False when starting fresh."""
        if self.store is None:
            return False
        document = await self.store.load()
        if not document:
            logger.info("No persisted deployment state, starting fresh")
            return False
        try:
            current = document.get("current")
            self.current = Deployment.from_dict(current) if current else None
            self.history.clear()
            for item in document.get("history", [])[: self.history.maxlen]:
                self.history.append(Deployment.from_dict(item))
            self.metrics = DeploymentMetrics.from_dict(document.get("metrics") or {})
            self.rollback_triggers.clear()
            self.rollback_triggers.extend(document.get("rollback_triggers", [])[:ROLLBACK_TRIGGER_LOG_MAX])
            self.alerts.load(document.get("alerts", []))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"⚠️  Discarding unreadable deployment state: {e}")
            return False
        logger.info(
            f"Loaded deployment state: current={self.current.id if self.current else None}, "
            f"history={len(self.history)}"
        )
        return True

    async def _persist(self) -> None:
        if self.store is not None:
            await self.store.save(self.to_dict())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_deployment(
        self,
        metadata: DeploymentMetadata,
        grace_period_seconds: Optional[float] = None,
    ) -> Deployment:
        """Open a new deployment.

        Raises:
            InvariantViolationError: another deployment is still current
        """
        async with self._lock:
            if self.current is not None:
                raise InvariantViolationError(
                    f"Deployment {self.current.id} is already in progress",
                    {"current_deployment": self.current.id},
                )
            now = self.clock.now()
            deployment = Deployment(
                id=new_deployment_id(),
                metadata=metadata,
                start_time=now,
            )
            if grace_period_seconds is not None:
                deployment.auto_complete_at = now + timedelta(seconds=grace_period_seconds)
            self.current = deployment
            self.metrics.total_deployments += 1
            logger.info(
                f"🚀 Deployment {deployment.id} started: {metadata.version} "
                f"({metadata.environment.value}, {metadata.image_tag})"
            )
            await self._persist()
            return copy.deepcopy(deployment)

    async def register_self(self) -> Optional[Deployment]:
        """Track the running process as a deployment that auto-completes after the grace period."""
        if self.current is not None:
            logger.info(f"Resuming tracked deployment {self.current.id}")
            return None
        return await self.start_deployment(
            metadata_from_settings(self.settings),
            grace_period_seconds=self.settings.DEPLOYMENT_GRACE_PERIOD_SECONDS,
        )

    async def record_health_check(
        self,
        endpoint: str,
        success: bool,
        response_time_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> Optional[TriggerDecision]:
        """Append a health check to the current deployment and evaluate triggers."""
        async with self._lock:
            if self.current is None:
                logger.debug(f"Ignoring health check for {endpoint}: no active deployment")
                return None
            self.current.health_checks.append(
                HealthCheckRecord(
                    endpoint=endpoint,
                    success=success,
                    response_time_ms=response_time_ms,
                    timestamp=self.clock.now(),
                    error=error,
                )
            )
            await self._persist()
        return await self.check_rollback_triggers()

    async def check_rollback_triggers(self) -> Optional[TriggerDecision]:
        """Fire a rollback request if the trailing window crosses a threshold.

        The request is raised at most once per deployment; later calls return
        None even if the window still breaches.
        """
        async with self._lock:
            deployment = self.current
            if deployment is None or deployment.rollback_triggered:
                return None
            decision = evaluate_rollback_triggers(deployment.health_checks, self.thresholds)
            if decision is None:
                return None

            now = self.clock.now()
            deployment.rollback_triggered = True
            deployment.rollback_reason = decision.reason
            deployment.rollback_details = decision.details
            deployment.rollback_timestamp = now
            self.metrics.rollbacks += 1
            self.rollback_triggers.appendleft({
                "deployment_id": deployment.id,
                "timestamp": to_iso(now),
                "reason": decision.reason,
                "details": decision.details,
                "environment": deployment.environment.value,
            })
            self.alerts.add(
                "rollback_triggered",
                now,
                severity="critical",
                message=f"Rollback triggered: {decision.reason}",
                data={"deployment_id": deployment.id, "details": decision.details},
            )
            ROLLBACK_TRIGGERS_TOTAL.labels(reason=decision.reason).inc()
            logger.warning(
                f"⏪ Rollback triggered for deployment {deployment.id}: "
                f"{decision.reason} - {decision.details}"
            )
            await self._persist()
            request = RollbackRequest(
                deployment_id=deployment.id,
                environment=deployment.environment,
                reason=decision.summary,
                details=decision.details,
                severity=decision.severity,
            )

        if self.on_rollback_required is not None:
            await self.on_rollback_required(request)
        return decision

    async def mark_successful(self, deployment_id: Optional[str] = None) -> Optional[Deployment]:
        """Finalize the current deployment as successful. No-op when nothing is active."""
        async with self._lock:
            deployment = self._finalizable(deployment_id, "successful")
            if deployment is None:
                return None
            self._finalize(deployment, DeploymentStatus.SUCCESSFUL)
            self.metrics.successful_deployments += 1
            logger.info(f"✅ Deployment {deployment.id} marked as successful ({deployment.duration_ms}ms)")
            await self._persist()
            return copy.deepcopy(deployment)

    async def mark_failed(
        self,
        reason: str,
        error: Optional[str] = None,
        deployment_id: Optional[str] = None,
    ) -> Optional[Deployment]:
        """Finalize the current deployment as failed. No-op when nothing is active."""
        async with self._lock:
            deployment = self._finalizable(deployment_id, "failed")
            if deployment is None:
                return None
            now = self.clock.now()
            deployment.failure_reason = reason
            if error:
                deployment.errors.append({"message": error, "timestamp": to_iso(now)})
            self._finalize(deployment, DeploymentStatus.FAILED)
            self.metrics.failed_deployments += 1
            logger.error(f"❌ Deployment {deployment.id} marked as failed: {reason}")
            await self._persist()
            return copy.deepcopy(deployment)

    async def finalize_if_grace_elapsed(self) -> Optional[Deployment]:
        """Mark the current deployment successful once its grace period passed untroubled."""
        deployment = self.current
        if (
            deployment is None
            or deployment.auto_complete_at is None
            or deployment.rollback_triggered
            or self.clock.now() < deployment.auto_complete_at
        ):
            return None
        return await self.mark_successful(deployment.id)

    def _finalizable(self, deployment_id: Optional[str], target: str) -> Optional[Deployment]:
        deployment = self.current
        if deployment is None:
            logger.warning(f"Cannot mark deployment {deployment_id or ''} {target}: no active deployment")
            return None
        if deployment_id is not None and deployment.id != deployment_id:
            logger.warning(
                f"Cannot mark deployment {deployment_id} {target}: "
                f"it is not the active deployment ({deployment.id})"
            )
            return None
        if deployment.is_terminal:
            logger.warning(f"Deployment {deployment.id} is already {deployment.status.value}, ignoring {target}")
            return None
        return deployment

    def _finalize(self, deployment: Deployment, status: DeploymentStatus) -> None:
        now = self.clock.now()
        deployment.status = status
        deployment.end_time = now
        self._update_average_time(deployment.duration_ms or 0)
        self.metrics.last_deployment_time = now
        self.history.appendleft(deployment)
        self.current = None
        DEPLOYMENTS_TOTAL.labels(status=status.value).inc()

    def _update_average_time(self, duration_ms: int) -> None:
        n = self.metrics.successful_deployments + self.metrics.failed_deployments + 1
        old = self.metrics.average_deployment_time_ms
        self.metrics.average_deployment_time_ms = ((old * (n - 1)) + duration_ms) / n

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    async def add_alert(self, alert_type: str, message: str, severity: str = "info", data=None) -> Alert:
        async with self._lock:
            alert = self.alerts.add(alert_type, self.clock.now(), severity=severity, message=message, data=data)
            await self._persist()
            return alert

    async def acknowledge_alert(self, alert_id: str) -> bool:
        async with self._lock:
            found = self.alerts.acknowledge(alert_id, self.clock.now())
            if found:
                await self._persist()
            return found

    # ------------------------------------------------------------------
    # Read snapshots
    # ------------------------------------------------------------------

    def current_snapshot(self) -> Optional[Deployment]:
        return copy.deepcopy(self.current)

    def recent_failure_count(self, window: Optional[int] = None) -> int:
        """Failing health checks in the active deployment's trailing window."""
        if self.current is None:
            return 0
        window = window or self.thresholds.window
        return sum(1 for h in self.current.health_checks[-window:] if not h.success)

    def get_deployment_status(self) -> Dict[str, Any]:
        metrics = self.metrics
        total = metrics.total_deployments

        def rate(count: int) -> float:
            return (count / total) * 100 if total > 0 else 0.0

        return {
            "current": self.current.to_dict() if self.current else None,
            "metrics": {
                **metrics.to_dict(),
                "success_rate": rate(metrics.successful_deployments),
                "failure_rate": rate(metrics.failed_deployments),
                "rollback_rate": rate(metrics.rollbacks),
            },
            "recent_history": [d.to_dict() for d in list(self.history)[:10]],
            "recent_rollbacks": list(self.rollback_triggers)[:5],
            "active_alerts": [a.to_dict() for a in self.alerts.active(limit=10)],
            "last_updated": to_iso(self.clock.now()),
        }

    def get_performance_metrics(self) -> Dict[str, Any]:
        recent = list(self.history)[:20]
        successful = [d for d in recent if d.status == DeploymentStatus.SUCCESSFUL]
        return {
            "average_deployment_time_ms": self.metrics.average_deployment_time_ms,
            "recent_deployment_times": [
                {"id": d.id, "duration_ms": d.duration_ms, "timestamp": to_iso(d.start_time)}
                for d in successful
            ],
            "deployment_frequency": self._deployment_frequency(),
            "error_trends": [
                {
                    "id": d.id,
                    "timestamp": to_iso(d.start_time),
                    "status": d.status.value,
                    "errors": len(d.errors),
                    "health_check_failures": sum(1 for h in d.health_checks if not h.success),
                }
                for d in recent
            ],
            "performance_trends": [
                {
                    "id": d.id,
                    "timestamp": to_iso(d.start_time),
                    "duration_ms": d.duration_ms,
                    "avg_health_check_time_ms": _mean_response_time(d),
                }
                for d in successful
            ],
        }

    def _deployment_frequency(self) -> Dict[str, float]:
        now = self.clock.now()
        day_ago = now - timedelta(days=1)
        week_ago = now - timedelta(days=7)
        last_day = sum(1 for d in self.history if d.start_time > day_ago)
        last_week = sum(1 for d in self.history if d.start_time > week_ago)
        return {"last_day": last_day, "last_week": last_week, "average_per_day": last_week / 7}


def _mean_response_time(deployment: Deployment) -> Optional[float]:
    if not deployment.health_checks:
        return None
    total = sum(h.response_time_ms or 0 for h in deployment.health_checks)
    return total / len(deployment.health_checks)
