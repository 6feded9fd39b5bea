"""Rollback execution.

Every request passes the cooldown / hourly-cap gate and the per-environment
exclusivity check atomically. Accepted requests always end as a finalized
RollbackEvent (``completed`` or ``failed``), the metrics are updated, and
the cooldown is re-armed whatever the outcome.
"""
import asyncio
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional

from loguru import logger

from src.sentinel.core.clock import Clock, SystemClock, from_iso, to_iso
from src.sentinel.core.config import Settings
from src.sentinel.core.errors import InvariantViolationError, SentinelError
from src.sentinel.core.persistence import JsonStateStore
from src.sentinel.deployment.ci_dispatch import CIDispatcher
from src.sentinel.deployment.models import (
    Environment,
    RollbackEvent,
    RollbackEventStatus,
    parse_environment,
)
from src.sentinel.deployment.rollback_policy import (
    STRATEGIES,
    GateDecision,
    RollbackStrategy,
    determine_strategy,
    is_rollback_allowed,
)
from src.sentinel.deployment.traffic import TrafficRouter
from src.sentinel.deployment.validation import HealthValidator
from src.sentinel.monitoring.metrics import ROLLBACKS_REJECTED_TOTAL, ROLLBACKS_TOTAL
from src.sentinel.monitoring.tracing import record_exception, set_span_attributes, tracer


@dataclass
class RollbackMetrics:
    total_rollbacks: int = 0
    successful_rollbacks: int = 0
    failed_rollbacks: int = 0
    average_rollback_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_rollbacks": self.total_rollbacks,
            "successful_rollbacks": self.successful_rollbacks,
            "failed_rollbacks": self.failed_rollbacks,
            "average_rollback_time_ms": self.average_rollback_time_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RollbackMetrics":
        return cls(
            total_rollbacks=int(data.get("total_rollbacks", 0)),
            successful_rollbacks=int(data.get("successful_rollbacks", 0)),
            failed_rollbacks=int(data.get("failed_rollbacks", 0)),
            average_rollback_time_ms=float(data.get("average_rollback_time_ms", 0.0)),
        )


@dataclass
class RollbackOutcome:
    """Result of a rollback request: rejected by the gate, or a finalized event."""
    success: bool
    rejected: bool = False
    reason: Optional[str] = None
    event: Optional[RollbackEvent] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "rejected": self.rejected,
            "reason": self.reason,
            "rollback": self.event.to_dict() if self.event else None,
        }


class RollbackController:
    """Selects and runs rollback strategies, bounded by cooldown and rate limits."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[JsonStateStore] = None,
        clock: Optional[Clock] = None,
        ci: Optional[CIDispatcher] = None,
        router: Optional[TrafficRouter] = None,
        validator: Optional[HealthValidator] = None,
        notifications=None,
    ):
        self.settings = settings
        self.store = store
        self.clock = clock or SystemClock()
        self.ci = ci or CIDispatcher(settings, clock=self.clock)
        self.router = router or TrafficRouter(settings)
        self.validator = validator or HealthValidator(settings, clock=self.clock)
        self.notifications = notifications

        self.history: Deque[RollbackEvent] = deque(maxlen=settings.ROLLBACK_HISTORY_MAX)
        self.last_rollback: Optional[RollbackEvent] = None
        self.cooldown_until: Optional[datetime] = None
        self.metrics = RollbackMetrics()
        self._active: Dict[Environment, RollbackEvent] = {}
        self._gate_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_rollback": self.last_rollback.to_dict() if self.last_rollback else None,
            "history": [e.to_dict() for e in self.history],
            "cooldown_until": to_iso(self.cooldown_until),
            "metrics": self.metrics.to_dict(),
        }

    async def load(self) -> bool:
        if self.store is None:
            return False
        document = await self.store.load()
        if not document:
            logger.info("No persisted rollback state, starting fresh")
            return False
        try:
            self.history.clear()
            for item in document.get("history", [])[: self.history.maxlen]:
                self.history.append(RollbackEvent.from_dict(item))
            last = document.get("last_rollback")
            self.last_rollback = RollbackEvent.from_dict(last) if last else None
            self.cooldown_until = from_iso(document.get("cooldown_until"))
            self.metrics = RollbackMetrics.from_dict(document.get("metrics") or {})
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"⚠️  Discarding unreadable rollback state: {e}")
            return False
        logger.info(f"Loaded rollback state: {len(self.history)} events, cooldown until {self.cooldown_until}")
        return True

    async def _persist(self) -> None:
        if self.store is not None:
            await self.store.save(self.to_dict())

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def _recent_starts(self) -> List[datetime]:
        starts = [e.timestamp for e in self.history]
        starts.extend(e.timestamp for e in self._active.values())
        return starts

    def is_rollback_allowed(self) -> GateDecision:
        """Re-evaluated against the clock on every call."""
        return is_rollback_allowed(
            self.clock.now(),
            self.cooldown_until,
            self._recent_starts(),
            self.settings.ROLLBACK_MAX_PER_HOUR,
        )

    @property
    def in_cooldown(self) -> bool:
        return self.cooldown_until is not None and self.clock.now() < self.cooldown_until

    def is_in_progress(self, environment: Optional[str] = None) -> bool:
        if environment is None:
            return bool(self._active)
        return parse_environment(environment) in self._active

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_rollback(
        self,
        reason: str,
        severity: str = "normal",
        environment: Optional[str] = None,
        actor: str = "automated-system",
    ) -> RollbackOutcome:
        """Run a rollback if the gate allows it.

        Raises:
            InvariantViolationError: a rollback is already running for the environment
        """
        env = parse_environment(environment or self.settings.ENV)

        async with self._gate_lock:
            if env in self._active:
                raise InvariantViolationError(
                    f"Rollback already in progress for {env.value}",
                    {"rollback_id": self._active[env].id, "environment": env.value},
                )
            gate = self.is_rollback_allowed()
            if not gate.allowed:
                ROLLBACKS_REJECTED_TOTAL.inc()
                logger.warning(f"⛔ Rollback blocked for {env.value}: {gate.reason}")
                return RollbackOutcome(success=False, rejected=True, reason=gate.reason)

            strategy = determine_strategy(reason, severity)
            event = RollbackEvent(
                id=f"rollback-{uuid.uuid4().hex[:12]}",
                timestamp=self.clock.now(),
                environment=env,
                reason=reason,
                strategy=strategy.value,
                actor=actor,
                severity=severity,
            )
            self._active[env] = event

        logger.warning(
            f"⏪ Starting {STRATEGIES[strategy].name} {event.id} for {env.value}: {reason}"
        )
        with tracer.start_as_current_span("rollback.execute") as span:
            set_span_attributes(span, rollback_id=event.id, environment=env.value, strategy=strategy.value)
            # Everything after the exclusivity slot is taken runs under the finally that releases it
            try:
                await self._announce(event, completed=False)
                if strategy == RollbackStrategy.CANARY:
                    await self._run_canary(event)
                elif strategy == RollbackStrategy.BLUE_GREEN:
                    await self._run_blue_green(event)
                else:
                    await self._run_immediate(event)
            except SentinelError as e:
                event.errors.append(e.message)
                event.finish(RollbackEventStatus.FAILED, self.clock.now())
            except Exception as e:
                logger.exception(f"Rollback {event.id} crashed: {e}")
                record_exception(span, e)
                event.errors.append(str(e))
                event.finish(RollbackEventStatus.FAILED, self.clock.now())
            finally:
                await self._finalize(event)
            set_span_attributes(span, status=event.status.value, duration_ms=event.duration_ms)

        await self._announce(event, completed=True)
        return RollbackOutcome(
            success=event.status == RollbackEventStatus.COMPLETED,
            reason=None if event.status == RollbackEventStatus.COMPLETED else "; ".join(event.errors) or None,
            event=event,
        )

    async def _announce(self, event: RollbackEvent, completed: bool) -> None:
        """Queue a rollback notification. Queueing failures never change the rollback outcome."""
        if self.notifications is None:
            return
        notify = (
            self.notifications.notify_rollback_completed if completed
            else self.notifications.notify_rollback_triggered
        )
        try:
            await notify(event.to_dict())
        except Exception as e:
            logger.error(f"Could not queue rollback notification for {event.id}: {e}")

    async def _finalize(self, event: RollbackEvent) -> None:
        if event.status == RollbackEventStatus.IN_PROGRESS:
            event.errors.append("Rollback ended without a result")
            event.finish(RollbackEventStatus.FAILED, self.clock.now())
        elif event.end_time is None:
            event.end_time = self.clock.now()

        async with self._gate_lock:
            self._active.pop(event.environment, None)
            self.history.appendleft(event)
            self.last_rollback = event
            self.cooldown_until = self.clock.now() + timedelta(seconds=self.settings.ROLLBACK_COOLDOWN_SECONDS)

            m = self.metrics
            m.total_rollbacks += 1
            if event.status == RollbackEventStatus.COMPLETED:
                m.successful_rollbacks += 1
            else:
                m.failed_rollbacks += 1
            duration = event.duration_ms or 0
            m.average_rollback_time_ms = ((m.average_rollback_time_ms * (m.total_rollbacks - 1)) + duration) / m.total_rollbacks

            ROLLBACKS_TOTAL.labels(strategy=event.strategy, status=event.status.value).inc()
            if event.status == RollbackEventStatus.COMPLETED:
                logger.info(f"✅ Rollback {event.id} completed in {duration}ms")
            else:
                logger.error(f"❌ Rollback {event.id} failed after {duration}ms: {event.errors}")
            await self._persist()

    def _step(self, event: RollbackEvent, action: str, **fields: Any) -> Dict[str, Any]:
        step = {"step": len(event.steps) + 1, "action": action, "timestamp": to_iso(self.clock.now())}
        step.update(fields)
        event.steps.append(step)
        return step

    async def _run_immediate(self, event: RollbackEvent) -> None:
        env = event.environment.value
        result = await self.ci.dispatch_rollback(env, event.reason, RollbackStrategy.IMMEDIATE, event.actor)
        event.dispatch = result.to_dict()
        self._step(event, "ci_dispatch", success=result.success, skipped=result.skipped, attempts=result.attempts)
        if not result.success and not result.skipped:
            event.errors.append(f"CI dispatch failed: {result.error}")
            event.finish(RollbackEventStatus.FAILED, self.clock.now())
            return

        healthy = await self.validator.wait_for_healthy(env, event.health_checks)
        self._step(event, "validation", success=healthy, attempts=len(event.health_checks))
        if healthy:
            event.finish(RollbackEventStatus.COMPLETED, self.clock.now())
        else:
            event.errors.append("Rollback validation timeout")
            event.finish(RollbackEventStatus.FAILED, self.clock.now())

    async def _degrade_to_immediate(self, event: RollbackEvent, source: RollbackStrategy) -> None:
        logger.warning(
            f"{STRATEGIES[source].name} needs TRAFFIC_ROUTER_URL; running immediate rollback for {event.id}"
        )
        self._step(event, "degraded", from_strategy=source.value, to_strategy=RollbackStrategy.IMMEDIATE.value)
        event.fallback_from = source.value
        event.strategy = RollbackStrategy.IMMEDIATE.value
        await self._run_immediate(event)

    async def _run_canary(self, event: RollbackEvent) -> None:
        if not self.router.configured:
            await self._degrade_to_immediate(event, RollbackStrategy.CANARY)
            return

        env = event.environment.value
        ladder = list(self.settings.CANARY_STEPS)
        for index, percent in enumerate(ladder, start=1):
            failure: Optional[str] = None
            try:
                await self.router.set_traffic_split(env, percent)
                await self.clock.sleep(self.settings.CANARY_STEP_WAIT_SECONDS)
                validation = await self.validator.validate(env)
                event.health_checks.append(validation)
                if not validation["healthy"]:
                    failure = "health validation failed"
            except SentinelError as e:
                failure = e.message
            self._step(
                event,
                "traffic_split",
                traffic_percent=percent,
                ladder_position=f"{index}/{len(ladder)}",
                healthy=failure is None,
                error=failure,
            )
            if failure is not None:
                logger.warning(f"Canary step {index}/{len(ladder)} ({percent}%) failed for {event.id}: {failure}")
                event.errors.append(f"Canary step {index}/{len(ladder)} ({percent}%): {failure}")
                event.reason = (
                    f"Canary rollback failed at step {index}/{len(ladder)} ({percent}%): "
                    f"{failure} (original reason: {event.reason})"
                )
                event.fallback_from = RollbackStrategy.CANARY.value
                event.strategy = RollbackStrategy.IMMEDIATE.value
                await self._run_immediate(event)
                return

        event.finish(RollbackEventStatus.COMPLETED, self.clock.now())

    async def _run_blue_green(self, event: RollbackEvent) -> None:
        if not self.router.configured:
            await self._degrade_to_immediate(event, RollbackStrategy.BLUE_GREEN)
            return

        env = event.environment.value
        try:
            switched = await self.router.switch_to_previous_slot(env)
        except SentinelError as e:
            self._step(event, "slot_switch", success=False, error=e.message)
            event.errors.append(f"Slot switch failed: {e.message}")
            event.reason = f"Blue-green rollback failed: {e.message} (original reason: {event.reason})"
            event.fallback_from = RollbackStrategy.BLUE_GREEN.value
            event.strategy = RollbackStrategy.IMMEDIATE.value
            await self._run_immediate(event)
            return

        self._step(event, "slot_switch", success=True, active_slot=switched.get("active_slot"))
        healthy = await self.validator.wait_for_healthy(
            env,
            event.health_checks,
            timeout=STRATEGIES[RollbackStrategy.BLUE_GREEN].timeout_seconds,
        )
        self._step(event, "validation", success=healthy, attempts=len(event.health_checks))
        if healthy:
            event.finish(RollbackEventStatus.COMPLETED, self.clock.now())
        else:
            event.errors.append("Rollback validation timeout")
            event.finish(RollbackEventStatus.FAILED, self.clock.now())

    # ------------------------------------------------------------------
    # Read snapshots
    # ------------------------------------------------------------------

    def get_rollback_status(self) -> Dict[str, Any]:
        active = list(self._active.values())
        return {
            "current_strategy": active[0].strategy if active else None,
            "active_rollbacks": [e.to_dict() for e in active],
            "last_rollback": self.last_rollback.to_dict() if self.last_rollback else None,
            "cooldown_until": to_iso(self.cooldown_until),
            "in_cooldown": self.in_cooldown,
            "metrics": self.metrics.to_dict(),
            "recent_history": [e.to_dict() for e in list(self.history)[:10]],
            "configuration": {
                "strategies": {s.value: d.to_dict() for s, d in STRATEGIES.items()},
                "cooldown_seconds": self.settings.ROLLBACK_COOLDOWN_SECONDS,
                "max_rollbacks_per_hour": self.settings.ROLLBACK_MAX_PER_HOUR,
                "canary_steps": list(self.settings.CANARY_STEPS),
                "validation_timeout_seconds": self.settings.ROLLBACK_VALIDATION_TIMEOUT_SECONDS,
            },
            "integrations": {
                "ci_dispatch": self.ci.configured,
                "traffic_router": self.router.configured,
            },
        }

    def close(self) -> None:
        self.ci.close()
        self.router.close()
        self.validator.close()
