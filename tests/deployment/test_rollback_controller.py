"""Unit tests for rollback execution.

Tests cover the cooldown gate, per-environment exclusivity, the three
strategies and their fallbacks, CI dispatch and the audit trail.
"""
import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from src.sentinel.core.errors import InvariantViolationError
from src.sentinel.core.persistence import JsonStateStore
from src.sentinel.deployment.ci_dispatch import CIDispatcher
from src.sentinel.deployment.models import RollbackEventStatus
from src.sentinel.deployment.rollback_controller import RollbackController
from src.sentinel.deployment.traffic import TrafficRouter
from tests.helpers import always, build_validator, mock_client, quiet_breaker

ROUTER_URL = "http://router.test"


def router_for(settings, handler):
    return TrafficRouter(settings, client=mock_client(handler), breaker=quiet_breaker("router_test"))


def ci_for(settings, clock, handler):
    return CIDispatcher(settings, clock=clock, client=mock_client(handler), breaker=quiet_breaker("ci_test"))


def controller_for(settings, clock, tmp_path, validator_handler=None, router=None, ci=None, notifications=None):
    return RollbackController(
        settings,
        store=JsonStateStore(str(tmp_path / "rollback-tracking.json")),
        clock=clock,
        ci=ci or CIDispatcher(settings, clock=clock, breaker=quiet_breaker("ci_test")),
        router=router or TrafficRouter(settings, breaker=quiet_breaker("router_test")),
        validator=build_validator(settings, clock, validator_handler),
        notifications=notifications,
    )


class BlockingValidator:
    """Validator that holds the rollback until released."""

    configured = True

    def __init__(self):
        self.release = asyncio.Event()

    async def wait_for_healthy(self, environment, trail, timeout=None, interval=None):
        await self.release.wait()
        trail.append({"healthy": True, "checks": []})
        return True

    def close(self):
        pass


class TestImmediateRollback:
    """Test the immediate strategy and the gate around it."""

    @pytest.mark.asyncio
    async def test_immediate_rollback_completes(self, settings, clock, tmp_path):
        controller = controller_for(settings, clock, tmp_path)

        outcome = await controller.execute_rollback("Health checks failing", severity="critical")

        assert outcome.success
        event = outcome.event
        assert event.strategy == "immediate"
        assert event.status == RollbackEventStatus.COMPLETED
        assert event.environment.value == "staging"
        # CI not configured: dispatch is skipped, validation still runs
        assert event.dispatch["skipped"] is True
        assert [s["action"] for s in event.steps] == ["ci_dispatch", "validation"]
        assert controller.metrics.successful_rollbacks == 1

    @pytest.mark.asyncio
    async def test_second_request_in_cooldown_rejected(self, settings, clock, tmp_path):
        """Test that a request 120s after a rollback is refused by the cooldown."""
        controller = controller_for(settings, clock, tmp_path)
        first = await controller.execute_rollback("Health checks failing", severity="critical")
        assert first.success

        clock.advance(120)
        second = await controller.execute_rollback("Still failing", severity="critical")

        assert second.rejected
        assert not second.success
        assert "cooldown" in second.reason
        assert second.event is None
        assert controller.metrics.total_rollbacks == 1
        assert controller.is_rollback_allowed().retry_after_seconds == pytest.approx(480)

    @pytest.mark.asyncio
    async def test_cooldown_expires(self, settings, clock, tmp_path):
        controller = controller_for(settings, clock, tmp_path)
        await controller.execute_rollback("Health checks failing", severity="critical")

        clock.advance(settings.ROLLBACK_COOLDOWN_SECONDS + 1)

        assert controller.is_rollback_allowed().allowed
        outcome = await controller.execute_rollback("Health checks failing again", severity="critical")
        assert outcome.success

    @pytest.mark.asyncio
    async def test_validation_timeout_fails_and_arms_cooldown(self, settings, clock, tmp_path):
        """Test that a failed rollback is finalized and still arms the cooldown."""
        settings = settings.model_copy(update={
            "ROLLBACK_VALIDATION_TIMEOUT_SECONDS": 60.0,
            "ROLLBACK_VALIDATION_INTERVAL_SECONDS": 15.0,
        })
        controller = controller_for(settings, clock, tmp_path, validator_handler=always(503))

        outcome = await controller.execute_rollback("Health checks failing", severity="critical")

        assert not outcome.success
        assert not outcome.rejected
        event = outcome.event
        assert event.status == RollbackEventStatus.FAILED
        assert "Rollback validation timeout" in event.errors
        # Attempts at 0, 15, 30, 45 and 60 seconds
        assert len(event.health_checks) == 5
        assert event.health_checks[0]["checks"][0]["status_code"] == 503
        assert controller.in_cooldown
        assert controller.metrics.failed_rollbacks == 1
        assert controller.last_rollback.id == event.id

    @pytest.mark.asyncio
    async def test_hourly_cap(self, settings, clock, tmp_path):
        settings = settings.model_copy(update={"ROLLBACK_COOLDOWN_SECONDS": 0.0, "ROLLBACK_MAX_PER_HOUR": 2})
        controller = controller_for(settings, clock, tmp_path)

        for _ in range(2):
            assert (await controller.execute_rollback("Health checks failing", severity="critical")).success
            clock.advance(60)

        outcome = await controller.execute_rollback("Health checks failing", severity="critical")
        assert outcome.rejected
        assert "rate limit" in outcome.reason

    @pytest.mark.asyncio
    async def test_concurrent_rollback_same_environment_rejected(self, settings, clock, tmp_path):
        """Test that a second rollback for a busy environment raises."""
        controller = controller_for(settings, clock, tmp_path)
        validator = BlockingValidator()
        controller.validator = validator

        first = asyncio.create_task(controller.execute_rollback("Health checks failing", severity="critical"))
        for _ in range(10):
            await asyncio.sleep(0)
        assert controller.is_in_progress("staging")

        with pytest.raises(InvariantViolationError, match="already in progress"):
            await controller.execute_rollback("Health checks failing", severity="critical")

        validator.release.set()
        outcome = await first
        assert outcome.success
        assert not controller.is_in_progress()
        assert controller.metrics.total_rollbacks == 1

    @pytest.mark.asyncio
    async def test_notifications_sent(self, settings, clock, tmp_path):
        notifications = AsyncMock()
        controller = controller_for(settings, clock, tmp_path, notifications=notifications)

        outcome = await controller.execute_rollback("Health checks failing", severity="critical")

        notifications.notify_rollback_triggered.assert_awaited_once()
        completed = notifications.notify_rollback_completed.await_args.args[0]
        assert completed["id"] == outcome.event.id
        assert completed["status"] == "completed"

    @pytest.mark.asyncio
    async def test_notification_failure_releases_environment(self, settings, clock, tmp_path):
        """Test that a failing notification queue neither fails nor wedges the rollback."""
        notifications = AsyncMock()
        notifications.notify_rollback_triggered.side_effect = RuntimeError("queue unavailable")
        controller = controller_for(settings, clock, tmp_path, notifications=notifications)

        outcome = await controller.execute_rollback("Health checks failing", severity="critical")

        assert outcome.success
        assert not controller.is_in_progress("staging")
        notifications.notify_rollback_completed.assert_awaited_once()

        clock.advance(settings.ROLLBACK_COOLDOWN_SECONDS + 1)
        second = await controller.execute_rollback("Health checks failing", severity="critical")
        assert second.success

    @pytest.mark.asyncio
    async def test_cancelled_notification_releases_environment(self, settings, clock, tmp_path):
        """Test that cancellation while announcing still frees the environment."""
        notifications = AsyncMock()
        notifications.notify_rollback_triggered.side_effect = asyncio.CancelledError()
        controller = controller_for(settings, clock, tmp_path, notifications=notifications)

        with pytest.raises(asyncio.CancelledError):
            await controller.execute_rollback("Health checks failing", severity="critical")

        assert not controller.is_in_progress()

    @pytest.mark.asyncio
    async def test_ci_dispatch_failure_fails_rollback(self, settings, clock, tmp_path):
        settings = settings.model_copy(update={
            "CI_TOKEN": "ghp_test", "CI_REPO_OWNER": "acme", "CI_REPO_NAME": "web",
        })
        controller = controller_for(settings, clock, tmp_path, ci=ci_for(settings, clock, always(404)))

        outcome = await controller.execute_rollback("Health checks failing", severity="critical")

        assert not outcome.success
        assert outcome.event.dispatch["status_code"] == 404
        assert outcome.event.errors[0].startswith("CI dispatch failed")
        # Validation never ran
        assert outcome.event.health_checks == []


class TestCanaryRollback:
    """Test the stepped traffic ladder."""

    @pytest.mark.asyncio
    async def test_canary_completes_all_steps(self, settings, clock, tmp_path):
        settings = settings.model_copy(update={"TRAFFIC_ROUTER_URL": ROUTER_URL})
        splits = []

        def router(request):
            splits.append(request.read())
            return httpx.Response(200, json={"ok": True})

        controller = controller_for(settings, clock, tmp_path, router=router_for(settings, router))
        outcome = await controller.execute_rollback("High response time after release", severity="warning")

        assert outcome.success
        assert outcome.event.strategy == "canary"
        assert len(splits) == 5
        assert [s["traffic_percent"] for s in outcome.event.steps] == [100, 75, 50, 25, 0]
        assert clock.slept == 5 * settings.CANARY_STEP_WAIT_SECONDS

    @pytest.mark.asyncio
    async def test_canary_step_failure_falls_back_to_immediate(self, settings, clock, tmp_path):
        """Test that a failed step 3/5 (50%) hands over to an immediate rollback."""
        settings = settings.model_copy(update={
            "TRAFFIC_ROUTER_URL": ROUTER_URL,
            "CI_TOKEN": "ghp_test", "CI_REPO_OWNER": "acme", "CI_REPO_NAME": "web",
        })
        state = {"percent": None, "failed": False}
        dispatched = []

        def router(request):
            state["percent"] = json.loads(request.read())["new_version_percent"]
            return httpx.Response(200, json={})

        def target(request):
            if state["percent"] == 50 and not state["failed"]:
                if request.url.path == "/ready":
                    state["failed"] = True
                return httpx.Response(503)
            return httpx.Response(200, json={"status": "healthy"})

        def ci(request):
            dispatched.append(request)
            return httpx.Response(204)

        controller = controller_for(
            settings, clock, tmp_path,
            validator_handler=target,
            router=router_for(settings, router),
            ci=ci_for(settings, clock, ci),
        )
        outcome = await controller.execute_rollback("High response time after release", severity="warning")

        event = outcome.event
        assert outcome.success
        assert event.fallback_from == "canary"
        assert event.strategy == "immediate"
        assert event.reason.startswith("Canary rollback failed at step 3/5 (50%)")
        assert "original reason: High response time after release" in event.reason
        assert [s["action"] for s in event.steps] == [
            "traffic_split", "traffic_split", "traffic_split", "ci_dispatch", "validation",
        ]
        assert event.steps[2]["healthy"] is False
        assert len(dispatched) == 1
        assert event.dispatch["payload"]["event_type"] == "emergency-rollback"

    @pytest.mark.asyncio
    async def test_canary_without_router_degrades(self, settings, clock, tmp_path):
        controller = controller_for(settings, clock, tmp_path)

        outcome = await controller.execute_rollback("Performance regression", severity="normal")

        assert outcome.success
        assert outcome.event.fallback_from == "canary"
        assert outcome.event.strategy == "immediate"
        assert outcome.event.steps[0]["action"] == "degraded"


class TestBlueGreenRollback:
    """Test slot switching."""

    @pytest.mark.asyncio
    async def test_slot_switch(self, settings, clock, tmp_path):
        settings = settings.model_copy(update={"TRAFFIC_ROUTER_URL": ROUTER_URL})
        paths = []

        def router(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"active_slot": "blue"})

        controller = controller_for(settings, clock, tmp_path, router=router_for(settings, router))
        outcome = await controller.execute_rollback("Manual rollback: bad config", severity="normal")

        assert outcome.success
        assert outcome.event.strategy == "blue_green"
        assert paths == ["/api/slots/switch"]
        assert outcome.event.steps[0]["active_slot"] == "blue"

    @pytest.mark.asyncio
    async def test_slot_switch_rejected_falls_back(self, settings, clock, tmp_path):
        settings = settings.model_copy(update={"TRAFFIC_ROUTER_URL": ROUTER_URL})
        controller = controller_for(settings, clock, tmp_path, router=router_for(settings, always(409)))

        outcome = await controller.execute_rollback("Manual rollback: bad config", severity="normal")

        assert outcome.success
        assert outcome.event.fallback_from == "blue_green"
        assert outcome.event.reason.startswith("Blue-green rollback failed")

    @pytest.mark.asyncio
    async def test_blue_green_without_router_degrades(self, settings, clock, tmp_path):
        controller = controller_for(settings, clock, tmp_path)

        outcome = await controller.execute_rollback("Manual rollback: bad config", severity="normal")

        assert outcome.event.fallback_from == "blue_green"
        assert outcome.event.strategy == "immediate"


class TestRollbackPersistence:
    """Test that history and cooldown survive a restart."""

    @pytest.mark.asyncio
    async def test_reload(self, settings, clock, tmp_path):
        controller = controller_for(settings, clock, tmp_path)
        outcome = await controller.execute_rollback("Health checks failing", severity="critical")

        restored = controller_for(settings, clock, tmp_path)
        assert await restored.load() is True

        assert restored.last_rollback.id == outcome.event.id
        assert restored.history[0].status == RollbackEventStatus.COMPLETED
        assert restored.in_cooldown
        assert not restored.is_rollback_allowed().allowed
        assert restored.metrics.total_rollbacks == 1

    def test_status_snapshot(self, settings, clock, tmp_path):
        controller = controller_for(settings, clock, tmp_path)

        status = controller.get_rollback_status()

        assert status["in_cooldown"] is False
        assert status["active_rollbacks"] == []
        assert status["integrations"] == {"ci_dispatch": False, "traffic_router": False}
        assert status["configuration"]["canary_steps"] == [100, 75, 50, 25, 0]
