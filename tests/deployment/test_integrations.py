"""Unit tests for the outbound integrations: CI dispatch, traffic router, validation."""
import json

import httpx
import pytest

from src.sentinel.core.circuit_breaker import make_breaker
from src.sentinel.core.errors import (
    CircuitOpenError,
    ConfigurationMissingError,
    RemoteRejectedError,
    TransientIOError,
)
from src.sentinel.deployment.ci_dispatch import CIDispatcher, build_dispatch_payload
from src.sentinel.deployment.rollback_policy import RollbackStrategy
from src.sentinel.deployment.traffic import TrafficRouter
from src.sentinel.deployment.validation import HealthValidator
from tests.helpers import always, build_validator, mock_client, quiet_breaker


@pytest.fixture
def ci_settings(settings):
    return settings.model_copy(update={
        "CI_TOKEN": "ghp_test",
        "CI_REPO_OWNER": "acme",
        "CI_REPO_NAME": "web",
    })


class TestCIDispatcher:
    """Test repository dispatch with retries."""

    def test_payload_for_immediate(self):
        payload = build_dispatch_payload("prod", "health failing", RollbackStrategy.IMMEDIATE, "oncall", "2024-01-01T00:00:00+00:00")

        assert payload["event_type"] == "emergency-rollback"
        assert payload["client_payload"]["priority"] == "critical"
        assert payload["client_payload"]["triggered_by"] == "oncall"

    def test_payload_for_canary(self):
        payload = build_dispatch_payload("prod", "slow", RollbackStrategy.CANARY, "bot", "2024-01-01T00:00:00+00:00")

        assert payload["event_type"] == "rollback-deployment"
        assert payload["client_payload"]["priority"] == "normal"

    @pytest.mark.asyncio
    async def test_not_configured_is_skipped(self, settings, clock):
        dispatcher = CIDispatcher(settings, clock=clock)

        result = await dispatcher.dispatch_rollback("staging", "health failing", RollbackStrategy.IMMEDIATE)

        assert result.skipped
        assert not result.success
        assert result.attempts == 0

    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, ci_settings, clock):
        """Test that 5xx answers are retried with backoff on the injected clock."""
        requests = []

        def handler(request):
            requests.append(request)
            if len(requests) < 3:
                return httpx.Response(502)
            return httpx.Response(204)

        dispatcher = CIDispatcher(ci_settings, clock=clock, client=mock_client(handler), breaker=quiet_breaker("ci_test"))
        result = await dispatcher.dispatch_rollback("staging", "health failing", RollbackStrategy.IMMEDIATE, "oncall")

        assert result.success
        assert result.attempts == 3
        assert result.status_code == 204
        assert clock.slept > 0

        request = requests[-1]
        assert request.url.path == "/repos/acme/web/dispatches"
        assert request.headers["Authorization"] == "Bearer ghp_test"
        assert json.loads(request.read())["client_payload"]["environment"] == "staging"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, ci_settings, clock):
        dispatcher = CIDispatcher(ci_settings, clock=clock, client=mock_client(always(503)), breaker=quiet_breaker("ci_test"))

        result = await dispatcher.dispatch_rollback("staging", "health failing", RollbackStrategy.IMMEDIATE)

        assert not result.success
        assert result.attempts == ci_settings.CI_MAX_ATTEMPTS
        assert result.status_code == 503

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, ci_settings, clock):
        """Test that a 4xx rejection is final."""
        dispatcher = CIDispatcher(ci_settings, clock=clock, client=mock_client(always(422)), breaker=quiet_breaker("ci_test"))

        result = await dispatcher.dispatch_rollback("staging", "health failing", RollbackStrategy.IMMEDIATE)

        assert not result.success
        assert result.attempts == 1
        assert result.status_code == 422
        assert clock.slept == 0


class TestTrafficRouter:
    """Test router calls and the circuit breaker around them."""

    @pytest.fixture
    def router_settings(self, settings):
        return settings.model_copy(update={"TRAFFIC_ROUTER_URL": "http://router.test/", "TRAFFIC_ROUTER_TOKEN": "secret"})

    def test_unconfigured(self, settings):
        assert not TrafficRouter(settings).configured

    @pytest.mark.asyncio
    async def test_unconfigured_call_raises(self, settings):
        router = TrafficRouter(settings, client=mock_client(always(200)), breaker=quiet_breaker("router_test"))

        with pytest.raises(ConfigurationMissingError):
            await router.set_traffic_split("prod", 10)

    @pytest.mark.asyncio
    async def test_traffic_split(self, router_settings):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"applied": True})

        router = TrafficRouter(router_settings, client=mock_client(handler), breaker=quiet_breaker("router_test"))
        result = await router.set_traffic_split("prod", 25)

        assert result == {"applied": True}
        assert str(seen[0].url) == "http://router.test/api/traffic/split"
        assert seen[0].headers["Authorization"] == "Bearer secret"
        assert json.loads(seen[0].read()) == {
            "environment": "prod",
            "new_version_percent": 25,
            "previous_version_percent": 75,
        }

    @pytest.mark.asyncio
    async def test_rejection_raises(self, router_settings):
        router = TrafficRouter(router_settings, client=mock_client(always(409)), breaker=quiet_breaker("router_test"))

        with pytest.raises(RemoteRejectedError):
            await router.switch_to_previous_slot("prod")

    @pytest.mark.asyncio
    async def test_circuit_opens(self, router_settings):
        """Test that an open breaker short-circuits further calls."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        router = TrafficRouter(
            router_settings,
            client=mock_client(handler),
            breaker=make_breaker("router_trip_test", fail_max=1, reset_timeout=60),
        )

        with pytest.raises(TransientIOError):
            await router.set_traffic_split("prod", 50)
        with pytest.raises(CircuitOpenError):
            await router.set_traffic_split("prod", 50)
        assert len(calls) == 1


class TestHealthValidator:
    """Test post-rollback validation polling."""

    @pytest.mark.asyncio
    async def test_validate_hits_health_and_ready(self, settings, clock):
        settings = settings.model_copy(update={"ROLLBACK_TARGET_URLS": {"prod": "http://prod.test/"}})
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200)

        validator = build_validator(settings, clock, handler)
        result = await validator.validate("prod")

        assert result["healthy"]
        assert seen == ["http://prod.test/health", "http://prod.test/ready"]

    @pytest.mark.asyncio
    async def test_wait_for_healthy_recovers(self, settings, clock):
        """Test that polling continues until both endpoints pass."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503 if len(calls) <= 4 else 200)

        validator = build_validator(settings, clock, handler)
        trail = []
        healthy = await validator.wait_for_healthy("staging", trail, timeout=300, interval=15)

        assert healthy
        assert [t["healthy"] for t in trail] == [False, False, True]
        assert trail[-1]["attempt"] == 3
        assert clock.slept == 30

    @pytest.mark.asyncio
    async def test_default_breaker_stays_closed_through_polling(self, settings, clock):
        """Test that a long outage inside the validation window never opens the validator's breaker."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503 if len(calls) <= 12 else 200)

        validator = HealthValidator(settings, clock=clock, client=mock_client(handler))
        trail = []
        healthy = await validator.wait_for_healthy("staging", trail)

        assert healthy
        assert len(trail) == 7
        assert all(c["status_code"] == 503 for t in trail[:6] for c in t["checks"])
        assert validator.breaker.current_state == "closed"
        assert validator.breaker.fail_max == 43
