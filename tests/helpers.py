"""Shared builders for tests."""
import httpx

from src.sentinel.core.circuit_breaker import make_breaker
from src.sentinel.deployment.ci_dispatch import CIDispatcher
from src.sentinel.deployment.traffic import TrafficRouter
from src.sentinel.deployment.validation import HealthValidator
from src.sentinel.health.checks import DependencyCheck
from src.sentinel.services.runtime import Runtime


def stub_check(name, healthy=True, critical=False, error="check failed"):
    """A dependency check whose result is controlled through ``check.state``."""
    state = {"healthy": healthy}

    async def run():
        if not state["healthy"]:
            raise RuntimeError(error)
        return True, {}

    check = DependencyCheck(name=name, run=run, critical=critical, timeout=1.0)
    check.state = state
    return check


def healthy_checks():
    return [
        stub_check("status_aggregator"),
        stub_check("filesystem", critical=True),
        stub_check("game_server"),
        stub_check("notification_channels"),
        stub_check("memory", critical=True),
        stub_check("disk"),
        stub_check("network", critical=True),
    ]


def mock_client(handler):
    """Sync httpx client answering from ``handler(request) -> httpx.Response``."""
    return httpx.Client(transport=httpx.MockTransport(handler))


def always(status_code, json=None):
    def handler(request):
        return httpx.Response(status_code, json=json if json is not None else {})
    return handler


def quiet_breaker(name):
    return make_breaker(name, fail_max=1000)


def build_validator(settings, clock, handler=None):
    return HealthValidator(
        settings,
        clock=clock,
        client=mock_client(handler or always(200)),
        breaker=quiet_breaker("validator_test"),
    )


def build_runtime(settings, clock, validator_handler=None, checks=None, router=None, ci=None, channels=None):
    return Runtime(
        settings,
        clock=clock,
        health_checks=checks if checks is not None else healthy_checks(),
        channels=channels if channels is not None else [],
        ci=ci or CIDispatcher(settings, clock=clock, breaker=quiet_breaker("ci_test")),
        router=router or TrafficRouter(settings, breaker=quiet_breaker("router_test")),
        validator=build_validator(settings, clock, validator_handler),
        resource_sampler=lambda: {"cpu": 10.0, "memory": 20.0},
        auto_process_notifications=False,
    )
