"""Circuit breakers guarding outbound calls (CI dispatch, traffic router, notification channels)."""
from typing import List, Optional

import pybreaker
from prometheus_client import Gauge
from loguru import logger

CIRCUIT_STATE = Gauge(
    "sentinel_circuit_breaker_state",
    "Circuit breaker state: 0=closed, 1=open, 2=half_open",
    ["service"],
)

_STATE_VALUES = {
    pybreaker.STATE_CLOSED: 0,
    pybreaker.STATE_OPEN: 1,
    pybreaker.STATE_HALF_OPEN: 2,
}


class BreakerStateListener(pybreaker.CircuitBreakerListener):
    """Logs state transitions and mirrors them into Prometheus."""

    def state_change(self, cb, old_state, new_state):
        name = new_state.name if new_state else "unknown"
        if name == pybreaker.STATE_OPEN:
            logger.error(f"🔴 Circuit OPEN for {cb.name}")
        elif name == pybreaker.STATE_HALF_OPEN:
            logger.warning(f"🟡 Circuit HALF-OPEN for {cb.name}")
        else:
            logger.info(f"🟢 Circuit CLOSED for {cb.name}")
        CIRCUIT_STATE.labels(service=cb.name).set(_STATE_VALUES.get(name, 0))


def make_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 60,
    exclude: Optional[List[type]] = None,
) -> pybreaker.CircuitBreaker:
    """Build a breaker for one external target.

    Each target gets its own breaker so one failing endpoint never
    opens the circuit for another. Exceptions in ``exclude`` do not
    count as failures.
    """
    CIRCUIT_STATE.labels(service=name).set(0)
    return pybreaker.CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        exclude=exclude or [],
        name=name,
        listeners=[BreakerStateListener()],
    )
