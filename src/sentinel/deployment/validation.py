"""Post-rollback health validation against the deployed service."""
import time
from typing import Any, Dict, List, Optional

import httpx
import pybreaker
from loguru import logger

from src.sentinel.core.circuit_breaker import make_breaker
from src.sentinel.core.clock import Clock, SystemClock, to_iso
from src.sentinel.core.config import Settings
from src.sentinel.core.errors import RemoteRejectedError, SentinelError
from src.sentinel.services.base import OutboundService

VALIDATION_ENDPOINTS = ("/health", "/ready")


def validation_breaker(settings: Settings) -> pybreaker.CircuitBreaker:
    """Breaker that only opens once the target stays down past a whole validation window.

    ``wait_for_healthy`` is its own retry loop, so a breaker with the default
    threshold would open mid-poll and fail every later attempt fast.
    """
    interval = max(settings.ROLLBACK_VALIDATION_INTERVAL_SECONDS, 1.0)
    attempts = int(settings.ROLLBACK_VALIDATION_TIMEOUT_SECONDS // interval) + 1
    return make_breaker(
        HealthValidator.name,
        fail_max=attempts * len(VALIDATION_ENDPOINTS) + 1,
        exclude=[RemoteRejectedError],
    )


class HealthValidator(OutboundService):
    """Polls the target's ``/health`` and ``/ready`` endpoints."""

    name = "rollback_validation"

    def __init__(
        self,
        settings: Settings,
        clock: Optional[Clock] = None,
        client: Optional[httpx.Client] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        super().__init__(
            settings.NETWORK_TIMEOUT_SECONDS,
            client=client,
            breaker=breaker or validation_breaker(settings),
        )
        self.settings = settings
        self.clock = clock or SystemClock()

    @property
    def configured(self) -> bool:
        return True

    async def validate(self, environment: str) -> Dict[str, Any]:
        """Call every validation endpoint once.

        Returns:
            {"healthy": bool, "checks": [...], "timestamp": iso}
        """
        base_url = self.settings.target_url_for(environment)
        checks: List[Dict[str, Any]] = []
        for endpoint in VALIDATION_ENDPOINTS:
            start = time.perf_counter()
            try:
                response = await self.request("GET", f"{base_url}{endpoint}")
                checks.append({
                    "endpoint": endpoint,
                    "success": True,
                    "status_code": response.status_code,
                    "response_time_ms": round((time.perf_counter() - start) * 1000, 2),
                })
            except SentinelError as e:
                checks.append({
                    "endpoint": endpoint,
                    "success": False,
                    "status_code": e.details.get("status_code"),
                    "error": e.message,
                    "response_time_ms": round((time.perf_counter() - start) * 1000, 2),
                })
        return {
            "healthy": all(c["success"] for c in checks),
            "checks": checks,
            "timestamp": to_iso(self.clock.now()),
        }

    async def wait_for_healthy(
        self,
        environment: str,
        trail: List[Dict[str, Any]],
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> bool:
        """Poll until health and readiness both pass or the timeout elapses.

        Every attempt is appended to ``trail``.
        """
        timeout = self.settings.ROLLBACK_VALIDATION_TIMEOUT_SECONDS if timeout is None else timeout
        interval = self.settings.ROLLBACK_VALIDATION_INTERVAL_SECONDS if interval is None else interval
        started = self.clock.now()
        attempt = 0
        while True:
            attempt += 1
            result = await self.validate(environment)
            result["attempt"] = attempt
            trail.append(result)
            if result["healthy"]:
                logger.info(f"✅ {environment} passed rollback validation on attempt {attempt}")
                return True
            elapsed = (self.clock.now() - started).total_seconds()
            if elapsed + interval > timeout:
                logger.error(
                    f"❌ {environment} failed rollback validation after {attempt} attempts ({elapsed:.0f}s)"
                )
                return False
            await self.clock.sleep(interval)
