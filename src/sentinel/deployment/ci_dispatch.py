"""Repository-dispatch client that asks the CI system to run a rollback workflow."""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import pybreaker
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.sentinel.core.clock import Clock, SystemClock, to_iso
from src.sentinel.core.config import Settings
from src.sentinel.core.errors import SentinelError, TransientIOError
from src.sentinel.deployment.rollback_policy import RollbackStrategy
from src.sentinel.services.base import OutboundService


@dataclass
class DispatchResult:
    success: bool
    attempts: int = 0
    status_code: Optional[int] = None
    error: Optional[str] = None
    skipped: bool = False
    payload: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "attempts": self.attempts,
            "status_code": self.status_code,
            "error": self.error,
            "skipped": self.skipped,
            "payload": self.payload,
        }


def build_dispatch_payload(
    environment: str,
    reason: str,
    strategy: RollbackStrategy,
    actor: str,
    timestamp: str,
) -> Dict[str, Any]:
    """Repository dispatch body for a rollback request."""
    immediate = strategy == RollbackStrategy.IMMEDIATE
    return {
        "event_type": "emergency-rollback" if immediate else "rollback-deployment",
        "client_payload": {
            "environment": environment,
            "rollback_reason": reason,
            "strategy": strategy.value,
            "priority": "critical" if immediate else "normal",
            "triggered_by": actor,
            "timestamp": timestamp,
        },
    }


class CIDispatcher(OutboundService):
    """Fires rollback events at the CI system, retrying transient failures."""

    name = "ci_dispatch"

    def __init__(
        self,
        settings: Settings,
        clock: Optional[Clock] = None,
        client: Optional[httpx.Client] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        super().__init__(settings.CI_TIMEOUT_SECONDS, client=client, breaker=breaker)
        self.settings = settings
        self.clock = clock or SystemClock()

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.CI_TOKEN and s.CI_REPO_OWNER and s.CI_REPO_NAME)

    @property
    def dispatch_url(self) -> str:
        s = self.settings
        return f"{s.CI_API_URL.rstrip('/')}/repos/{s.CI_REPO_OWNER}/{s.CI_REPO_NAME}/dispatches"

    async def dispatch_rollback(
        self,
        environment: str,
        reason: str,
        strategy: RollbackStrategy,
        actor: str = "automated-system",
    ) -> DispatchResult:
        """Send the rollback event. Never raises; failures come back as a result."""
        payload = build_dispatch_payload(environment, reason, strategy, actor, to_iso(self.clock.now()))
        if not self.configured:
            logger.warning("CI dispatch not configured (CI_TOKEN / CI_REPO_OWNER / CI_REPO_NAME), skipping")
            return DispatchResult(success=False, skipped=True, error="CI dispatch not configured", payload=payload)

        headers = {
            "Authorization": f"Bearer {self.settings.CI_TOKEN}",
            "Accept": "application/vnd.github+json",
        }
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.CI_MAX_ATTEMPTS),
                wait=wait_exponential(multiplier=1, min=1, max=30),
                retry=retry_if_exception_type(TransientIOError),
                sleep=self.clock.sleep,
                reraise=True,
            ):
                with attempt:
                    attempts += 1
                    response = await self.request("POST", self.dispatch_url, json=payload, headers=headers)
        except SentinelError as e:
            logger.error(f"❌ CI rollback dispatch failed after {attempts} attempt(s): {e.message}")
            return DispatchResult(
                success=False,
                attempts=attempts,
                status_code=e.details.get("status_code"),
                error=e.message,
                payload=payload,
            )

        logger.info(f"📨 CI rollback dispatched ({payload['event_type']}) for {environment}")
        return DispatchResult(
            success=True,
            attempts=attempts,
            status_code=response.status_code,
            payload=payload,
        )
