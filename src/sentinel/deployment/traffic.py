"""Traffic router client used by canary and blue-green rollbacks."""
from typing import Any, Dict, Optional

import httpx
import pybreaker
from loguru import logger

from src.sentinel.core.config import Settings
from src.sentinel.core.errors import ConfigurationMissingError
from src.sentinel.services.base import OutboundService


class TrafficRouter(OutboundService):
    """Adjusts the traffic split between versions and switches blue/green slots.

    Without ``TRAFFIC_ROUTER_URL`` the router is unconfigured and the
    rollback controller falls back to immediate rollbacks.
    """

    name = "traffic_router"

    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.Client] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        super().__init__(settings.TRAFFIC_TIMEOUT_SECONDS, client=client, breaker=breaker)
        self.settings = settings

    @property
    def configured(self) -> bool:
        return bool(self.settings.TRAFFIC_ROUTER_URL)

    def _url(self, path: str) -> str:
        if not self.configured:
            raise ConfigurationMissingError("Traffic router not configured (TRAFFIC_ROUTER_URL)")
        return f"{self.settings.TRAFFIC_ROUTER_URL.rstrip('/')}{path}"

    def _headers(self) -> Dict[str, str]:
        if self.settings.TRAFFIC_ROUTER_TOKEN:
            return {"Authorization": f"Bearer {self.settings.TRAFFIC_ROUTER_TOKEN}"}
        return {}

    async def set_traffic_split(self, environment: str, new_version_percent: int) -> Dict[str, Any]:
        """Route ``new_version_percent`` of traffic to the new version, the rest to the previous one."""
        body = {
            "environment": environment,
            "new_version_percent": new_version_percent,
            "previous_version_percent": 100 - new_version_percent,
        }
        response = await self.request("POST", self._url("/api/traffic/split"), json=body, headers=self._headers())
        logger.info(f"🔀 Traffic split for {environment}: {new_version_percent}% new version")
        return _json_or_empty(response)

    async def switch_to_previous_slot(self, environment: str) -> Dict[str, Any]:
        """Point the router back at the slot that served before the last switch."""
        body = {"environment": environment, "target": "previous"}
        response = await self.request("POST", self._url("/api/slots/switch"), json=body, headers=self._headers())
        result = _json_or_empty(response)
        logger.info(f"🔁 Switched {environment} to slot {result.get('active_slot', 'previous')}")
        return result


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
