"""Outbound HTTP integrations guarded by a per-target circuit breaker."""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import pybreaker
from loguru import logger

from src.sentinel.core.circuit_breaker import make_breaker
from src.sentinel.core.errors import CircuitOpenError, RemoteRejectedError, TransientIOError


class OutboundService(ABC):
    """Sync httpx client called through a circuit breaker in a worker thread.

    Network errors, timeouts, 429 and 5xx answers raise TransientIOError.
    Other 4xx answers raise RemoteRejectedError and do not count against
    the breaker. An open circuit raises CircuitOpenError.
    """

    name: str = "outbound"

    def __init__(
        self,
        timeout: float,
        client: Optional[httpx.Client] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self.breaker = breaker or make_breaker(self.name, exclude=[RemoteRejectedError])

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether the integration has everything it needs to run."""
        pass

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await asyncio.to_thread(self.breaker.call, self._request_sync, method, url, **kwargs)
        except pybreaker.CircuitBreakerError as e:
            # The tripping call surfaces as CircuitBreakerError too; keep the original cause.
            cause = e.__cause__ or e.__context__
            if isinstance(cause, (TransientIOError, RemoteRejectedError)):
                raise cause from None
            raise CircuitOpenError(f"Circuit open for {self.name}", {"service": self.name}) from e

    def _request_sync(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientIOError(f"{self.name} request timed out", {"url": url}) from e
        except httpx.HTTPError as e:
            raise TransientIOError(f"{self.name} request failed: {e}", {"url": url}) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientIOError(
                f"{self.name} returned HTTP {response.status_code}",
                {"url": url, "status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise RemoteRejectedError(
                f"{self.name} rejected request with HTTP {response.status_code}",
                {"url": url, "status_code": response.status_code, "body": response.text[:500]},
            )
        return response

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
            logger.debug(f"Closed HTTP client for {self.name}")
