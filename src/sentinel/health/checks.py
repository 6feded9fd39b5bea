"""Dependency checks.

Every check is an async callable returning ``(status, details)`` or
raising; the monitor wraps each one in its own timeout.
"""
import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import psutil
from loguru import logger

from src.sentinel.core.config import Settings

CheckReading = Tuple[bool, Dict[str, Any]]
CheckFn = Callable[[], Awaitable[CheckReading]]


@dataclass
class DependencyCheck:
    """A named check function with its criticality and timeout."""
    name: str
    run: CheckFn
    critical: bool
    timeout: float


class ThresholdExceeded(Exception):
    """A resource check succeeded but the reading is over its threshold."""

    def __init__(self, message: str, details: Dict[str, Any]):
        super().__init__(message)
        self.details = details


async def check_http(url: str, timeout: float) -> CheckReading:
    """GET an HTTP endpoint; any non-error status counts as reachable."""
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(url)
    if response.status_code >= 400:
        raise RuntimeError(f"HTTP {response.status_code} from {url}")
    return True, {"status_code": response.status_code}


async def check_tcp(host: str, port: int, timeout: float) -> CheckReading:
    """Open and close a TCP connection."""
    reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True, {"host": host, "port": port}


def check_filesystem_writable(candidate_paths: List[str]) -> CheckReading:
    """Write and delete a scoped marker file in the first usable candidate path."""
    accessible = False
    for candidate in candidate_paths:
        path = Path(candidate)
        if not path.exists():
            continue
        accessible = True
        marker = path / f".health-check-{int(time.time() * 1000)}-{os.getpid()}"
        try:
            marker.write_text("ok")
            marker.unlink()
            return True, {"accessible": True, "writable": True, "path": str(path)}
        except OSError as e:
            logger.warning(f"Cannot write to {path}: {e}")

    if not accessible:
        raise RuntimeError("No accessible file system paths found")
    raise RuntimeError("File system is read-only")


def check_memory(limit_bytes: Optional[int], threshold: float) -> CheckReading:
    """Compare process memory with the container limit, or with system memory when no limit is set."""
    process = psutil.Process()
    info = process.memory_info()
    rss_mb = round(info.rss / 1024 / 1024, 1)

    if limit_bytes:
        percent = (info.rss / limit_bytes) * 100
        basis = "container_limit"
    else:
        percent = process.memory_percent()
        basis = "system_memory"

    details = {
        "usage": {
            "rss_mb": rss_mb,
            "vms_mb": round(info.vms / 1024 / 1024, 1),
            "percent": round(percent, 2),
            "basis": basis,
        },
        "threshold": threshold,
    }
    if percent >= threshold:
        raise ThresholdExceeded(
            f"Memory usage {percent:.1f}% exceeds threshold {threshold}%", details
        )
    return True, details


def check_disk(path: str, threshold: float) -> CheckReading:
    """Disk usage is best-effort: an unavailable reading passes as skipped."""
    try:
        usage = psutil.disk_usage(path)
    except (OSError, NotImplementedError) as e:
        logger.warning(f"Disk usage check not available: {e}")
        return True, {"skipped": True, "threshold": threshold}

    details = {
        "usage": {
            "percent": usage.percent,
            "used_gb": round(usage.used / 1024 ** 3, 2),
            "free_gb": round(usage.free / 1024 ** 3, 2),
        },
        "threshold": threshold,
    }
    if usage.percent >= threshold:
        raise ThresholdExceeded(
            f"Disk usage {usage.percent}% exceeds threshold {threshold}%", details
        )
    return True, details


def build_default_checks(settings: Settings) -> List[DependencyCheck]:
    """The dependency set watched by the orchestrator."""
    network_timeout = settings.NETWORK_TIMEOUT_SECONDS
    aggregator_url = (
        f"http://{settings.STATUS_AGGREGATOR_HOST}:{settings.STATUS_AGGREGATOR_PORT}"
        f"{settings.STATUS_AGGREGATOR_PATH}"
    )

    async def status_aggregator() -> CheckReading:
        return await check_http(aggregator_url, network_timeout)

    async def filesystem() -> CheckReading:
        return await asyncio.to_thread(check_filesystem_writable, settings.FILESYSTEM_CHECK_PATHS)

    async def game_server() -> CheckReading:
        return await check_tcp(settings.GAME_SERVER_HOST, settings.GAME_SERVER_PORT, network_timeout)

    async def notification_channels() -> CheckReading:
        # Unconfigured channels are not applicable, never failures
        channels = {
            "webhook": settings.NOTIFICATION_WEBHOOK_URL,
            "slack": settings.SLACK_WEBHOOK_URL,
            "discord": settings.DISCORD_WEBHOOK_URL,
        }
        return True, {
            "services": {
                name: "configured" if url else "n/a" for name, url in channels.items()
            }
        }

    async def memory() -> CheckReading:
        return check_memory(settings.CONTAINER_MEMORY_LIMIT, settings.MEMORY_THRESHOLD_PERCENT)

    async def disk() -> CheckReading:
        return await asyncio.to_thread(check_disk, "/", settings.DISK_THRESHOLD_PERCENT)

    async def network() -> CheckReading:
        return await check_tcp("127.0.0.1", settings.PORT, settings.LOOPBACK_TIMEOUT_SECONDS)

    return [
        DependencyCheck("status_aggregator", status_aggregator, critical=False, timeout=network_timeout),
        DependencyCheck("filesystem", filesystem, critical=True, timeout=settings.FILESYSTEM_TIMEOUT_SECONDS),
        DependencyCheck("game_server", game_server, critical=False, timeout=network_timeout),
        DependencyCheck("notification_channels", notification_channels, critical=False, timeout=1.0),
        DependencyCheck("memory", memory, critical=True, timeout=settings.FILESYSTEM_TIMEOUT_SECONDS),
        DependencyCheck("disk", disk, critical=False, timeout=2.0),
        DependencyCheck("network", network, critical=True, timeout=settings.LOOPBACK_TIMEOUT_SECONDS),
    ]
