"""Deployment performance and CI cost tracking.

Tracks a deployment's phases against per-phase thresholds, estimates the
CI cost of each phase and pipeline job from a per-minute rate table,
samples process resources into capped ring buffers and maintains rolling
baselines for dashboarding.

Example:
    >>> tracker = PerformanceTracker(settings)
    >>> await tracker.start_tracking("deploy-abc", "prod", {"version": "1.4.0"})
    >>> await tracker.track_phase("build", build_started, build_finished)
    >>> await tracker.track_phase("deploy", deploy_started, deploy_finished)
    >>> record = await tracker.complete_tracking("completed")
    >>> record.parallel_efficiency
"""
import asyncio
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import psutil
from loguru import logger

from src.sentinel.core.clock import Clock, SystemClock, elapsed_ms, from_iso, to_iso
from src.sentinel.core.config import Settings
from src.sentinel.core.persistence import JsonStateStore
from src.sentinel.monitoring.alerts import Alert, AlertLog
from src.sentinel.monitoring.metrics import PHASE_DURATION, RESOURCE_USAGE

PHASES = ("build", "test", "security-scan", "deploy", "health-check", "verification")
PERFORMANCE_ALERTS_MAX = 100


@dataclass
class PerformanceConfig:
    """Thresholds and rates for performance tracking.

    Phase thresholds are in seconds, resource thresholds in percent as
    (warning, critical), cost rates in USD per minute.
    """
    phase_thresholds: Dict[str, float] = field(default_factory=lambda: {
        "build": 300,
        "test": 180,
        "security-scan": 120,
        "deploy": 240,
        "health-check": 60,
        "verification": 90,
    })

    resource_thresholds: Dict[str, Tuple[float, float]] = field(default_factory=lambda: {
        "cpu": (80.0, 95.0),
        "memory": (85.0, 95.0),
        "disk": (80.0, 90.0),
    })

    resource_samples: Dict[str, int] = field(default_factory=lambda: {
        "cpu": 100,
        "memory": 100,
        "disk": 50,
    })

    cost_rates: Dict[str, float] = field(default_factory=lambda: {
        "github-runner": 0.008,
        "container-build": 0.005,
        "security-scan": 0.003,
        "deployment": 0.002,
    })

    phase_job_types: Dict[str, str] = field(default_factory=lambda: {
        "build": "container-build",
        "security-scan": "security-scan",
        "deploy": "deployment",
    })

    def get_rate(self, job_type: str) -> float:
        """Per-minute rate for a job type, falling back to the generic runner rate."""
        return self.cost_rates.get(job_type, self.cost_rates["github-runner"])

    def phase_rate(self, phase: str) -> float:
        return self.get_rate(self.phase_job_types.get(phase, "github-runner"))


@dataclass
class PhaseRecord:
    phase: str
    start_time: datetime
    end_time: datetime
    duration_ms: int
    threshold_ms: Optional[int]
    exceeds_threshold: bool
    estimated_cost: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "duration_ms": self.duration_ms,
            "threshold_ms": self.threshold_ms,
            "exceeds_threshold": self.exceeds_threshold,
            "estimated_cost": self.estimated_cost,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhaseRecord":
        return cls(
            phase=data["phase"],
            start_time=from_iso(data["start_time"]),
            end_time=from_iso(data["end_time"]),
            duration_ms=int(data["duration_ms"]),
            threshold_ms=data.get("threshold_ms"),
            exceeds_threshold=bool(data.get("exceeds_threshold", False)),
            estimated_cost=float(data.get("estimated_cost", 0.0)),
            metadata=data.get("metadata") or {},
        )


@dataclass
class DeploymentPerformance:
    """Performance record of one tracked deployment."""
    id: str
    environment: str
    start_time: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    phases: Dict[str, PhaseRecord] = field(default_factory=dict)
    status: str = "in_progress"
    end_time: Optional[datetime] = None
    total_duration_ms: Optional[int] = None
    estimated_cost: float = 0.0
    parallel_efficiency: Optional[float] = None
    exceeds_total_threshold: bool = False
    low_parallelism: bool = False
    resource_samples: Dict[str, List[float]] = field(default_factory=lambda: {"cpu": [], "memory": []})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "environment": self.environment,
            "timestamp": to_iso(self.start_time),
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "total_duration_ms": self.total_duration_ms,
            "phases": {name: p.to_dict() for name, p in self.phases.items()},
            "metadata": self.metadata,
            "status": self.status,
            "estimated_cost": self.estimated_cost,
            "parallel_efficiency": self.parallel_efficiency,
            "exceeds_total_threshold": self.exceeds_total_threshold,
            "low_parallelism": self.low_parallelism,
            "resource_samples": self.resource_samples,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentPerformance":
        return cls(
            id=data["id"],
            environment=data.get("environment", "unknown"),
            start_time=from_iso(data["start_time"]),
            metadata=data.get("metadata") or {},
            phases={k: PhaseRecord.from_dict(v) for k, v in (data.get("phases") or {}).items()},
            status=data.get("status", "in_progress"),
            end_time=from_iso(data.get("end_time")),
            total_duration_ms=data.get("total_duration_ms"),
            estimated_cost=float(data.get("estimated_cost", 0.0)),
            parallel_efficiency=data.get("parallel_efficiency"),
            exceeds_total_threshold=bool(data.get("exceeds_total_threshold", False)),
            low_parallelism=bool(data.get("low_parallelism", False)),
            resource_samples=data.get("resource_samples") or {"cpu": [], "memory": []},
        )


@dataclass
class PipelineRecord:
    id: str
    type: str
    timestamp: datetime
    duration_ms: int
    jobs: List[Dict[str, Any]]
    parallel_jobs: int
    total_jobs: int
    failed_jobs: int
    costs: Dict[str, float]
    queue_time_ms: int = 0
    execution_time_ms: int = 0
    parallel_efficiency: float = 0.0
    environment: Optional[str] = None
    branch: Optional[str] = None
    triggered_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "timestamp": to_iso(self.timestamp),
            "duration_ms": self.duration_ms,
            "jobs": self.jobs,
            "parallel_jobs": self.parallel_jobs,
            "total_jobs": self.total_jobs,
            "failed_jobs": self.failed_jobs,
            "costs": self.costs,
            "queue_time_ms": self.queue_time_ms,
            "execution_time_ms": self.execution_time_ms,
            "parallel_efficiency": self.parallel_efficiency,
            "environment": self.environment,
            "branch": self.branch,
            "triggered_by": self.triggered_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineRecord":
        return cls(
            id=data["id"],
            type=data.get("type", "ci-cd"),
            timestamp=from_iso(data["timestamp"]),
            duration_ms=int(data.get("duration_ms", 0)),
            jobs=list(data.get("jobs") or []),
            parallel_jobs=int(data.get("parallel_jobs", 0)),
            total_jobs=int(data.get("total_jobs", 0)),
            failed_jobs=int(data.get("failed_jobs", 0)),
            costs=dict(data.get("costs") or {"total": 0.0}),
            queue_time_ms=int(data.get("queue_time_ms", 0)),
            execution_time_ms=int(data.get("execution_time_ms", 0)),
            parallel_efficiency=float(data.get("parallel_efficiency", 0.0)),
            environment=data.get("environment"),
            branch=data.get("branch"),
            triggered_by=data.get("triggered_by"),
        )


@dataclass
class PerformanceSample:
    timestamp: datetime
    resource: str
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": to_iso(self.timestamp), "resource": self.resource, "value": self.value}


class ResourceBuffer:
    """Fixed-size ring buffer of samples with a moving-average baseline."""

    def __init__(self, resource: str, capacity: int, baseline_window: int):
        self.resource = resource
        self.baseline_window = baseline_window
        self.samples: Deque[PerformanceSample] = deque(maxlen=capacity)
        self.baseline: Optional[float] = None

    def add(self, sample: PerformanceSample) -> None:
        self.samples.append(sample)
        recent = list(self.samples)[-self.baseline_window:]
        self.baseline = sum(s.value for s in recent) / len(recent)

    @property
    def latest(self) -> Optional[PerformanceSample]:
        return self.samples[-1] if self.samples else None

    def trend(self, n: int = 20) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in list(self.samples)[-n:]]


class CostCalculator:
    """Estimates CI cost from durations and the per-minute rate table."""

    def __init__(self, config: PerformanceConfig):
        self.config = config

    def phase_cost(self, phase: str, duration_ms: int) -> float:
        return (duration_ms / 60000) * self.config.phase_rate(phase)

    def pipeline_costs(self, jobs: List[Dict[str, Any]]) -> Dict[str, float]:
        """Cost per job type plus a ``total``.

        Args:
            jobs: Job dicts with ``type`` and ``duration_ms``

        Returns:
            Mapping of job type to USD, including ``total``
        """
        costs: Dict[str, float] = {"total": 0.0}
        for job in jobs:
            job_type = job.get("type") or "github-runner"
            cost = (float(job.get("duration_ms") or 0) / 60000) * self.config.get_rate(job_type)
            costs[job_type] = costs.get(job_type, 0.0) + cost
            costs["total"] += cost
        return costs


def default_resource_sampler(memory_limit: Optional[int] = None, disk_path: str = "/") -> Dict[str, float]:
    """Current cpu / memory / disk usage in percent. Disk is omitted when unavailable."""
    readings = {"cpu": float(psutil.cpu_percent(interval=None))}
    if memory_limit:
        readings["memory"] = psutil.Process().memory_info().rss / memory_limit * 100
    else:
        readings["memory"] = float(psutil.virtual_memory().percent)
    try:
        readings["disk"] = float(psutil.disk_usage(disk_path).percent)
    except OSError as e:
        logger.debug(f"Disk usage unavailable for {disk_path}: {e}")
    return readings


class PerformanceTracker:
    """Main interface for deployment performance, pipelines, resources and costs."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[JsonStateStore] = None,
        clock: Optional[Clock] = None,
        config: Optional[PerformanceConfig] = None,
        sampler: Optional[Callable[[], Dict[str, float]]] = None,
    ):
        self.settings = settings
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or PerformanceConfig()
        self.costs = CostCalculator(self.config)
        self.sampler = sampler or (
            lambda: default_resource_sampler(settings.CONTAINER_MEMORY_LIMIT, "/")
        )
        self.current: Optional[DeploymentPerformance] = None
        self.deployments: List[DeploymentPerformance] = []
        self.pipelines: List[PipelineRecord] = []
        self.resources: Dict[str, ResourceBuffer] = {
            name: ResourceBuffer(name, capacity, settings.BASELINE_WINDOW)
            for name, capacity in self.config.resource_samples.items()
        }
        self.baselines: Dict[str, Dict[str, Any]] = {"deployment": {}, "pipeline": {}}
        self.alerts = AlertLog(capacity=PERFORMANCE_ALERTS_MAX, prefix="perf")
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current.to_dict() if self.current else None,
            "deployments": [d.to_dict() for d in self.deployments],
            "pipelines": [p.to_dict() for p in self.pipelines],
            "resources": {
                name: [s.to_dict() for s in buf.samples] for name, buf in self.resources.items()
            },
            "baselines": self.baselines,
            "alerts": self.alerts.to_list(),
        }

    async def load(self) -> bool:
        if self.store is None:
            return False
        document = await self.store.load()
        if not document:
            return False
        try:
            current = document.get("current")
            self.current = DeploymentPerformance.from_dict(current) if current else None
            self.deployments = [DeploymentPerformance.from_dict(d) for d in document.get("deployments", [])]
            self.pipelines = [PipelineRecord.from_dict(p) for p in document.get("pipelines", [])]
            for name, samples in (document.get("resources") or {}).items():
                buffer = self.resources.get(name)
                if buffer is None:
                    continue
                for raw in samples:
                    buffer.add(PerformanceSample(from_iso(raw["timestamp"]), name, float(raw["value"])))
            baselines = document.get("baselines") or {}
            self.baselines = {
                "deployment": dict(baselines.get("deployment") or {}),
                "pipeline": dict(baselines.get("pipeline") or {}),
            }
            self.alerts.load(document.get("alerts", []))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"⚠️  Discarding unreadable performance metrics: {e}")
            return False
        logger.info(
            f"Loaded performance metrics: {len(self.deployments)} deployments, {len(self.pipelines)} pipelines"
        )
        return True

    async def _persist(self) -> None:
        self.cleanup_old_metrics()
        if self.store is not None:
            await self.store.save(self.to_dict())

    def cleanup_old_metrics(self) -> None:
        """Apply the retention window and the entry cap."""
        cutoff = self.clock.now() - timedelta(days=self.settings.METRICS_RETENTION_DAYS)
        cap = self.settings.METRICS_MAX_ENTRIES
        self.deployments = [d for d in self.deployments if d.start_time > cutoff][:cap]
        self.pipelines = [p for p in self.pipelines if p.timestamp > cutoff][:cap]
        for buffer in self.resources.values():
            while buffer.samples and buffer.samples[0].timestamp <= cutoff:
                buffer.samples.popleft()

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    async def start_tracking(
        self,
        deployment_id: str,
        environment: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DeploymentPerformance:
        async with self._lock:
            if self.current is not None:
                logger.warning(
                    f"Replacing unfinished performance tracking for {self.current.id} with {deployment_id}"
                )
            record = DeploymentPerformance(
                id=deployment_id,
                environment=environment,
                start_time=self.clock.now(),
                metadata={
                    "version": "unknown",
                    "image_tag": "unknown",
                    "branch": "unknown",
                    "actor": "unknown",
                    **(metadata or {}),
                },
            )
            self.current = record
            logger.info(f"📈 Started performance tracking for deployment {deployment_id}")
            await self._persist()
            return record

    async def track_phase(
        self,
        phase: str,
        start: datetime,
        end: datetime,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[PhaseRecord]:
        """Record one deployment phase.

        Args:
            phase: Phase name (build, test, security-scan, deploy, health-check, verification)
            start: Phase start time
            end: Phase end time
            metadata: Free-form phase details

        Returns:
            The phase record, or None when no deployment is being tracked
        """
        if end < start:
            raise ValueError("Phase end time is before its start time")
        async with self._lock:
            if self.current is None:
                logger.warning(f"No active deployment to track phase: {phase}")
                return None
            duration = elapsed_ms(start, end)
            threshold_s = self.config.phase_thresholds.get(phase)
            threshold_ms = int(threshold_s * 1000) if threshold_s is not None else None
            record = PhaseRecord(
                phase=phase,
                start_time=start,
                end_time=end,
                duration_ms=duration,
                threshold_ms=threshold_ms,
                exceeds_threshold=threshold_ms is not None and duration > threshold_ms,
                estimated_cost=self.costs.phase_cost(phase, duration),
                metadata=dict(metadata or {}),
            )
            self.current.phases[phase] = record
            self.current.estimated_cost = sum(p.estimated_cost for p in self.current.phases.values())
            PHASE_DURATION.labels(phase=phase).observe(duration / 1000)
            logger.info(f"Tracked deployment phase {phase}: {duration}ms")

            if record.exceeds_threshold:
                self._alert(
                    "phase_threshold_exceeded",
                    "warning",
                    f"Phase {phase} took {duration}ms (threshold {threshold_ms}ms)",
                    {"phase": phase, "duration_ms": duration, "threshold_ms": threshold_ms,
                     "deployment_id": self.current.id},
                )
            await self._persist()
            return record

    async def complete_tracking(
        self,
        status: str = "completed",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[DeploymentPerformance]:
        """Finalize the tracked deployment and refresh its environment's baseline."""
        async with self._lock:
            record = self.current
            if record is None:
                logger.warning("No active deployment to complete")
                return None
            record.end_time = self.clock.now()
            record.total_duration_ms = elapsed_ms(record.start_time, record.end_time)
            record.status = status
            if metadata:
                record.metadata["completion"] = dict(metadata)

            phase_total = sum(p.duration_ms for p in record.phases.values())
            record.parallel_efficiency = record.total_duration_ms / phase_total if phase_total > 0 else 0.0
            total_threshold_ms = self.settings.PIPELINE_TOTAL_THRESHOLD_SECONDS * 1000
            record.exceeds_total_threshold = record.total_duration_ms > total_threshold_ms
            record.low_parallelism = (
                phase_total > 0 and record.parallel_efficiency < self.settings.PARALLELISM_THRESHOLD
            )

            self.deployments.insert(0, record)
            self.current = None
            self._update_deployment_baseline(record.environment)

            if record.exceeds_total_threshold:
                self._alert(
                    "deployment_duration_exceeded",
                    "warning",
                    f"Deployment {record.id} took {record.total_duration_ms}ms",
                    {"duration_ms": record.total_duration_ms, "threshold_ms": total_threshold_ms,
                     "deployment_id": record.id},
                )
            if record.low_parallelism:
                self._alert(
                    "low_parallelism",
                    "warning",
                    f"Deployment {record.id} parallel efficiency {record.parallel_efficiency:.2f}",
                    {"efficiency": record.parallel_efficiency, "threshold": self.settings.PARALLELISM_THRESHOLD,
                     "deployment_id": record.id},
                )

            logger.info(f"📉 Completed performance tracking for {record.id} ({record.total_duration_ms}ms)")
            await self._persist()
            return record

    def _update_deployment_baseline(self, environment: str) -> None:
        recent = [
            d for d in self.deployments
            if d.status == "completed" and d.environment == environment
        ][: self.settings.BASELINE_WINDOW]
        if not recent:
            return
        self.baselines["deployment"][environment] = {
            "environment": environment,
            "average_duration_ms": sum(d.total_duration_ms or 0 for d in recent) / len(recent),
            "average_efficiency": sum(d.parallel_efficiency or 0 for d in recent) / len(recent),
            "sample_size": len(recent),
            "last_updated": to_iso(self.clock.now()),
        }

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def track_pipeline(self, data: Dict[str, Any]) -> PipelineRecord:
        """Record a CI pipeline run and its per-job-type cost."""
        jobs = list(data.get("jobs") or [])
        duration = int(data.get("duration_ms") or 0)
        parallel_jobs = int(data.get("parallel_jobs") or 0)
        total_jobs = int(data.get("total_jobs") or len(jobs))
        async with self._lock:
            record = PipelineRecord(
                id=data.get("id") or f"pipeline-{uuid.uuid4().hex[:12]}",
                type=data.get("type") or "ci-cd",
                timestamp=self.clock.now(),
                duration_ms=duration,
                jobs=jobs,
                parallel_jobs=parallel_jobs,
                total_jobs=total_jobs,
                failed_jobs=int(data.get("failed_jobs") or 0),
                costs=self.costs.pipeline_costs(jobs),
                queue_time_ms=int(data.get("queue_time_ms") or 0),
                execution_time_ms=int(data.get("execution_time_ms") or duration),
                parallel_efficiency=(total_jobs / parallel_jobs) if parallel_jobs > 0 else 0.0,
                environment=data.get("environment"),
                branch=data.get("branch"),
                triggered_by=data.get("triggered_by"),
            )
            self.pipelines.insert(0, record)
            self._update_pipeline_baseline(record.type)
            logger.info(f"Tracked pipeline {record.id}: {duration}ms, ${record.costs['total']:.4f}")
            await self._persist()
            return record

    def _update_pipeline_baseline(self, pipeline_type: str) -> None:
        recent = [p for p in self.pipelines if p.type == pipeline_type][: self.settings.PIPELINE_BASELINE_WINDOW]
        if not recent:
            return
        self.baselines["pipeline"][pipeline_type] = {
            "type": pipeline_type,
            "average_duration_ms": sum(p.duration_ms for p in recent) / len(recent),
            "average_cost": sum(p.costs.get("total", 0.0) for p in recent) / len(recent),
            "sample_size": len(recent),
            "last_updated": to_iso(self.clock.now()),
        }

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def sample_resources(self) -> Dict[str, float]:
        """Take one sample per resource; threshold breaches raise alerts."""
        readings = await asyncio.to_thread(self.sampler)
        async with self._lock:
            for resource, value in readings.items():
                self._record_sample(resource, value)
            await self._persist()
        return readings

    async def record_sample(self, resource: str, value: float) -> None:
        async with self._lock:
            self._record_sample(resource, value)
            await self._persist()

    def _record_sample(self, resource: str, value: float) -> None:
        buffer = self.resources.get(resource)
        if buffer is None:
            buffer = self.resources[resource] = ResourceBuffer(resource, 50, self.settings.BASELINE_WINDOW)
        buffer.add(PerformanceSample(self.clock.now(), resource, value))
        RESOURCE_USAGE.labels(resource=resource).set(value)
        if self.current is not None and resource in self.current.resource_samples:
            self.current.resource_samples[resource].append(value)
        self._check_resource_thresholds(resource, value)

    def _check_resource_thresholds(self, resource: str, value: float) -> None:
        thresholds = self.config.resource_thresholds.get(resource)
        if thresholds is None:
            return
        warning, critical = thresholds
        if value > critical:
            self._alert(
                "resource_critical",
                "critical",
                f"{resource} usage {value:.1f}% exceeds {critical}%",
                {"resource": resource, "value": value, "threshold": critical},
            )
        elif value > warning:
            self._alert(
                "resource_warning",
                "warning",
                f"{resource} usage {value:.1f}% exceeds {warning}%",
                {"resource": resource, "value": value, "threshold": warning},
            )

    def latest_usage(self, resource: str) -> Optional[float]:
        buffer = self.resources.get(resource)
        if buffer is None or buffer.latest is None:
            return None
        return buffer.latest.value

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def _alert(self, alert_type: str, severity: str, message: str, data: Dict[str, Any]) -> Alert:
        return self.alerts.add(alert_type, self.clock.now(), severity=severity, message=message, data=data)

    async def add_alert(self, alert_type: str, data: Dict[str, Any], severity: str = "warning") -> Alert:
        async with self._lock:
            alert = self._alert(alert_type, severity, data.get("message", alert_type), data)
            await self._persist()
            return alert

    async def acknowledge_alert(self, alert_id: str) -> bool:
        async with self._lock:
            found = self.alerts.acknowledge(alert_id, self.clock.now())
            if found:
                await self._persist()
            return found

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def get_performance_dashboard(self) -> Dict[str, Any]:
        now = self.clock.now()
        day_ago = now - timedelta(days=1)
        deployments_today = [d for d in self.deployments if d.start_time > day_ago]
        pipelines_today = [p for p in self.pipelines if p.timestamp > day_ago]
        active_alerts = self.alerts.active()

        def average(values: List[float]) -> float:
            return sum(values) / len(values) if values else 0.0

        return {
            "timestamp": to_iso(now),
            "summary": {
                "active_deployment": self.current.id if self.current else None,
                "deployments_today": len(deployments_today),
                "pipelines_today": len(pipelines_today),
                "active_alerts": len(active_alerts),
            },
            "deployments": {
                "recent": [d.to_dict() for d in deployments_today[:10]],
                "average_duration_ms": average([d.total_duration_ms or 0 for d in deployments_today]),
                "success_rate": (
                    sum(1 for d in deployments_today if d.status == "completed") / len(deployments_today) * 100
                    if deployments_today else 0.0
                ),
            },
            "pipelines": {
                "recent": [p.to_dict() for p in pipelines_today[:10]],
                "average_duration_ms": average([p.duration_ms for p in pipelines_today]),
                "total_cost": sum(p.costs.get("total", 0.0) for p in pipelines_today),
            },
            "resources": {
                "current": {
                    name: buf.latest.to_dict() if buf.latest else None
                    for name, buf in self.resources.items()
                },
                "trends": {name: buf.trend() for name, buf in self.resources.items()},
                "baselines": {name: buf.baseline for name, buf in self.resources.items()},
            },
            "baselines": self.baselines,
            "alerts": [a.to_dict() for a in active_alerts[:10]],
        }
