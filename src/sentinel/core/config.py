from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "deploy-sentinel"
    VERSION: str = "0.1.0"
    API_PREFIX: str = "/api"
    PORT: int = 8080

    # Environment
    ENV: str = "dev"  # dev, staging, prod
    DEBUG: bool = False

    # Deployment metadata (injected by the CI pipeline)
    APP_VERSION: str = "1.0.0"
    IMAGE_TAG: str = "unknown"
    BUILD_TIMESTAMP: str = "unknown"
    COMMIT_SHA: str = "unknown"
    BRANCH: str = "unknown"
    ACTOR: str = "unknown"
    WORKFLOW_RUN_ID: str = "unknown"
    DEPLOYMENT_SLOT: str = "unknown"
    DEPLOYED_AT: Optional[str] = None
    TRACK_SELF_DEPLOYMENT: bool = True
    DEPLOYMENT_GRACE_PERIOD_SECONDS: float = 10.0

    # Dependency checks
    STATUS_AGGREGATOR_HOST: str = "127.0.0.1"
    STATUS_AGGREGATOR_PORT: int = 3001
    STATUS_AGGREGATOR_PATH: str = "/api/status-page/services"
    GAME_SERVER_HOST: str = "127.0.0.1"
    GAME_SERVER_PORT: int = 25565
    FILESYSTEM_CHECK_PATHS: List[str] = ["/opt/monitoring", "/app", "/tmp"]
    CONTAINER_MEMORY_LIMIT: Optional[int] = None  # bytes
    MEMORY_THRESHOLD_PERCENT: float = 90.0
    DISK_THRESHOLD_PERCENT: float = 85.0
    NETWORK_TIMEOUT_SECONDS: float = 5.0
    FILESYSTEM_TIMEOUT_SECONDS: float = 1.0
    LOOPBACK_TIMEOUT_SECONDS: float = 2.0
    READINESS_MIN_HEALTHY_PERCENT: float = 75.0

    # Automatic rollback triggers
    ROLLBACK_HEALTH_FAILURE_THRESHOLD: int = 3
    ROLLBACK_RESPONSE_TIME_THRESHOLD_MS: float = 5000.0
    ROLLBACK_TRIGGER_WINDOW: int = 10
    DEPLOYMENT_HISTORY_MAX: int = 100

    # Rollback controller
    ROLLBACK_COOLDOWN_SECONDS: float = 600.0
    ROLLBACK_MAX_PER_HOUR: int = 3
    ROLLBACK_HISTORY_MAX: int = 50
    ROLLBACK_VALIDATION_TIMEOUT_SECONDS: float = 300.0
    ROLLBACK_VALIDATION_INTERVAL_SECONDS: float = 15.0
    CANARY_STEPS: List[int] = [100, 75, 50, 25, 0]
    CANARY_STEP_WAIT_SECONDS: float = 30.0
    ROLLBACK_TARGET_URL: str = "http://127.0.0.1:8080"
    ROLLBACK_TARGET_URLS: Dict[str, str] = {}
    ROLLBACK_RATE_LIMIT: str = "10/minute"

    # CI/CD repository dispatch
    CI_API_URL: str = "https://api.github.com"
    CI_REPO_OWNER: str = ""
    CI_REPO_NAME: str = ""
    CI_TOKEN: Optional[str] = None
    CI_TIMEOUT_SECONDS: float = 10.0
    CI_MAX_ATTEMPTS: int = 3

    # Traffic router (canary / blue-green)
    TRAFFIC_ROUTER_URL: Optional[str] = None
    TRAFFIC_ROUTER_TOKEN: Optional[str] = None
    TRAFFIC_TIMEOUT_SECONDS: float = 10.0

    # Notifications
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None
    SLACK_WEBHOOK_URL: Optional[str] = None
    SLACK_CHANNEL: str = "#deployments"
    SLACK_USERNAME: str = "Deployment Bot"
    DISCORD_WEBHOOK_URL: Optional[str] = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0
    NOTIFICATION_MAX_RETRIES: int = 3
    NOTIFICATION_RETRY_DELAY_SECONDS: float = 5.0
    NOTIFICATION_ITEM_DELAY_SECONDS: float = 1.0
    NOTIFICATION_FOOTER: str = "Deploy Sentinel"

    # Performance / cost tracking
    RESOURCE_SAMPLE_INTERVAL_SECONDS: float = 30.0
    PIPELINE_TOTAL_THRESHOLD_SECONDS: float = 900.0
    PARALLELISM_THRESHOLD: float = 0.7
    BASELINE_WINDOW: int = 10
    PIPELINE_BASELINE_WINDOW: int = 20
    METRICS_RETENTION_DAYS: int = 30
    METRICS_MAX_ENTRIES: int = 1000

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    HEALTH_TICK_SECONDS: float = 30.0
    DASHBOARD_TICK_SECONDS: float = 30.0
    CORRELATION_TICK_SECONDS: float = 60.0
    INTEGRATED_HEALTH_TICK_SECONDS: float = 120.0
    NOTIFICATION_SWEEP_SECONDS: float = 30.0

    # Persistence
    STATE_DIR: str = "/tmp/deploy-sentinel"

    # Tracing
    OTEL_EXPORTER_OTLP_ENDPOINT: str = "http://localhost:4317"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    def target_url_for(self, environment: str) -> str:
        """Base URL of the deployed service for a given environment."""
        return self.ROLLBACK_TARGET_URLS.get(environment, self.ROLLBACK_TARGET_URL).rstrip("/")


settings = Settings()
