"""Application settings loaded from environment variables."""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration."""

    # Server settings
    port: int = Field(default=8080, description="Server port")
    host: str = Field(default="0.0.0.0", description="Server host")

    # Database settings
    db_url: str = Field(
        default="sqlite:////app/state/enrichment.db", description="Database URL"
    )

    # Stuck-job reaping
    staleness_threshold_minutes: int = Field(
        default=10, description="Minutes after which an in-progress job is stuck"
    )
    reaper_interval_sec: int = Field(default=60, description="Reaper sweep interval")
    reaper_alert_threshold: int = Field(
        default=10, description="Reclaimed jobs in one sweep that raise an alert"
    )

    # Polling intervals
    metrics_interval_sec: int = Field(default=10, description="Queue metrics interval")
    health_interval_sec: int = Field(default=30, description="Health check interval")
    alert_poll_interval_sec: float = Field(
        default=1.0, description="Interval for picking up newly inserted alerts"
    )

    # Queue health thresholds
    stuck_warning_threshold: int = Field(
        default=0, description="Stuck job count above which the queue is degraded"
    )
    stuck_critical_threshold: int = Field(
        default=1000, description="Stuck job count above which the queue is critical"
    )
    success_rate_threshold: float = Field(
        default=90.0, description="Minimum acceptable success rate in percent"
    )
    success_rate_min_sample: int = Field(
        default=10, description="Terminal jobs needed before judging success rate"
    )
    metrics_window_hours: int = Field(
        default=24, description="Trailing window for completed/failed counts"
    )

    # Recent errors
    recent_errors_window_minutes: int = Field(
        default=60, description="Trailing window for the recent error count"
    )
    recent_errors_warning_threshold: int = Field(
        default=100, description="Recent failures above which health is degraded"
    )

    # Amazon credentials
    amazon_integration_enabled: bool = Field(
        default=True, description="Whether Amazon credentials are checked"
    )
    credential_warning_days: int = Field(
        default=7, description="Days before expiry that raise a warning"
    )

    # Alert delivery
    alert_dwell_critical_ms: int = Field(default=10000, description="Critical dwell")
    alert_dwell_warning_ms: int = Field(default=5000, description="Warning dwell")
    alert_dwell_info_ms: int = Field(default=3000, description="Info dwell")
    alert_subscriber_buffer: int = Field(
        default=100, description="Pending notifications kept per subscriber"
    )
    alert_cache_ttl_sec: int = Field(default=30, description="Alert listing cache TTL")

    # External enrichment capability
    enrichment_api_key: Optional[str] = Field(
        default=None, description="Enrichment capability API key"
    )
    enrichment_base_url: str = Field(
        default="http://localhost:54321/functions/v1",
        description="Enrichment capability base URL",
    )
    enrichment_timeout_sec: float = Field(
        default=60.0, description="Timeout for one enrichment call"
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")

    # Dry run mode
    dry_run: bool = Field(
        default=True, description="Enable dry run mode when no API key"
    )
    dry_run_fail_types: List[str] = Field(
        default_factory=list,
        description="Enrichment types that fail on purpose in dry run mode",
    )

    # Application version
    version: str = Field(default="1.0.0", description="Application version")

    model_config = {"env_file": ".env", "case_sensitive": False}

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Auto-enable dry run if no API key
        if not self.enrichment_api_key:
            self.dry_run = True


# Global settings instance
settings = Settings()
