"""Pydantic schemas for derived reports and request/response validation."""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CheckStatus = Literal["ok", "warning", "critical"]

SEVERITY_RANK = {"ok": 0, "warning": 1, "critical": 2}


def max_severity(*statuses: str) -> str:
    """Highest of the given statuses, ``ok < warning < critical``."""
    return max(statuses, key=SEVERITY_RANK.__getitem__, default="ok")


class QueueMetricsSnapshot(BaseModel):
    """Point-in-time counts of the enrichment queue."""

    pending: int = Field(..., description="Jobs waiting to be processed")
    processing: int = Field(..., description="Jobs currently in flight")
    completed_24h: int = Field(..., description="Jobs completed in the trailing window")
    failed_24h: int = Field(..., description="Jobs failed in the trailing window")
    stuck: int = Field(..., description="In-flight jobs past the staleness threshold")
    computed_at: str = Field(..., description="Computation timestamp")

    @property
    def success_rate(self) -> float:
        """Completed share of terminal jobs in the window, in percent."""
        settled = self.completed_24h + self.failed_24h
        if settled == 0:
            return 100.0
        return self.completed_24h / settled * 100


class DatabaseCheck(BaseModel):
    """Database round trip probe."""

    kind: Literal["database"] = "database"
    status: CheckStatus
    latency_ms: Optional[float] = Field(None, description="Probe latency")
    error: Optional[str] = Field(None, description="Probe error")


class QueueCheck(BaseModel):
    """Queue metrics with the derived success rate."""

    kind: Literal["queue"] = "queue"
    status: CheckStatus
    metrics: Optional[QueueMetricsSnapshot] = None
    success_rate: Optional[float] = Field(None, description="Success rate in percent")
    error: Optional[str] = None


class CredentialCheck(BaseModel):
    """Amazon credential expiry countdown."""

    kind: Literal["amazon_credentials"] = "amazon_credentials"
    status: CheckStatus
    expires_at: Optional[str] = None
    days_until_expiry: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None


class RecentErrorsCheck(BaseModel):
    """Failures over a trailing window."""

    kind: Literal["recent_errors"] = "recent_errors"
    status: CheckStatus
    count: Optional[int] = None
    window_minutes: int
    error: Optional[str] = None


class HealthChecks(BaseModel):
    """Per-check results composing a health report."""

    database: DatabaseCheck
    queue: QueueCheck
    amazon_credentials: Optional[CredentialCheck] = None
    recent_errors: RecentErrorsCheck


class HealthSummary(BaseModel):
    """Condensed view of a health report."""

    overall_status: CheckStatus
    queue_health: CheckStatus
    stuck_jobs: Optional[int] = None
    success_rate_24h: Optional[float] = None
    orphaned_products: Optional[int] = None


class SystemHealthReport(BaseModel):
    """Composite health verdict."""

    status: CheckStatus
    timestamp: str
    checks: HealthChecks
    recommendations: List[str] = Field(default_factory=list)
    summary: HealthSummary


class HealthResponse(BaseModel):
    """Liveness response."""

    ok: bool = Field(..., description="Service health status")
    db: str = Field(..., description="Database status")
    version: str = Field(..., description="Application version")


class EnrichRequest(BaseModel):
    """Request to enrich one owner with one or more capabilities."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    owner_id: str = Field(..., description="Product or analysis id")
    enrichment_types: List[str] = Field(..., min_length=1, description="Capabilities")
    options: Dict[str, object] = Field(default_factory=dict, description="Options")


class TypeResult(BaseModel):
    """Outcome of one enrichment type within a batch."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    status: str
    error: Optional[str] = None


class EnrichResponse(BaseModel):
    """Aggregate outcome of an enrichment batch."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    success_count: int
    total_count: int
    per_type: Dict[str, TypeResult] = Field(default_factory=dict)
    error: Optional[str] = None


class JobResponse(BaseModel):
    """Enrichment job envelope."""

    id: str
    owner_id: str
    enrichment_type: str
    status: str
    created_at: str
    updated_at: str
    error_message: Optional[str] = None


class ReapResponse(BaseModel):
    """Outcome of one reaper sweep."""

    reclaimed: int
    job_ids: List[str] = Field(default_factory=list)


class CreateAlertRequest(BaseModel):
    """Manual alert trigger."""

    severity: Literal["info", "warning", "critical"] = "info"
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    alert_type: Optional[str] = None


class AlertResponse(BaseModel):
    """Stored alert event."""

    id: int
    severity: str
    title: str
    message: str
    alert_type: Optional[str] = None
    created_at: str


class Notification(BaseModel):
    """Alert routed to a presentation channel."""

    alert_id: int
    severity: str
    title: str
    message: str
    channel: Literal["persistent", "standard", "transient"]
    dwell_ms: int
