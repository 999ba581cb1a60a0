"""System health supervision."""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from db import CredentialRepository, JobRepository, ProductRepository, probe_database
from metrics import QueueMetricsAggregator
from models import JobStatus
from schemas import (
    CredentialCheck,
    DatabaseCheck,
    HealthChecks,
    HealthSummary,
    QueueCheck,
    RecentErrorsCheck,
    SystemHealthReport,
    max_severity,
)
from settings import settings
from utils import format_timestamp, parse_timestamp


class SystemHealthSupervisor:
    """Compose independent checks into one health report.

    Every check runs even if an earlier one failed. A check that raises is
    reported as ``critical`` with its error inline; the report itself is
    always produced.
    """

    def __init__(
        self,
        db: Session,
        database_probe: Callable[[Session], float] = probe_database,
        aggregator: Optional[QueueMetricsAggregator] = None,
        amazon_enabled: Optional[bool] = None,
    ):
        self.db = db
        self.database_probe = database_probe
        self.aggregator = aggregator or QueueMetricsAggregator(db)
        self.amazon_enabled = (
            settings.amazon_integration_enabled if amazon_enabled is None else amazon_enabled
        )

    def build_report(self, now: Optional[datetime] = None) -> SystemHealthReport:
        now = now or datetime.now(timezone.utc)
        recommendations: List[str] = []

        database = self._check_database(recommendations)
        queue = self._check_queue(now, recommendations)
        orphaned = self._count_orphaned(recommendations)
        credentials = (
            self._check_credentials(now, recommendations) if self.amazon_enabled else None
        )
        recent_errors = self._check_recent_errors(now, recommendations)

        statuses = [database.status, queue.status, recent_errors.status]
        if credentials is not None:
            statuses.append(credentials.status)
        overall = max_severity(*statuses)

        logger.info(f"Health check completed. Status: {overall}")

        return SystemHealthReport(
            status=overall,
            timestamp=format_timestamp(now),
            checks=HealthChecks(
                database=database,
                queue=queue,
                amazon_credentials=credentials,
                recent_errors=recent_errors,
            ),
            recommendations=recommendations,
            summary=HealthSummary(
                overall_status=overall,
                queue_health=queue.status,
                stuck_jobs=queue.metrics.stuck if queue.metrics else None,
                success_rate_24h=queue.success_rate,
                orphaned_products=orphaned,
            ),
        )

    def _check_database(self, recommendations: List[str]) -> DatabaseCheck:
        try:
            latency = self.database_probe(self.db)
        except Exception as e:
            logger.error(f"Database probe failed: {e}")
            recommendations.append(
                f"Database probe failed ({e}). Check database connectivity."
            )
            return DatabaseCheck(status="critical", error=str(e))
        return DatabaseCheck(status="ok", latency_ms=round(latency, 2))

    def _check_queue(self, now: datetime, recommendations: List[str]) -> QueueCheck:
        try:
            snapshot = self.aggregator.compute(now)
        except Exception as e:
            logger.error(f"Queue metrics failed: {e}")
            recommendations.append(f"Queue metrics unavailable ({e}).")
            return QueueCheck(status="critical", error=str(e))

        status = "ok"
        if snapshot.stuck > settings.stuck_critical_threshold:
            status = "critical"
            recommendations.append(
                f"Critical: {snapshot.stuck} stuck jobs detected. "
                "Run the stuck-job reaper immediately."
            )
        elif snapshot.stuck > settings.stuck_warning_threshold:
            status = "warning"
            recommendations.append(
                f"Warning: {snapshot.stuck} stuck jobs detected. "
                "They will be reclaimed by the next reaper sweep."
            )

        rate = snapshot.success_rate
        settled = snapshot.completed_24h + snapshot.failed_24h
        if rate < settings.success_rate_threshold and settled > settings.success_rate_min_sample:
            status = max_severity(status, "warning")
            recommendations.append(
                f"Success rate is {rate:.1f}% "
                f"(below {settings.success_rate_threshold:.0f}% threshold)."
            )

        return QueueCheck(status=status, metrics=snapshot, success_rate=round(rate, 1))

    def _count_orphaned(self, recommendations: List[str]) -> Optional[int]:
        try:
            orphaned = ProductRepository(self.db).count_orphaned()
        except Exception as e:
            logger.error(f"Orphaned product count failed: {e}")
            return None
        if orphaned:
            recommendations.append(
                f"{orphaned} orphaned products detected (enriching without queue jobs)."
            )
        return orphaned

    def _check_credentials(
        self, now: datetime, recommendations: List[str]
    ) -> CredentialCheck:
        try:
            credential = CredentialRepository(self.db).latest_active()
        except Exception as e:
            logger.error(f"Credential check failed: {e}")
            recommendations.append(f"Amazon credential check failed ({e}).")
            return CredentialCheck(status="critical", error=str(e))

        if credential is None:
            recommendations.append("No Amazon credentials configured. Connect an account.")
            return CredentialCheck(status="warning", message="No Amazon credentials configured")

        expires_at = parse_timestamp(credential.expires_at)
        days = (expires_at - now) // timedelta(days=1)

        status = "ok"
        if expires_at <= now:
            status = "critical"
            recommendations.append(
                "Amazon credentials have expired! Re-authenticate immediately."
            )
        elif days < settings.credential_warning_days:
            status = "warning"
            recommendations.append(
                f"Amazon credentials expire in {days} days. Re-authenticate soon."
            )

        return CredentialCheck(
            status=status,
            expires_at=credential.expires_at,
            days_until_expiry=days,
        )

    def _check_recent_errors(
        self, now: datetime, recommendations: List[str]
    ) -> RecentErrorsCheck:
        window = settings.recent_errors_window_minutes
        since = format_timestamp(now - timedelta(minutes=window))
        try:
            count = JobRepository(self.db).count_settled_since(JobStatus.FAILED, since)
        except Exception as e:
            logger.error(f"Recent error count failed: {e}")
            recommendations.append(f"Recent error count unavailable ({e}).")
            return RecentErrorsCheck(status="critical", window_minutes=window, error=str(e))

        status = "ok"
        if count > settings.recent_errors_warning_threshold:
            status = "warning"
            recommendations.append(
                f"High error rate: {count} failures in the last {window} minutes."
            )
        return RecentErrorsCheck(status=status, count=count, window_minutes=window)
