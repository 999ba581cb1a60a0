"""Queue metrics aggregation."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from db import JobRepository
from models import JobStatus
from schemas import QueueMetricsSnapshot
from settings import settings
from staleness import StalenessPolicy
from utils import format_timestamp


class QueueMetricsAggregator:
    """Answer "what is the queue doing right now".

    The five counts are independent reads; they may disagree slightly with
    each other when jobs move between statuses during the computation.
    """

    def __init__(
        self,
        db: Session,
        policy: Optional[StalenessPolicy] = None,
        window_hours: Optional[int] = None,
    ):
        self.jobs = JobRepository(db)
        self.policy = policy or StalenessPolicy.from_settings()
        self.window = timedelta(
            hours=settings.metrics_window_hours if window_hours is None else window_hours
        )

    def compute(self, now: Optional[datetime] = None) -> QueueMetricsSnapshot:
        now = now or datetime.now(timezone.utc)
        since = format_timestamp(now - self.window)

        return QueueMetricsSnapshot(
            pending=self.jobs.count_by_status(JobStatus.PENDING),
            processing=self.jobs.count_by_status(JobStatus.PROCESSING),
            completed_24h=self.jobs.count_settled_since(JobStatus.COMPLETED, since),
            failed_24h=self.jobs.count_settled_since(JobStatus.FAILED, since),
            stuck=self.jobs.count_stale_jobs(self.policy.cutoff(now)),
            computed_at=format_timestamp(now),
        )
