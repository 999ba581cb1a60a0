"""Staleness policy shared by the reaper and the queue metrics."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from settings import settings
from utils import format_timestamp

TIMEOUT_REASON = "Job timeout — import too large, retry using chunked path"


@dataclass(frozen=True)
class StalenessPolicy:
    """When an in-progress job counts as abandoned."""

    threshold: timedelta

    @classmethod
    def from_settings(cls) -> "StalenessPolicy":
        return cls(threshold=timedelta(minutes=settings.staleness_threshold_minutes))

    def cutoff(self, now: Optional[datetime] = None) -> str:
        """Jobs last updated strictly before this timestamp are stale."""
        now = now or datetime.now(timezone.utc)
        return format_timestamp(now - self.threshold)
