"""Stuck-job reaper."""

from typing import List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from db import AlertRepository, JobRepository, ProductRepository
from errors import InvalidTransition
from models import AlertSeverity, JobStatus
from settings import settings
from staleness import TIMEOUT_REASON, StalenessPolicy


class StuckJobReaper:
    """Fail jobs whose worker went away.

    A job is reclaimed when it is still ``processing``, its owner still
    carries the ``enriching`` marker, and the job has not been written since
    the staleness cutoff. Each reclaim is an ordinary ``advance`` to
    ``failed``, so a second sweep finds nothing left to do.
    """

    def __init__(
        self,
        db: Session,
        policy: Optional[StalenessPolicy] = None,
        alert_threshold: Optional[int] = None,
    ):
        self.jobs = JobRepository(db)
        self.products = ProductRepository(db)
        self.alerts = AlertRepository(db)
        self.policy = policy or StalenessPolicy.from_settings()
        self.alert_threshold = (
            settings.reaper_alert_threshold if alert_threshold is None else alert_threshold
        )

    def sweep(self) -> List[str]:
        """Reclaim stale jobs and return their ids.

        A PersistenceFailure aborts the sweep and propagates; transitions
        already applied stay applied.
        """
        stale = self.jobs.find_stale_jobs(self.policy.cutoff())
        reclaimed = []
        owners = set()

        for job in stale:
            try:
                self.jobs.advance(job.id, JobStatus.FAILED, error_message=TIMEOUT_REASON)
            except InvalidTransition as e:
                # Settled by its worker between the select and the update.
                logger.info(f"Skipping job {job.id}: {e}")
                continue
            reclaimed.append(job.id)
            owners.add(job.owner_id)

        for owner_id in owners:
            self.products.settle(owner_id, error_message=TIMEOUT_REASON)

        if reclaimed:
            logger.warning(f"Reclaimed {len(reclaimed)} stuck enrichment jobs")
        else:
            logger.debug("Reaper sweep found no stuck jobs")

        if reclaimed and len(reclaimed) >= self.alert_threshold:
            self.alerts.create_alert(
                AlertSeverity.WARNING,
                "Stuck enrichment jobs reclaimed",
                f"{len(reclaimed)} enrichment jobs timed out and were marked failed.",
                alert_type="enrichment_issue",
            )

        return reclaimed
