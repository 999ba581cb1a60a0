"""Background loops for reaping, metrics, health and alert delivery."""

import asyncio
import time
from typing import Callable, Dict, Optional

from loguru import logger
from sqlalchemy.orm import Session

from alerts import AlertDispatcher, alert_dispatcher
from db import AlertRepository, SessionLocal
from health import SystemHealthSupervisor
from metrics import QueueMetricsAggregator
from models import AlertSeverity
from reaper import StuckJobReaper
from schemas import QueueMetricsSnapshot, SystemHealthReport
from settings import settings


class BackgroundScheduler:
    """Run each periodic component as its own task.

    Loops share nothing but the database: a failing iteration is logged and
    retried on the loop's own interval without touching the other loops.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        dispatcher: Optional[AlertDispatcher] = None,
    ):
        self.running = False
        self.session_factory = session_factory
        self.dispatcher = dispatcher or alert_dispatcher
        self.reaper_interval = settings.reaper_interval_sec
        self.metrics_interval = settings.metrics_interval_sec
        self.health_interval = settings.health_interval_sec
        self.alert_interval = settings.alert_poll_interval_sec

        self.latest_metrics: Optional[QueueMetricsSnapshot] = None
        self.latest_health: Optional[SystemHealthReport] = None
        self.last_reap_at: Optional[float] = None
        self._tasks: Dict[str, asyncio.Task] = {}

    async def start(self):
        """Start the scheduler."""
        logger.info("Starting background scheduler")
        self.running = True

        loops = {
            "reaper": (self.run_reaper, self.reaper_interval),
            "metrics": (self.run_metrics, self.metrics_interval),
            "health": (self.run_health, self.health_interval),
            "alerts": (self.run_alert_poll, self.alert_interval),
        }
        for name, (step, interval) in loops.items():
            self._tasks[name] = asyncio.create_task(
                self._loop(name, step, interval), name=f"enrichment-{name}"
            )

        logger.info("Background scheduler started")

    async def stop(self):
        """Stop the scheduler."""
        logger.info("Stopping background scheduler")
        self.running = False
        for task in self._tasks.values():
            task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()

    async def _loop(self, name: str, step: Callable[[Session], object], interval: float):
        while self.running:
            db = self.session_factory()
            try:
                step(db)
            except Exception as e:
                logger.error(f"Error in {name} loop: {e}")
            finally:
                db.close()
            await asyncio.sleep(interval)

    def run_reaper(self, db: Session):
        reclaimed = StuckJobReaper(db).sweep()
        self.last_reap_at = time.time()
        return reclaimed

    def run_metrics(self, db: Session):
        self.latest_metrics = QueueMetricsAggregator(db).compute()
        logger.debug(f"Queue metrics: {self.latest_metrics.model_dump()}")
        return self.latest_metrics

    def run_health(self, db: Session):
        previous = self.latest_health.status if self.latest_health else "ok"
        report = SystemHealthSupervisor(db).build_report()
        self.latest_health = report

        if report.status != "ok" and report.status != previous:
            AlertRepository(db).create_alert(
                AlertSeverity(report.status),
                "System health degraded",
                "; ".join(report.recommendations) or f"Health status is {report.status}",
                alert_type="system_health",
            )
        return report

    def run_alert_poll(self, db: Session):
        return self.dispatcher.poll(db)


# Global scheduler instance
scheduler = BackgroundScheduler()
