"""Main FastAPI application for the enrichment job queue."""

import signal
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from alerts import alert_dispatcher, alert_listing_cache
from auth import bearer_token
from db import AlertRepository, JobRepository, check_db_health, get_db, init_db
from dispatch import EnrichmentDispatcher
from enrichment_client import enrichment_client
from errors import Unauthenticated, register_error_handlers
from health import SystemHealthSupervisor
from metrics import QueueMetricsAggregator
from reaper import StuckJobReaper
from scheduler import scheduler
from schemas import (
    AlertResponse,
    CreateAlertRequest,
    EnrichRequest,
    EnrichResponse,
    HealthResponse,
    JobResponse,
    QueueMetricsSnapshot,
    ReapResponse,
    SystemHealthReport,
)
from settings import settings


# Configure logging
logger.remove()
logger.add(
    sys.stderr,
    level=settings.log_level.upper(),
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
)

ALERT_KEEPALIVE_SEC = 15.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting enrichment queue service")

    # Initialize database
    init_db()
    logger.info("Database initialized")

    # Start background loops
    await scheduler.start()
    logger.info("Scheduler started")

    yield

    # Cleanup
    logger.info("Shutting down enrichment queue service")
    await scheduler.stop()
    await enrichment_client.close()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Enrichment Queue",
    description="Enrichment job queue and system health supervisor",
    version=settings.version,
    lifespan=lifespan,
)
register_error_handlers(app)


@app.get("/healthz", response_model=HealthResponse)
async def liveness():
    """Liveness endpoint."""
    db_healthy = check_db_health()

    return HealthResponse(
        ok=db_healthy, db="ready" if db_healthy else "error", version=settings.version
    )


@app.get(
    "/health", response_model=SystemHealthReport, response_model_exclude_none=True
)
async def system_health(db: Session = Depends(get_db)):
    """Full system health report."""
    return SystemHealthSupervisor(db).build_report()


@app.get("/queue/metrics", response_model=QueueMetricsSnapshot)
async def queue_metrics(db: Session = Depends(get_db)):
    """Current queue counts."""
    return QueueMetricsAggregator(db).compute()


@app.post("/enrich", response_model=EnrichResponse)
async def enrich(
    request: EnrichRequest, http_request: Request, db: Session = Depends(get_db)
):
    """Enrich one owner with the requested capabilities."""
    dispatcher = EnrichmentDispatcher(db)
    try:
        return await dispatcher.enrich(
            bearer_token(http_request),
            request.owner_id,
            request.enrichment_types,
            request.options,
        )
    except Unauthenticated as e:
        logger.info(f"Rejected enrichment request for {request.owner_id}: {e}")
        body = EnrichResponse(
            success=False,
            success_count=0,
            total_count=len(request.enrichment_types),
            error=str(e),
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=body.model_dump(by_alias=True),
        )


@app.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, db: Session = Depends(get_db)):
    """Get one job envelope."""
    job = JobRepository(db).require_job(job_id)
    return JobResponse(**job.to_dict())


@app.get("/owners/{owner_id}/jobs", response_model=List[JobResponse])
async def list_owner_jobs(
    owner_id: str,
    status_filter: Optional[List[str]] = Query(None, alias="status"),
    db: Session = Depends(get_db),
):
    """List jobs of one owner, optionally filtered by status."""
    jobs = JobRepository(db).list_by_owner(owner_id, status_filter)
    return [JobResponse(**job.to_dict()) for job in jobs]


@app.post("/reaper/run", response_model=ReapResponse)
async def run_reaper(db: Session = Depends(get_db)):
    """Run one stuck-job sweep now."""
    reclaimed = StuckJobReaper(db).sweep()
    return ReapResponse(reclaimed=len(reclaimed), job_ids=reclaimed)


@app.get("/alerts", response_model=List[AlertResponse])
async def list_alerts(
    limit: int = Query(20, ge=1, le=200), db: Session = Depends(get_db)
):
    """Recent alerts, newest first."""
    cache_key = f"alerts:{limit}"
    cached = alert_listing_cache.get(cache_key)
    if cached is not None:
        return cached

    alerts = [alert.to_dict() for alert in AlertRepository(db).list_recent(limit)]
    alert_listing_cache.set(cache_key, alerts)
    return alerts


@app.post(
    "/alerts", response_model=AlertResponse, status_code=status.HTTP_201_CREATED
)
async def create_alert(request: CreateAlertRequest, db: Session = Depends(get_db)):
    """Manually append an alert to the log."""
    alert = AlertRepository(db).create_alert(
        request.severity, request.title, request.message, alert_type=request.alert_type
    )
    alert_listing_cache.invalidate_all()
    return AlertResponse(**alert.to_dict())


@app.get("/alerts/stream")
async def stream_alerts(request: Request):
    """Push routed alert notifications as server-sent events."""

    async def _generate():
        async with alert_dispatcher.subscribe() as subscription:
            while not await request.is_disconnected():
                notification = await subscription.next(timeout=ALERT_KEEPALIVE_SEC)
                if notification is None:
                    continue
                yield {"event": "alert", "data": notification.model_dump_json()}

    return EventSourceResponse(_generate(), ping=int(ALERT_KEEPALIVE_SEC))


# Signal handlers for graceful shutdown
def signal_handler(signum, frame):
    """Handle shutdown signals."""
    logger.info(f"Received signal {signum}, shutting down...")
    sys.exit(0)


signal.signal(signal.SIGTERM, signal_handler)
signal.signal(signal.SIGINT, signal_handler)


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    uvicorn.run(
        "app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
