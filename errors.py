"""Domain exceptions and FastAPI error handler registration."""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger


class EnrichmentServiceError(Exception):
    """Base class for all domain errors raised by the service."""


class Unauthenticated(EnrichmentServiceError):
    """Session token missing, unknown or expired."""


class JobNotFound(EnrichmentServiceError):
    """Requested job ID does not exist."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransition(EnrichmentServiceError):
    """Requested status is not reachable from the job's current status."""

    def __init__(self, job_id: str, current: Optional[str], requested: str):
        super().__init__(
            f"Job {job_id}: cannot transition from {current} to {requested}"
        )
        self.job_id = job_id
        self.current = current
        self.requested = requested


class ExternalCapabilityFailure(EnrichmentServiceError):
    """The enrichment capability errored or returned a non-success payload."""


class PersistenceFailure(EnrichmentServiceError):
    """The backing store is unreachable or rejected the operation."""


_EXCEPTION_STATUS = {
    Unauthenticated: 401,
    JobNotFound: 404,
    InvalidTransition: 409,
    ExternalCapabilityFailure: 502,
    PersistenceFailure: 503,
}


def _make_handler(status_code: int):
    """Create a handler that turns a domain error into a JSON response."""

    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500 or isinstance(exc, InvalidTransition):
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return _handler


def register_error_handlers(app: FastAPI) -> None:
    """Attach handlers mapping domain exceptions to HTTP status codes."""
    for exc_class, status_code in _EXCEPTION_STATUS.items():
        app.add_exception_handler(exc_class, _make_handler(status_code))
