"""Enrichment dispatch: job envelopes around the external capability."""

import asyncio
from typing import Any, Dict, Iterable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from auth import authenticate
from db import JobRepository, ProductRepository
from enrichment_client import EnrichmentClient, enrichment_client
from errors import ExternalCapabilityFailure
from models import EnrichmentMarker, JobStatus
from schemas import EnrichResponse, TypeResult


class EnrichmentDispatcher:
    """Run one job per requested enrichment type for an owner."""

    def __init__(self, db: Session, client: Optional[EnrichmentClient] = None):
        self.db = db
        self.jobs = JobRepository(db)
        self.products = ProductRepository(db)
        self.client = client or enrichment_client

    async def enrich(
        self,
        token: Optional[str],
        owner_id: str,
        enrichment_types: Iterable[str],
        options: Optional[Dict[str, Any]] = None,
    ) -> EnrichResponse:
        """Authenticate the caller and enrich ``owner_id``.

        Every job of the batch has finished before this returns or raises,
        and the owner marker is settled once nothing is left in flight.

        Raises:
            Unauthenticated: before any job is created.
            PersistenceFailure: a job could not be recorded; raised after the
                rest of the batch has run.
        """
        user_id = authenticate(self.db, token)
        types = list(dict.fromkeys(enrichment_types))
        options = options or {}

        logger.info(f"User {user_id} requested {types} for owner {owner_id}")

        # Unknown owners get a product row so their jobs stay reapable
        self.products.upsert_product(owner_id)
        self.products.set_marker(owner_id, EnrichmentMarker.ENRICHING)
        outcomes = await asyncio.gather(
            *(self._run_job(owner_id, enrichment_type, options) for enrichment_type in types),
            return_exceptions=True,
        )

        per_type = {}
        errors = []
        for enrichment_type, outcome in zip(types, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Could not record {enrichment_type} job for {owner_id}: {outcome}")
                errors.append(outcome)
            else:
                per_type[enrichment_type] = outcome

        success_count = sum(
            1 for r in per_type.values() if r.status == JobStatus.COMPLETED.value
        )
        first_error = next((r.error for r in per_type.values() if r.error), None)
        if errors and first_error is None:
            first_error = str(errors[0]) or "Enrichment failed"
        self.products.settle(owner_id, error_message=first_error)

        if errors:
            raise errors[0]

        logger.info(
            f"Enrichment of {owner_id} finished: {success_count}/{len(types)} succeeded"
        )
        return EnrichResponse(
            success=True,
            success_count=success_count,
            total_count=len(types),
            per_type=per_type,
        )

    async def _run_job(
        self, owner_id: str, enrichment_type: str, options: Dict[str, Any]
    ) -> TypeResult:
        """Create, run and settle a single job; never leaves it processing."""
        job = self.jobs.create_job(owner_id, enrichment_type)
        self.jobs.advance(job.id, JobStatus.PROCESSING)

        try:
            await self.client.enrich(owner_id, enrichment_type, options)
        except ExternalCapabilityFailure as e:
            error = str(e) or "Enrichment failed"
        except Exception as e:
            logger.exception(f"Unexpected capability error for job {job.id}")
            error = f"Unexpected error: {e}"
        else:
            self.jobs.advance(job.id, JobStatus.COMPLETED)
            return TypeResult(job_id=job.id, status=JobStatus.COMPLETED.value)

        logger.error(f"Job {job.id} ({enrichment_type}) failed: {error}")
        self.jobs.advance(job.id, JobStatus.FAILED, error_message=error)
        return TypeResult(job_id=job.id, status=JobStatus.FAILED.value, error=error)
