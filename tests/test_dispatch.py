"""Test the enrichment dispatch facade."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from db import JobRepository, ProductRepository
from dispatch import EnrichmentDispatcher
from enrichment_client import EnrichmentClient
from errors import ExternalCapabilityFailure, PersistenceFailure, Unauthenticated
from metrics import QueueMetricsAggregator
from models import EnrichmentJob, JobStatus
from reaper import StuckJobReaper
from utils import timestamp_ago


@pytest.fixture
def dry_run_client():
    return EnrichmentClient(api_key=None, dry_run=True, dry_run_fail_types={"hs_code"})


class WorkerCrash(BaseException):
    """Stands in for the process dying mid-call."""


class TestEnrichmentDispatcher:
    """Test batch enrichment."""

    @pytest.mark.asyncio
    async def test_partial_failure(
        self, test_db_session: Session, session_token, enriching_product, dry_run_client
    ):
        dispatcher = EnrichmentDispatcher(test_db_session, client=dry_run_client)

        response = await dispatcher.enrich(
            session_token,
            enriching_product.id,
            ["attributes", "hs_code", "taxonomy"],
        )

        assert response.success is True
        assert response.success_count == 2
        assert response.total_count == 3
        assert response.per_type["hs_code"].status == "failed"
        assert response.per_type["attributes"].status == "completed"

        jobs = JobRepository(test_db_session).list_by_owner(enriching_product.id)
        assert len(jobs) == 3
        failed = [job for job in jobs if job.status == "failed"]
        assert len(failed) == 1
        assert failed[0].enrichment_type == "hs_code"
        assert failed[0].error_message
        assert all(job.is_terminal for job in jobs)

        product = ProductRepository(test_db_session).get_product(enriching_product.id)
        assert product.enrichment_status == "failed"

    @pytest.mark.asyncio
    async def test_all_succeed_marks_owner_enriched(
        self, test_db_session: Session, session_token, idle_product, dry_run_client
    ):
        dispatcher = EnrichmentDispatcher(test_db_session, client=dry_run_client)

        response = await dispatcher.enrich(
            session_token, idle_product.id, ["attributes", "images"]
        )

        assert response.success_count == 2
        product = ProductRepository(test_db_session).get_product(idle_product.id)
        assert product.enrichment_status == "enriched"

    @pytest.mark.asyncio
    async def test_unknown_type_fails_its_job(
        self, test_db_session: Session, session_token, dry_run_client
    ):
        dispatcher = EnrichmentDispatcher(test_db_session, client=dry_run_client)

        response = await dispatcher.enrich(session_token, "prod-9", ["teleport"])

        assert response.success_count == 0
        result = response.per_type["teleport"]
        assert result.status == "failed"
        assert result.error == "Unknown enrichment type: teleport"

    @pytest.mark.asyncio
    async def test_duplicate_types_run_once(
        self, test_db_session: Session, session_token, dry_run_client
    ):
        dispatcher = EnrichmentDispatcher(test_db_session, client=dry_run_client)

        response = await dispatcher.enrich(
            session_token, "prod-1", ["pricing", "pricing"]
        )

        assert response.total_count == 1
        assert len(JobRepository(test_db_session).list_by_owner("prod-1")) == 1

    @pytest.mark.asyncio
    async def test_unexpected_client_error_fails_job(
        self, test_db_session: Session, session_token
    ):
        client = AsyncMock(spec=EnrichmentClient)
        client.enrich.side_effect = KeyError("section")
        dispatcher = EnrichmentDispatcher(test_db_session, client=client)

        response = await dispatcher.enrich(session_token, "prod-1", ["attributes"])

        job = JobRepository(test_db_session).list_by_owner("prod-1")[0]
        assert job.status == "failed"
        assert "Unexpected error" in job.error_message
        assert response.per_type["attributes"].error == job.error_message

    @pytest.mark.asyncio
    async def test_empty_capability_error_gets_message(
        self, test_db_session: Session, session_token
    ):
        client = AsyncMock(spec=EnrichmentClient)
        client.enrich.side_effect = ExternalCapabilityFailure()
        dispatcher = EnrichmentDispatcher(test_db_session, client=client)

        await dispatcher.enrich(session_token, "prod-1", ["attributes"])

        job = JobRepository(test_db_session).list_by_owner("prod-1")[0]
        assert job.error_message == "Enrichment failed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token_fixture", [None, "expired_token", "bogus"])
    async def test_unauthenticated_creates_no_jobs(
        self, request, test_db_session: Session, dry_run_client, token_fixture
    ):
        if token_fixture == "expired_token":
            token = request.getfixturevalue("expired_token")
        else:
            token = token_fixture
        dispatcher = EnrichmentDispatcher(test_db_session, client=dry_run_client)

        with pytest.raises(Unauthenticated):
            await dispatcher.enrich(token, "prod-1", ["attributes"])

        assert JobRepository(test_db_session).list_by_owner("prod-1") == []
        assert ProductRepository(test_db_session).get_product("prod-1") is None

    @pytest.mark.asyncio
    async def test_request_options_cannot_force_failure(
        self, test_db_session: Session, session_token, dry_run_client
    ):
        dispatcher = EnrichmentDispatcher(test_db_session, client=dry_run_client)

        response = await dispatcher.enrich(
            session_token, "prod-1", ["attributes"], {"fail": ["attributes"]}
        )

        assert response.per_type["attributes"].status == "completed"


class TestDispatchRecovery:
    """Jobs left behind by a failed batch stay visible to the reaper."""

    @pytest.mark.asyncio
    async def test_unknown_owner_crashed_job_is_reaped(
        self, test_db_session: Session, session_token
    ):
        client = AsyncMock(spec=EnrichmentClient)
        client.enrich.side_effect = WorkerCrash()
        dispatcher = EnrichmentDispatcher(test_db_session, client=client)

        with pytest.raises(WorkerCrash):
            await dispatcher.enrich(session_token, "ghost", ["attributes"])

        product = ProductRepository(test_db_session).get_product("ghost")
        assert product is not None
        assert product.enrichment_status == "enriching"

        test_db_session.execute(
            update(EnrichmentJob)
            .where(EnrichmentJob.owner_id == "ghost")
            .values(updated_at=timestamp_ago(minutes=30))
        )
        test_db_session.commit()

        assert QueueMetricsAggregator(test_db_session).compute().stuck == 1
        reclaimed = StuckJobReaper(test_db_session).sweep()

        assert len(reclaimed) == 1
        assert JobRepository(test_db_session).get_job(reclaimed[0]).status == "failed"

    @pytest.mark.asyncio
    async def test_persistence_failure_raised_after_siblings_finish(
        self, test_db_session: Session, session_token, enriching_product, dry_run_client
    ):
        dispatcher = EnrichmentDispatcher(test_db_session, client=dry_run_client)
        repo = dispatcher.jobs
        real_advance = repo.advance

        def flaky_advance(job_id, new_status, error_message=None):
            if (
                new_status == JobStatus.COMPLETED
                and repo.get_job(job_id).enrichment_type == "attributes"
            ):
                raise PersistenceFailure("database is locked")
            return real_advance(job_id, new_status, error_message=error_message)

        with patch.object(repo, "advance", side_effect=flaky_advance):
            with pytest.raises(PersistenceFailure):
                await dispatcher.enrich(
                    session_token, enriching_product.id, ["attributes", "images"]
                )

        statuses = {
            job.enrichment_type: job.status
            for job in JobRepository(test_db_session).list_by_owner(enriching_product.id)
        }
        assert statuses == {"attributes": "processing", "images": "completed"}

        # The unrecorded job keeps the owner in progress for the reaper
        product = ProductRepository(test_db_session).get_product(enriching_product.id)
        assert product.enrichment_status == "enriching"

    @pytest.mark.asyncio
    async def test_owner_settles_when_a_job_cannot_be_created(
        self, test_db_session: Session, session_token, enriching_product, dry_run_client
    ):
        dispatcher = EnrichmentDispatcher(test_db_session, client=dry_run_client)
        repo = dispatcher.jobs
        real_create = repo.create_job

        def flaky_create(owner_id, enrichment_type):
            if enrichment_type == "taxonomy":
                raise PersistenceFailure("disk I/O error")
            return real_create(owner_id, enrichment_type)

        with patch.object(repo, "create_job", side_effect=flaky_create):
            with pytest.raises(PersistenceFailure):
                await dispatcher.enrich(
                    session_token, enriching_product.id, ["taxonomy", "attributes"]
                )

        jobs = JobRepository(test_db_session).list_by_owner(enriching_product.id)
        assert [(job.enrichment_type, job.status) for job in jobs] == [
            ("attributes", "completed")
        ]
        product = ProductRepository(test_db_session).get_product(enriching_product.id)
        assert product.enrichment_status == "failed"
        assert "disk I/O error" in product.enrichment_error_message
