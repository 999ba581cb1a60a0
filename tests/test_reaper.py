"""Test the stuck-job reaper."""

from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from db import AlertRepository, JobRepository, ProductRepository
from models import EnrichmentMarker, JobStatus, Product
from reaper import StuckJobReaper
from staleness import TIMEOUT_REASON, StalenessPolicy
from utils import timestamp_ago


class TestStuckJobReaper:
    """Test reaper sweeps."""

    def test_reclaims_only_stale_jobs(
        self, test_db_session: Session, make_job, enriching_product
    ):
        stale = make_job(
            owner_id=enriching_product.id,
            status=JobStatus.PROCESSING,
            age=timedelta(minutes=15),
        )
        fresh = make_job(
            owner_id=enriching_product.id,
            status=JobStatus.PROCESSING,
            age=timedelta(minutes=5),
        )

        reclaimed = StuckJobReaper(test_db_session).sweep()

        assert reclaimed == [stale.id]
        repo = JobRepository(test_db_session)
        reaped = repo.get_job(stale.id)
        assert reaped.status == "failed"
        assert reaped.error_message == TIMEOUT_REASON
        assert repo.get_job(fresh.id).status == "processing"

    def test_second_sweep_is_noop(
        self, test_db_session: Session, make_job, enriching_product
    ):
        make_job(
            owner_id=enriching_product.id,
            status=JobStatus.PROCESSING,
            age=timedelta(minutes=30),
        )
        reaper = StuckJobReaper(test_db_session)

        assert len(reaper.sweep()) == 1
        assert reaper.sweep() == []

    def test_staleness_uses_job_clock(
        self, test_db_session: Session, make_job, enriching_product
    ):
        """An old product row does not age a fresh job, nor does a fresh one hide an old job."""
        fresh = make_job(
            owner_id=enriching_product.id,
            status=JobStatus.PROCESSING,
            age=timedelta(minutes=2),
        )
        test_db_session.execute(
            update(Product)
            .where(Product.id == enriching_product.id)
            .values(updated_at=timestamp_ago(hours=3))
        )
        test_db_session.commit()

        assert StuckJobReaper(test_db_session).sweep() == []

        stale = make_job(
            owner_id=enriching_product.id,
            status=JobStatus.PROCESSING,
            age=timedelta(minutes=20),
        )
        ProductRepository(test_db_session).set_marker(
            enriching_product.id, EnrichmentMarker.ENRICHING
        )

        assert StuckJobReaper(test_db_session).sweep() == [stale.id]
        assert JobRepository(test_db_session).get_job(fresh.id).status == "processing"

    def test_ignores_owner_not_enriching(
        self, test_db_session: Session, make_job, idle_product
    ):
        job = make_job(
            owner_id=idle_product.id,
            status=JobStatus.PROCESSING,
            age=timedelta(hours=2),
        )

        assert StuckJobReaper(test_db_session).sweep() == []
        assert JobRepository(test_db_session).get_job(job.id).status == "processing"

    def test_settles_owner_marker(
        self, test_db_session: Session, make_job, enriching_product
    ):
        make_job(
            owner_id=enriching_product.id,
            status=JobStatus.PROCESSING,
            age=timedelta(minutes=15),
        )

        StuckJobReaper(test_db_session).sweep()

        product = ProductRepository(test_db_session).get_product(enriching_product.id)
        assert product.enrichment_status == "failed"
        assert product.enrichment_error_message == TIMEOUT_REASON

    def test_custom_threshold(self, test_db_session: Session, make_job, enriching_product):
        make_job(
            owner_id=enriching_product.id,
            status=JobStatus.PROCESSING,
            age=timedelta(minutes=3),
        )
        policy = StalenessPolicy(threshold=timedelta(minutes=2))

        assert len(StuckJobReaper(test_db_session, policy=policy).sweep()) == 1

    def test_alert_raised_past_threshold(
        self, test_db_session: Session, make_job, enriching_product
    ):
        for _ in range(3):
            make_job(
                owner_id=enriching_product.id,
                status=JobStatus.PROCESSING,
                age=timedelta(minutes=20),
            )

        StuckJobReaper(test_db_session, alert_threshold=3).sweep()

        alerts = AlertRepository(test_db_session).list_recent()
        assert len(alerts) == 1
        assert alerts[0].severity == "warning"
        assert alerts[0].alert_type == "enrichment_issue"

    def test_no_alert_below_threshold(
        self, test_db_session: Session, make_job, enriching_product
    ):
        make_job(
            owner_id=enriching_product.id,
            status=JobStatus.PROCESSING,
            age=timedelta(minutes=20),
        )

        StuckJobReaper(test_db_session, alert_threshold=10).sweep()

        assert AlertRepository(test_db_session).list_recent() == []
