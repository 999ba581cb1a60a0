"""Database configuration, session management and repositories."""

import secrets
import time
from contextlib import contextmanager
from typing import Iterable, List, Optional

from loguru import logger
from sqlalchemy import create_engine, func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from errors import InvalidTransition, JobNotFound, PersistenceFailure
from models import (
    AlertEvent,
    AmazonCredential,
    Base,
    EnrichmentJob,
    EnrichmentMarker,
    JobStatus,
    Product,
    UserSession,
    can_transition,
)
from settings import settings
from utils import (
    format_timestamp,
    generate_job_id,
    get_current_timestamp,
    next_timestamp,
    parse_timestamp,
)

IN_FLIGHT_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


# Create synchronous engine for SQLite
engine = create_engine(
    settings.db_url,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
    echo=False
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)


def get_db() -> Session:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def persistence_guard(db: Session, action: str):
    """Turn driver errors raised inside the block into PersistenceFailure."""
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Persistence error while {action}: {e}")
        raise PersistenceFailure(f"{action} failed: {e}") from e


class JobRepository:
    """Repository for enrichment job envelopes.

    This is the only writer of ``EnrichmentJob`` rows. Status changes go
    through :meth:`advance`, which applies the transition as a conditional
    update on the current status so that concurrent writers cannot both win.
    """

    def __init__(self, db: Session):
        self.db = db

    def create_job(self, owner_id: str, enrichment_type: str) -> EnrichmentJob:
        """Create a new pending job."""
        now = get_current_timestamp()
        job = EnrichmentJob(
            id=generate_job_id(),
            owner_id=owner_id,
            enrichment_type=enrichment_type,
            status=JobStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        with persistence_guard(self.db, f"creating {enrichment_type} job for {owner_id}"):
            self.db.add(job)
            self.db.commit()
            self.db.refresh(job)
        logger.info(f"Created {enrichment_type} job {job.id} for owner {owner_id}")
        return job

    def get_job(self, job_id: str) -> Optional[EnrichmentJob]:
        """Get job by ID."""
        with persistence_guard(self.db, f"loading job {job_id}"):
            return self.db.query(EnrichmentJob).filter(EnrichmentJob.id == job_id).first()

    def require_job(self, job_id: str) -> EnrichmentJob:
        """Get job by ID or raise JobNotFound."""
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def advance(
        self, job_id: str, new_status: str, error_message: Optional[str] = None
    ) -> EnrichmentJob:
        """Move a job to ``new_status``.

        Raises:
            JobNotFound: no such job.
            InvalidTransition: ``new_status`` is not reachable from the
                current status, or another writer changed the status first.
        """
        new_status = getattr(new_status, "value", new_status)
        job = self.require_job(job_id)
        current = job.status

        if not can_transition(current, new_status):
            logger.error(f"Rejected transition {current} -> {new_status} for job {job_id}")
            raise InvalidTransition(job_id, current, new_status)

        values = {"status": new_status, "updated_at": next_timestamp(job.updated_at)}
        if new_status == JobStatus.FAILED.value:
            values["error_message"] = error_message or "Unknown error"

        with persistence_guard(self.db, f"advancing job {job_id} to {new_status}"):
            result = self.db.execute(
                update(EnrichmentJob)
                .where(EnrichmentJob.id == job_id, EnrichmentJob.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                latest = self.get_job(job_id)
                actual = latest.status if latest else None
                logger.error(
                    f"Lost transition race for job {job_id}: expected {current}, found {actual}"
                )
                raise InvalidTransition(job_id, actual, new_status)
            self.db.commit()
            self.db.refresh(job)

        logger.info(f"Job {job_id}: {current} -> {new_status}")
        return job

    def list_by_owner(
        self, owner_id: str, statuses: Optional[Iterable[str]] = None
    ) -> List[EnrichmentJob]:
        """List jobs of one owner, optionally filtered by status."""
        query = self.db.query(EnrichmentJob).filter(EnrichmentJob.owner_id == owner_id)
        if statuses:
            query = query.filter(
                EnrichmentJob.status.in_([getattr(s, "value", s) for s in statuses])
            )
        with persistence_guard(self.db, f"listing jobs of {owner_id}"):
            return query.order_by(EnrichmentJob.created_at).all()

    def has_in_flight(self, owner_id: str) -> bool:
        """Whether the owner still has pending or processing jobs."""
        with persistence_guard(self.db, f"checking in-flight jobs of {owner_id}"):
            count = (
                self.db.query(func.count(EnrichmentJob.id))
                .filter(
                    EnrichmentJob.owner_id == owner_id,
                    EnrichmentJob.status.in_(IN_FLIGHT_STATUSES),
                )
                .scalar()
            )
        return count > 0

    def count_by_status(self, status: str) -> int:
        """Count jobs currently in ``status``."""
        status = getattr(status, "value", status)
        with persistence_guard(self.db, f"counting {status} jobs"):
            return (
                self.db.query(func.count(EnrichmentJob.id))
                .filter(EnrichmentJob.status == status)
                .scalar()
            )

    def count_settled_since(self, status: str, since: str) -> int:
        """Count jobs that reached ``status`` at or after ``since``."""
        status = getattr(status, "value", status)
        with persistence_guard(self.db, f"counting recent {status} jobs"):
            return (
                self.db.query(func.count(EnrichmentJob.id))
                .filter(
                    EnrichmentJob.status == status,
                    EnrichmentJob.updated_at >= since,
                )
                .scalar()
            )

    def _stale_query(self, cutoff: str):
        return (
            self.db.query(EnrichmentJob)
            .join(Product, Product.id == EnrichmentJob.owner_id)
            .filter(
                EnrichmentJob.status == JobStatus.PROCESSING.value,
                EnrichmentJob.updated_at < cutoff,
                Product.enrichment_status == EnrichmentMarker.ENRICHING.value,
            )
        )

    def find_stale_jobs(self, cutoff: str) -> List[EnrichmentJob]:
        """Processing jobs of in-progress owners not updated since ``cutoff``."""
        with persistence_guard(self.db, "selecting stale jobs"):
            return self._stale_query(cutoff).order_by(EnrichmentJob.updated_at).all()

    def count_stale_jobs(self, cutoff: str) -> int:
        """Count what :meth:`find_stale_jobs` would return."""
        with persistence_guard(self.db, "counting stale jobs"):
            return self._stale_query(cutoff).count()


class ProductRepository:
    """Repository for the enrichment marker of owning products."""

    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: str) -> Optional[Product]:
        """Get product by ID."""
        with persistence_guard(self.db, f"loading product {product_id}"):
            return self.db.query(Product).filter(Product.id == product_id).first()

    def upsert_product(
        self, product_id: str, name: Optional[str] = None, ean: Optional[str] = None
    ) -> Product:
        """Create the product if missing, otherwise update its descriptive fields."""
        with persistence_guard(self.db, f"saving product {product_id}"):
            product = self.get_product(product_id)
            if product is None:
                product = Product(
                    id=product_id,
                    enrichment_status=EnrichmentMarker.PENDING.value,
                    updated_at=get_current_timestamp(),
                )
                self.db.add(product)
            if name is not None:
                product.name = name
            if ean is not None:
                product.ean = ean
            self.db.commit()
            self.db.refresh(product)
        return product

    def set_marker(
        self, product_id: str, marker: str, error_message: Optional[str] = None
    ) -> bool:
        """Set the enrichment marker. Returns False if the product is unknown."""
        marker = getattr(marker, "value", marker)
        with persistence_guard(self.db, f"marking product {product_id} {marker}"):
            product = self.get_product(product_id)
            if product is None:
                return False
            product.enrichment_status = marker
            product.enrichment_error_message = error_message
            product.updated_at = next_timestamp(product.updated_at)
            self.db.commit()
        return True

    def settle(self, product_id: str, error_message: Optional[str] = None) -> Optional[str]:
        """Clear the in-progress marker once the owner has no in-flight jobs.

        Returns the marker that was set, or None when the product is unknown,
        not marked in progress, or still has in-flight jobs.
        """
        product = self.get_product(product_id)
        if product is None or product.enrichment_status != EnrichmentMarker.ENRICHING.value:
            return None
        if JobRepository(self.db).has_in_flight(product_id):
            return None
        marker = EnrichmentMarker.FAILED if error_message else EnrichmentMarker.ENRICHED
        self.set_marker(product_id, marker, error_message)
        return marker.value

    def count_orphaned(self) -> int:
        """Products marked in progress that have no in-flight job."""
        in_flight = select(EnrichmentJob.owner_id).where(
            EnrichmentJob.status.in_(IN_FLIGHT_STATUSES)
        )
        with persistence_guard(self.db, "counting orphaned products"):
            return (
                self.db.query(func.count(Product.id))
                .filter(
                    Product.enrichment_status == EnrichmentMarker.ENRICHING.value,
                    ~Product.id.in_(in_flight),
                )
                .scalar()
            )


class AlertRepository:
    """Repository for the durable alert log."""

    def __init__(self, db: Session):
        self.db = db

    def create_alert(
        self,
        severity: str,
        title: str,
        message: str,
        alert_type: Optional[str] = None,
    ) -> AlertEvent:
        """Append an alert to the log."""
        alert = AlertEvent(
            severity=getattr(severity, "value", severity),
            title=title,
            message=message,
            alert_type=alert_type,
            created_at=get_current_timestamp(),
        )
        with persistence_guard(self.db, f"inserting alert '{title}'"):
            self.db.add(alert)
            self.db.commit()
            self.db.refresh(alert)
        logger.info(f"Alert {alert.id} [{alert.severity}] {alert.title}")
        return alert

    def list_recent(self, limit: int = 20) -> List[AlertEvent]:
        """Most recent alerts first."""
        with persistence_guard(self.db, "listing alerts"):
            return (
                self.db.query(AlertEvent)
                .order_by(AlertEvent.id.desc())
                .limit(limit)
                .all()
            )

    def list_after(self, alert_id: int) -> List[AlertEvent]:
        """Alerts inserted after ``alert_id``, oldest first."""
        with persistence_guard(self.db, "reading new alerts"):
            return (
                self.db.query(AlertEvent)
                .filter(AlertEvent.id > alert_id)
                .order_by(AlertEvent.id)
                .all()
            )

    def latest_id(self) -> int:
        """Highest alert id, 0 when the log is empty."""
        with persistence_guard(self.db, "reading alert cursor"):
            return self.db.query(func.max(AlertEvent.id)).scalar() or 0


class CredentialRepository:
    """Repository for Amazon credentials."""

    def __init__(self, db: Session):
        self.db = db

    def latest_active(self) -> Optional[AmazonCredential]:
        """Active credential with the furthest expiry."""
        with persistence_guard(self.db, "loading Amazon credentials"):
            return (
                self.db.query(AmazonCredential)
                .filter(AmazonCredential.is_active.is_(True))
                .order_by(AmazonCredential.expires_at.desc())
                .first()
            )

    def save(self, expires_at: str, client_id: Optional[str] = None) -> AmazonCredential:
        """Store a new active credential."""
        credential = AmazonCredential(
            client_id=client_id,
            expires_at=format_timestamp(parse_timestamp(expires_at)),
            is_active=True,
        )
        with persistence_guard(self.db, "saving Amazon credentials"):
            self.db.add(credential)
            self.db.commit()
            self.db.refresh(credential)
        return credential


class SessionRepository:
    """Repository for bearer session tokens."""

    def __init__(self, db: Session):
        self.db = db

    def create_session(self, user_id: str, expires_at: str) -> str:
        """Issue a new session token for ``user_id``."""
        token = secrets.token_urlsafe(32)
        with persistence_guard(self.db, f"creating session for {user_id}"):
            self.db.add(UserSession(token=token, user_id=user_id, expires_at=expires_at))
            self.db.commit()
        return token

    def get_session(self, token: str) -> Optional[UserSession]:
        """Look up a session by token."""
        with persistence_guard(self.db, "loading session"):
            return self.db.query(UserSession).filter(UserSession.token == token).first()


def probe_database(db: Session) -> float:
    """Run a round trip query and return its latency in milliseconds."""
    started = time.perf_counter()
    with persistence_guard(db, "probing database"):
        db.execute(text("SELECT 1"))
    return (time.perf_counter() - started) * 1000


def check_db_health() -> bool:
    """Check database health."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            conn.close()
        return True
    except Exception:
        return False
