"""SQLAlchemy models for the enrichment job queue."""

from enum import Enum

from sqlalchemy import Column, Boolean, Integer, String, Text, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class JobStatus(str, Enum):
    """Lifecycle states of an enrichment job envelope."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: str, requested: str) -> bool:
    """Whether ``requested`` is reachable in one step from ``current``."""
    try:
        return JobStatus(requested) in ALLOWED_TRANSITIONS[JobStatus(current)]
    except ValueError:
        return False


class EnrichmentMarker(str, Enum):
    """Enrichment marker carried by the owning product."""

    PENDING = "pending"
    ENRICHING = "enriching"
    ENRICHED = "enriched"
    FAILED = "failed"


class AlertSeverity(str, Enum):
    """Severity of an alert event."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class EnrichmentJob(Base):
    """Envelope tracking one enrichment unit of work."""

    __tablename__ = "enrichment_jobs"

    id = Column(String(64), primary_key=True, index=True)
    owner_id = Column(String(64), nullable=False)  # product or analysis id
    enrichment_type = Column(String(50), nullable=False)
    status = Column(
        String(20), nullable=False, default=JobStatus.PENDING.value
    )  # pending, processing, completed, failed
    created_at = Column(String(50), nullable=False)  # UTC ISO8601
    updated_at = Column(String(50), nullable=False)  # UTC ISO8601
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_enrichment_jobs_status", "status"),
        Index("idx_enrichment_jobs_owner", "owner_id"),
        Index("idx_enrichment_jobs_updated_at", "updated_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TERMINAL_STATUSES}

    def to_dict(self) -> dict:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "enrichment_type": self.enrichment_type,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "error_message": self.error_message,
        }


class Product(Base):
    """Owning entity of enrichment jobs; only its marker matters here."""

    __tablename__ = "products"

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(500), nullable=True)
    ean = Column(String(32), nullable=True)
    enrichment_status = Column(
        String(20), nullable=False, default=EnrichmentMarker.PENDING.value
    )
    enrichment_error_message = Column(Text, nullable=True)
    updated_at = Column(String(50), nullable=False)  # UTC ISO8601

    __table_args__ = (
        Index("idx_products_enrichment_status", "enrichment_status"),
    )


class AlertEvent(Base):
    """Operational alert appended to the durable alert log."""

    __tablename__ = "alert_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    severity = Column(String(20), nullable=False, default=AlertSeverity.INFO.value)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    alert_type = Column(String(50), nullable=True)
    created_at = Column(String(50), nullable=False)  # UTC ISO8601

    def to_dict(self) -> dict:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "alert_type": self.alert_type,
            "created_at": self.created_at,
        }


class AmazonCredential(Base):
    """Amazon API credential with its secret expiry."""

    __tablename__ = "amazon_credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(String(255), nullable=True)
    expires_at = Column(String(50), nullable=False)  # UTC ISO8601
    is_active = Column(Boolean, nullable=False, default=True)


class UserSession(Base):
    """Bearer session token issued to a caller."""

    __tablename__ = "user_sessions"

    token = Column(String(255), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    expires_at = Column(String(50), nullable=False)  # UTC ISO8601
