"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from alerts import alert_listing_cache
from db import Base, ProductRepository, SessionRepository
from models import EnrichmentJob, EnrichmentMarker, JobStatus
from utils import format_timestamp, generate_job_id


@pytest.fixture(scope="function")
def test_db_url():
    """Create temporary database URL for testing."""
    # Create a temporary file for SQLite database
    temp_db = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    temp_db.close()

    db_url = f"sqlite:///{temp_db.name}"

    yield db_url

    # Cleanup
    try:
        os.unlink(temp_db.name)
    except OSError:
        pass


@pytest.fixture(scope="function")
def test_engine(test_db_url):
    """Create test database engine."""
    engine = create_engine(
        test_db_url,
        connect_args={"check_same_thread": False}
    )

    # Create tables
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_session_factory(test_engine):
    """Session factory bound to the test engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def test_db_session(test_session_factory):
    """Create test database session."""
    session = test_session_factory()

    yield session

    session.close()


@pytest.fixture(scope="function")
def test_client(test_db_session, test_engine, test_session_factory):
    """Create test client with database override."""
    from fastapi import FastAPI
    from app import app as original_app
    import db
    from errors import register_error_handlers

    # Override the global engine and session factory for tests
    original_engine = db.engine
    original_session_local = db.SessionLocal

    db.engine = test_engine
    db.SessionLocal = test_session_factory
    alert_listing_cache.invalidate_all()

    # Create a test app without lifespan so the background loops stay off
    test_app = FastAPI(
        title="Enrichment Queue Test",
        description="Test version of the enrichment queue",
        version="1.0.0"
    )
    register_error_handlers(test_app)

    # Copy all routes from original app
    for route in original_app.routes:
        test_app.routes.append(route)

    try:
        with TestClient(test_app) as client:
            yield client
    finally:
        # Restore original engine and session factory
        db.engine = original_engine
        db.SessionLocal = original_session_local
        alert_listing_cache.invalidate_all()


@pytest.fixture
def enriching_product(test_db_session):
    """Product currently marked as enriching."""
    repo = ProductRepository(test_db_session)
    product = repo.upsert_product("prod-1", name="Cordless Drill", ean="4006381333931")
    repo.set_marker(product.id, EnrichmentMarker.ENRICHING)
    test_db_session.refresh(product)
    return product


@pytest.fixture
def idle_product(test_db_session):
    """Product that is not being enriched."""
    return ProductRepository(test_db_session).upsert_product("prod-idle", name="Hammer")


@pytest.fixture
def session_token(test_db_session):
    """Valid bearer token for user-1."""
    expires_at = format_timestamp(datetime.now(timezone.utc) + timedelta(hours=1))
    return SessionRepository(test_db_session).create_session("user-1", expires_at)


@pytest.fixture
def expired_token(test_db_session):
    """Bearer token whose session has expired."""
    expires_at = format_timestamp(datetime.now(timezone.utc) - timedelta(minutes=1))
    return SessionRepository(test_db_session).create_session("user-2", expires_at)


@pytest.fixture
def make_job(test_db_session):
    """Insert a job row directly with the given status and age."""

    def _make_job(
        owner_id="prod-1",
        status=JobStatus.PENDING,
        enrichment_type="attributes",
        age=timedelta(0),
        error_message=None,
    ):
        moment = format_timestamp(datetime.now(timezone.utc) - age)
        job = EnrichmentJob(
            id=generate_job_id(),
            owner_id=owner_id,
            enrichment_type=enrichment_type,
            status=getattr(status, "value", status),
            created_at=moment,
            updated_at=moment,
            error_message=error_message,
        )
        test_db_session.add(job)
        test_db_session.commit()
        test_db_session.refresh(job)
        return job

    return _make_job
