"""
Test fixtures for StayWatch backend tests.
"""
import itertools
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from staywatch.database import Base, get_db
from staywatch.main import app
from staywatch.models import (
    Availability,
    FlexType,
    MatchConfidence,
    PriceObservation,
    ProfileFingerprint,
    SearchFingerprint,
    SearchProfile,
)


# Create test database engine (SQLite in-memory, one shared connection)
TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Enable foreign key constraints for SQLite
@event.listens_for(test_engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

_ids = itertools.count(1)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Creates all tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def override_get_db(db_session):
    """
    Override the get_db dependency to use the test database session.
    """
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    return _override_get_db


@pytest.fixture(scope="function")
async def client(override_get_db):
    """
    Create an async test client with the database dependency overridden.
    """
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_profile(db_session):
    """Create and persist a SearchProfile with sensible defaults."""
    def _make(**overrides):
        fields = dict(
            id=f"profile-{next(_ids)}",
            user_id="user-1",
            name="Cornwall half term",
            provider_code="hoseasons",
            regions=["Cornwall"],
            park_ids=[],
            date_start=date(2026, 5, 23),
            date_end=date(2026, 5, 30),
            flex_type=FlexType.FIXED,
            nights_min=7,
            nights_max=7,
            adults=2,
            children=2,
            infants=0,
            pets=0,
            enabled=True,
            check_frequency_hours=48,
        )
        fields.update(overrides)
        profile = SearchProfile(**fields)
        db_session.add(profile)
        db_session.commit()
        return profile

    return _make


@pytest.fixture
def make_fingerprint(db_session):
    """Create a fingerprint row and optionally link it to profiles."""
    def _make(fingerprint_id=None, provider_code="hoseasons", profiles=()):
        fingerprint = SearchFingerprint(
            id=fingerprint_id or f"{next(_ids):064x}",
            provider_code=provider_code,
            canonical_key=f"v1|{provider_code}|test",
            canonical_json={"provider": provider_code},
        )
        db_session.add(fingerprint)
        db_session.commit()
        for profile in profiles:
            db_session.add(ProfileFingerprint(profile_id=profile.id, fingerprint_id=fingerprint.id))
        db_session.commit()
        return fingerprint

    return _make


@pytest.fixture
def make_observation(db_session):
    """Append an observation directly, bypassing the store."""
    def _make(fingerprint_id, price, observed_at, availability=Availability.AVAILABLE):
        observation = PriceObservation(
            fingerprint_id=fingerprint_id,
            observed_at=observed_at,
            lowest_price=Decimal(str(price)),
            currency="GBP",
            raw_amount=f"£{price}",
            raw_currency="GBP",
            availability=availability,
            match_confidence=MatchConfidence.STRONG,
            source_strategy="INTERCEPT",
        )
        db_session.add(observation)
        db_session.commit()
        return observation

    return _make


@pytest.fixture
def now():
    return datetime(2026, 3, 1, 12, 0, 0)
