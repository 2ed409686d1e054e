"""
Pytest configuration and fixtures

Every test gets a fresh in-memory SQLite schema; the app's get_db is
overridden to hand out the test session, so what a request writes is
visible to the test and vice versa. Stripe is never called: billing tests
monkeypatch services.stripe_service.
"""
import os
import sys
from datetime import date, timedelta
from uuid import uuid4

# Must be set before core.config is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ["LOG_FORMAT"] = "text"
os.environ.setdefault("LOG_LEVEL", "WARNING")
for _name in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "STRIPE_PRICE_ID", "STRIPE_SECRET_TEST_KEY", "STRIPE_WEBHOOK_TEST_SECRET", "SENTRY_DSN"):
    os.environ.pop(_name, None)

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient

from core.database import Base, SessionLocal, engine, get_db
from core.security import create_access_token, get_password_hash
from main import app
from models import AuthSession, ProcedureRecord, User, UserSubscription, utcnow
from services.milestone_catalog import seed_milestone_types

TEST_PASSWORD = "correct-horse-battery"
_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db_session):
    def _override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def milestones(db_session):
    """Default milestone catalog (Egg Collection / Embryo Transfer at 5, 10, 25, ...)."""
    seed_milestone_types(db_session)


@pytest.fixture
def make_user(db_session):
    """
    Create a user with a subscription row.

    trial_days: days left in the trial (negative = lapsed trial).
    status: Stripe subscription status to mirror, or None.
    """

    def _make(*, email=None, trial_days=14, status=None, customer_id=None, subscription_id=None):
        user = User(
            email=email or f"user_{uuid4().hex[:10]}@example.com",
            password_hash=_PASSWORD_HASH,
            display_name="Test User",
        )
        db_session.add(user)
        db_session.flush()

        now = utcnow()
        db_session.add(
            UserSubscription(
                user_id=user.id,
                trial_start_date=now + timedelta(days=trial_days) - timedelta(days=14),
                trial_end_date=now + timedelta(days=trial_days),
                subscription_status=status,
                is_subscribed=status == "active",
                stripe_customer_id=customer_id,
                stripe_subscription_id=subscription_id,
            )
        )
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def auth_headers(db_session):
    """Sign a user in (creates a live session row) and return bearer headers."""

    def _headers(user):
        expires_at = utcnow() + timedelta(hours=1)
        session = AuthSession(user_id=user.id, expires_at=expires_at)
        db_session.add(session)
        db_session.commit()
        token = create_access_token({"sub": str(user.id), "sid": str(session.id)}, expires_at=expires_at)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def add_records(db_session):
    """Insert ``count`` records of one procedure straight into the table."""

    def _add(user, procedure, count, *, hospital="General Hospital", supervision="Direct", day=date(2026, 3, 1)):
        rows = [
            ProcedureRecord(
                user_id=user.id,
                mrn=f"MRN{i:06d}",
                date=day,
                age=30,
                procedure=procedure,
                supervision=supervision,
                hospital=hospital,
            )
            for i in range(count)
        ]
        db_session.add_all(rows)
        db_session.commit()
        return rows

    return _add
