"""
Pytest configuration and fixtures for testing.

This file provides reusable test fixtures for:
- Database setup/teardown (in-memory SQLite)
- FastAPI test client
- A fake email service standing in for Resend
- Resetting in-process rate limits and caches between tests
"""

import os

# Must be set before the application settings are imported
os.environ["ENVIRONMENT"] = "test"
os.environ["STATS_API_KEYS"] = '["test-stats-key"]'
os.environ["PENDING_STORE_BACKEND"] = "database"
os.environ["SITE_URL"] = "https://silksong.example"
os.environ["RESEND_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fansite import models  # noqa: F401
from fansite.core.cache import clear_caches
from fansite.core.database import Base, get_db
from fansite.core.rate_limiter import rate_limiter
from fansite.services.email_service import EmailResult, get_email_service
from main import app


# Use in-memory SQLite for testing (fast, isolated)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

STATS_API_KEY = "test-stats-key"


class FakeEmailService:
    """
    Records every send instead of calling Resend.

    Set fail = True to simulate a provider outage.
    """

    def __init__(self):
        self.sent = []
        self.fail = False

    def _result(self) -> EmailResult:
        if self.fail:
            return EmailResult(success=False, error="Simulated provider outage")
        return EmailResult(success=True, message_id=f"msg_{len(self.sent)}")

    def send_confirmation_email(self, email, token, expiry_hours=None):
        self.sent.append({"type": "confirmation", "email": email, "token": token})
        return self._result()

    def send_welcome_email(self, subscription, subscriber_count=None):
        self.sent.append({
            "type": "welcome",
            "email": subscription.email,
            "unsubscribe_token": subscription.unsubscribe_token,
        })
        return self._result()

    def confirmation_tokens(self, email):
        return [m["token"] for m in self.sent if m["type"] == "confirmation" and m["email"] == email]

    def sent_of_type(self, kind):
        return [m for m in self.sent if m["type"] == kind]


@pytest.fixture(autouse=True)
def reset_in_process_state():
    """Rate limits and caches live in process memory; start every test clean"""
    rate_limiter.reset()
    clear_caches()
    yield
    rate_limiter.reset()
    clear_caches()


@pytest.fixture
def db_session():
    """
    Create a fresh database for each test.
    Tables are dropped after the test completes.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def client(db_session, email_service):
    """
    FastAPI test client with overridden database and email dependencies.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_service] = lambda: email_service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def stats_headers():
    return {"Authorization": f"Bearer {STATS_API_KEY}"}


@pytest.fixture
def active_subscription(db_session):
    """An active, verified subscription"""
    from fansite.crud.subscription import build_subscription

    subscription = build_subscription(
        "hornet@example.com",
        source="footer",
        tags=["news"],
        verified=True,
    )
    db_session.add(subscription)
    db_session.commit()
    db_session.refresh(subscription)
    return subscription
