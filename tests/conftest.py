"""
Test configuration file for pytest
Contains fixtures and setup for testing
"""
import os
import sys

# Settings are read at import time, so set them before importing the app
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_BASIC_PRICE_ID", "price_basic")
os.environ.setdefault("STRIPE_STANDARD_PRICE_ID", "price_standard")
os.environ.setdefault("STRIPE_PREMIUM_PRICE_ID", "price_premium")
os.environ.setdefault("REVENUECAT_WEBHOOK_AUTH", "rc-webhook-secret")
os.environ.setdefault("ADMIN_API_KEY", "admin-test-key")
os.environ.setdefault("CRON_SECRET", "cron-test-secret")

# Add the parent directory to sys.path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import hashlib
import hmac
import json
import time
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import Base, get_db
from models import User
from main import app
from auth import create_access_token, hash_password
from services.rate_limiter import rate_limiter
from services.push_notifications import PushNotificationService

# In-memory SQLite database for testing
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "testpassword"


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Test client with a fresh database."""
    def _get_test_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _get_test_db

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture(autouse=True)
def sent_pushes(monkeypatch) -> List[Dict]:
    """Capture Expo push messages instead of calling the Expo API."""
    sent = []

    async def fake_send(messages):
        sent.extend(messages)
        return {"success": True, "result": {"data": [{"status": "ok"} for _ in messages]}}

    monkeypatch.setattr(PushNotificationService, "send", staticmethod(fake_send))
    return sent


@pytest.fixture(scope="function")
def make_user(db):
    """Factory creating verified users."""
    counter = {"n": 0}

    def _make_user(**overrides) -> User:
        counter["n"] += 1
        fields = {
            "name": f"User {counter['n']}",
            "email": f"user{counter['n']}@example.com",
            "hashed_password": hash_password(TEST_PASSWORD),
            "is_verified": True,
            "skills_offered": [],
            "skills_wanted": [],
            "credits": 0,
        }
        fields.update(overrides)
        user = User(**fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


def headers_for(user: User) -> Dict[str, str]:
    token = create_access_token(data={"sub": user.email, "user_id": user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def test_user(make_user):
    """A subscribed user with enough credits for social actions."""
    return make_user(
        name="Test User",
        email="test@example.com",
        credits=100,
        subscription_plan="basic",
        subscription_status="active",
    )


@pytest.fixture(scope="function")
def other_user(make_user):
    return make_user(
        name="Other User",
        email="other@example.com",
        credits=100,
        subscription_plan="basic",
        subscription_status="active",
    )


@pytest.fixture(scope="function")
def auth_headers(test_user):
    """Create authorization headers for the test user."""
    return headers_for(test_user)


@pytest.fixture(scope="function")
def other_headers(other_user):
    return headers_for(other_user)


def stripe_signature(payload: str, secret: str = None) -> str:
    """Stripe-Signature header value for a raw webhook payload."""
    secret = secret or os.environ["STRIPE_WEBHOOK_SECRET"]
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def post_stripe_event(client: TestClient, event: dict):
    payload = json.dumps(event)
    return client.post(
        "/webhook/stripe",
        content=payload,
        headers={"Stripe-Signature": stripe_signature(payload), "Content-Type": "application/json"},
    )
