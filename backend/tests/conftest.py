"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import sys
import time
from decimal import Decimal
from pathlib import Path
from typing import Generator
from unittest.mock import Mock, patch

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read at import time; pin them before the app is imported
WEBHOOK_SECRET = "whsec_test_secret"
TEST_APP_ID = "bookings-test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["APP_ID"] = TEST_APP_ID
os.environ["PAYMENT_CURRENCY"] = "aed"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.main import app
from app.db.session import get_db
from app.db import redis as redis_module
from app.models import Base
from app.models.booking import Booking
from app.models.user import User
from app.services.stripe_service import (
    CheckoutSessionHandle, RefundHandle, StripeGateway, get_stripe_gateway,
)


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)

    with patch.object(redis_module, "get_redis_client", return_value=fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def fake_gateway() -> Mock:
    """Stripe gateway double: no network, canned Stripe ids"""
    gateway = Mock(spec=StripeGateway)
    gateway.create_checkout_session.return_value = CheckoutSessionHandle(
        id="cs_test_123",
        url="https://checkout.stripe.com/c/pay/cs_test_123",
    )
    gateway.create_refund.return_value = RefundHandle(id="re_test_123", status="succeeded")
    gateway.find_session_metadata_for_payment_intent.return_value = None
    gateway.expire_checkout_session.return_value = True
    return gateway


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis, fake_gateway: Mock) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, mocked Redis and mocked Stripe"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_gateway] = lambda: fake_gateway

    try:
        # Tables come from db_session; OpenTelemetry stays off in tests
        with patch("app.main.init_db"):
            with patch("app.core.otel.initialize_otel", return_value=False):
                with patch("app.core.otel.instrument_sqlalchemy"):
                    with TestClient(app) as test_client:
                        yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    """Customer who owns the test bookings"""
    user = User(email="customer@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, test_user: User, mock_redis) -> TestClient:
    """Client carrying a session cookie that resolves to test_user"""
    session_id = "test-session-id-0123456789"
    mock_redis.setex(f"session:{session_id}", 2592000, str(test_user.id))
    client.cookies.set("session_id", session_id)
    return client


@pytest.fixture(scope="function")
def booking(db_session: Session, test_user: User) -> Booking:
    """Unpaid pending booking worth 150.00"""
    booking = Booking(
        id="6f1c2e4a-9b7d-4c3e-8a21-5d0f7e9b3c11",
        customer_id=test_user.id,
        service_name="AC Deep Cleaning",
        total_amount=Decimal("150.00"),
    )
    db_session.add(booking)
    db_session.commit()
    db_session.refresh(booking)
    return booking


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def sign_payload():
    """Build a Stripe-Signature header for a raw body"""
    return _sign


@pytest.fixture
def session_completed_event():
    """Factory for checkout.session.completed event bodies"""
    def _build(
        booking_id: str,
        event_id: str = "evt_session_completed_1",
        payment_intent: str = "pi_test_123",
        session_id: str = "cs_test_123",
        payment_status: str = "paid",
        app_id: str = TEST_APP_ID,
        event_type: str = "checkout.session.completed",
    ) -> dict:
        metadata = {"app_id": app_id, "customer_email": "customer@example.com"}
        if booking_id is not None:
            metadata["booking_id"] = booking_id
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "payment_intent": payment_intent,
                    "payment_status": payment_status,
                    "metadata": metadata,
                }
            },
        }
    return _build


@pytest.fixture
def charge_refunded_event():
    """Factory for charge.refunded event bodies"""
    def _build(
        event_id: str = "evt_charge_refunded_1",
        payment_intent: str = "pi_test_123",
        refunded: bool = True,
        amount_refunded: int = 15000,
    ) -> dict:
        return {
            "id": event_id,
            "object": "event",
            "type": "charge.refunded",
            "data": {
                "object": {
                    "id": "ch_test_123",
                    "object": "charge",
                    "payment_intent": payment_intent,
                    "refunded": refunded,
                    "amount_refunded": amount_refunded,
                }
            },
        }
    return _build


@pytest.fixture
def post_webhook(client: TestClient):
    """Send a signed webhook body exactly as Stripe would"""
    def _post(event: dict, header: str = "Stripe-Signature", signature: str = None):
        payload = json.dumps(event).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        headers[header] = signature if signature is not None else _sign(payload)
        return client.post("/webhooks/payment", content=payload, headers=headers)
    return _post
