"""API endpoint tests"""
import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.core.exceptions import UpstreamError
from app.main import app
from app.models.booking import PAYMENT_PAID, PAYMENT_REFUNDED, PAYMENT_UNPAID, STATUS_CANCELLED


class TestHealthAndMetrics:

    @pytest.mark.medium
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.medium
    def test_metrics_exposes_payment_counters(self, authenticated_client, booking):
        authenticated_client.post("/checkout-sessions", json={
            "booking_id": booking.id,
            "service_name": booking.service_name,
            "total_amount": 150.0,
        })

        response = authenticated_client.get("/metrics")

        assert response.status_code == 200
        assert "booking_payments_checkout_sessions_total" in response.text


class TestAuthentication:

    @pytest.mark.critical
    @pytest.mark.parametrize("path,body", [
        ("/checkout-sessions", {"booking_id": "b", "service_name": "s", "total_amount": 10}),
        ("/refunds", {"booking_id": "b"}),
    ])
    def test_requires_session(self, client, path, body):
        response = client.post(path, json=body)

        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated. Please log in."}

    def test_expired_session(self, client, mock_redis):
        client.cookies.set("session_id", "stale-session")

        response = client.post("/refunds", json={"booking_id": "b"})

        assert response.status_code == 401
        assert "Session expired" in response.json()["error"]

    def test_session_for_deleted_user(self, client, mock_redis):
        mock_redis.setex("session:orphan", 60, "9999")
        client.cookies.set("session_id", "orphan")

        response = client.post("/refunds", json={"booking_id": "b"})

        assert response.status_code == 401


class TestCheckoutEndpoint:

    @pytest.mark.critical
    def test_create_checkout_session(self, authenticated_client, booking, fake_gateway, db_session):
        response = authenticated_client.post(
            "/checkout-sessions",
            json={
                "booking_id": booking.id,
                "service_name": "AC Deep Cleaning",
                "total_amount": 150.0,
            },
            headers={"Origin": "https://app.example.com"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "checkout_url": "https://checkout.stripe.com/c/pay/cs_test_123",
            "session_id": "cs_test_123",
        }
        params = fake_gateway.create_checkout_session.call_args[0][0]
        assert params["success_url"].startswith("https://app.example.com/BookService?payment=success")
        db_session.refresh(booking)
        assert booking.checkout_session_id == "cs_test_123"

    @pytest.mark.high
    @pytest.mark.parametrize("body", [
        {"service_name": "AC", "total_amount": 150},
        {"booking_id": "x", "total_amount": 150},
        {"booking_id": "x", "service_name": "AC"},
        {"booking_id": "x", "service_name": "AC", "total_amount": 0},
        {"booking_id": "x", "service_name": "AC", "total_amount": -5},
    ])
    def test_invalid_body_is_400(self, authenticated_client, fake_gateway, body):
        response = authenticated_client.post("/checkout-sessions", json=body)

        assert response.status_code == 400
        assert "error" in response.json()
        fake_gateway.create_checkout_session.assert_not_called()

    def test_non_numeric_amount_is_400(self, authenticated_client, fake_gateway):
        response = authenticated_client.post("/checkout-sessions", json={
            "booking_id": "x", "service_name": "AC", "total_amount": "lots",
        })

        assert response.status_code == 400
        assert response.json()["error"].startswith("total_amount")

    def test_upstream_failure_is_500_without_gateway_detail(self, authenticated_client, booking, fake_gateway):
        fake_gateway.create_checkout_session.side_effect = UpstreamError("sk_live_secret leaked in detail")

        response = authenticated_client.post("/checkout-sessions", json={
            "booking_id": booking.id, "service_name": "AC Deep Cleaning", "total_amount": 150,
        })

        assert response.status_code == 500
        assert response.json() == {"error": "Payment provider request failed"}


class TestRefundEndpoint:

    @pytest.mark.critical
    def test_refund_unpaid_booking_is_404(self, authenticated_client, booking, fake_gateway):
        response = authenticated_client.post("/refunds", json={"booking_id": booking.id})

        assert response.status_code == 404
        assert response.json() == {"error": "No paid session found for this booking"}
        fake_gateway.create_refund.assert_not_called()

    def test_missing_booking_id_is_400(self, authenticated_client):
        response = authenticated_client.post("/refunds", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing booking_id"}


class TestPaymentLifecycle:
    """Checkout, completion webhook and refund end to end"""

    @pytest.mark.critical
    def test_pay_then_refund(self, authenticated_client, booking, db_session, fake_gateway, post_webhook, session_completed_event, charge_refunded_event):
        # Checkout
        response = authenticated_client.post("/checkout-sessions", json={
            "booking_id": booking.id, "service_name": "AC Deep Cleaning", "total_amount": 150,
        })
        assert response.status_code == 200
        db_session.refresh(booking)
        assert booking.payment_status == PAYMENT_UNPAID

        # Completion webhook, delivered twice
        event = session_completed_event(booking.id)
        assert post_webhook(event).status_code == 200
        assert post_webhook(event).status_code == 200
        db_session.refresh(booking)
        assert booking.payment_status == PAYMENT_PAID
        assert booking.payment_intent_id == "pi_test_123"

        # A second checkout for the paid booking is refused
        response = authenticated_client.post("/checkout-sessions", json={
            "booking_id": booking.id, "service_name": "AC Deep Cleaning", "total_amount": 150,
        })
        assert response.status_code == 400
        assert response.json() == {"error": "Booking is already paid"}

        # Refund
        response = authenticated_client.post("/refunds", json={"booking_id": booking.id})
        assert response.status_code == 200
        assert response.json() == {"success": True, "refund_id": "re_test_123"}
        db_session.refresh(booking)
        assert booking.payment_status == PAYMENT_REFUNDED
        assert booking.status == STATUS_CANCELLED

        # Stripe's own refund notification arrives afterwards
        assert post_webhook(charge_refunded_event()).status_code == 200
        db_session.refresh(booking)
        assert booking.payment_status == PAYMENT_REFUNDED
        assert booking.status == STATUS_CANCELLED

        # Refunding again finds nothing to refund
        response = authenticated_client.post("/refunds", json={"booking_id": booking.id})
        assert response.status_code == 404


class TestRateLimiting:

    @pytest.mark.medium
    def test_rate_limit_exceeded(self, client, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_REQUESTS", 2)

        statuses = [client.post("/refunds", json={"booking_id": "b"}).status_code for _ in range(3)]

        assert statuses[:2] == [401, 401]
        assert statuses[2] == 429

    def test_health_is_exempt(self, client, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_REQUESTS", 1)

        for _ in range(3):
            assert client.get("/health").status_code == 200


class TestUnexpectedErrors:

    def test_unhandled_exception_is_generic_500(self, db_session, mock_redis, fake_gateway, test_user, booking, monkeypatch):
        from app.api import payments
        from app.db.session import get_db
        from app.services.stripe_service import get_stripe_gateway
        from unittest.mock import patch

        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(payments, "refund_booking", explode)
        app.dependency_overrides[get_db] = lambda: db_session
        app.dependency_overrides[get_stripe_gateway] = lambda: fake_gateway
        mock_redis.setex("session:s1", 60, str(test_user.id))
        try:
            with patch("app.main.init_db"):
                with TestClient(app, raise_server_exceptions=False) as raw_client:
                    raw_client.cookies.set("session_id", "s1")
                    response = raw_client.post("/refunds", json={"booking_id": booking.id})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
